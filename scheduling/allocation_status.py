from __future__ import annotations

from typing import Any, Dict

from .business_days import today_iso
from .logging import get_logger
from .modules import get_installation_module
from .progress import has_completed_module, mark_module_completed
from .storage import (
    ALLOCATIONS_FILE,
    NotFoundError,
    PrerequisiteError,
    find_item,
    load_items,
    save_items,
    transaction,
)

ALLOCATION_STATUSES = ("Previsto", "Confirmado", "Executado", "Cancelado")
EXECUTED = "Executado"

logger = get_logger(__name__)


def _installation_override(
    allocation: Dict[str, Any],
    override_installation_prereq: bool,
    override_reason: str | None,
) -> str | None:
    """Aplica a regra da instalação antes da execução.

    Devolve a justificativa quando o override manual foi necessário, ou None
    quando a empresa já cumpriu o pré-requisito (ou o módulo é a própria
    instalação).
    """
    installation = get_installation_module()
    if not installation or allocation["module_id"] == installation["id"]:
        return None
    if has_completed_module(allocation["company_id"], installation["id"]):
        return None

    reason = (override_reason or "").strip()
    if override_installation_prereq is not True or not reason:
        logger.warning(
            "Execução bloqueada para a alocação %s: instalação %s pendente",
            allocation["id"],
            installation["code"],
        )
        raise PrerequisiteError(
            f"Empresa precisa concluir {installation['code']} (Instalação) antes da execução. "
            "Use override manual com justificativa.",
            reason="InstallationRequired",
            details={"installation_module_id": installation["id"], "installation_code": installation["code"]},
        )
    return reason


def update_allocation_status(
    allocation_id: str,
    status: str,
    notes: str | None = None,
    override_installation_prereq: bool = False,
    override_reason: str | None = None,
) -> Dict[str, Any]:
    with transaction():
        items = load_items(ALLOCATIONS_FILE)
        allocation = find_item(items, allocation_id)
        if not allocation:
            raise NotFoundError(f"Alocação não encontrada: {allocation_id}", entity="Allocation")

        used_reason = None
        if status == EXECUTED:
            used_reason = _installation_override(allocation, override_installation_prereq, override_reason)

        previous = allocation["status"]
        allocation["status"] = status
        if notes is not None:
            allocation["notes"] = notes
        allocation["override_installation_prereq"] = used_reason is not None
        allocation["override_reason"] = used_reason
        allocation["executed_at"] = today_iso() if status == EXECUTED else None
        save_items(ALLOCATIONS_FILE, items)

        if status == EXECUTED:
            mark_module_completed(allocation["company_id"], allocation["module_id"], allocation["executed_at"])

    if used_reason is not None:
        logger.warning("Override de instalação usado na alocação %s: %s", allocation_id, used_reason)
    logger.info("Alocação %s: %s -> %s", allocation_id, previous, status)
    return {"ok": True, "override_used": used_reason is not None}
