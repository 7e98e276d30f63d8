from __future__ import annotations

from typing import Any, Dict, List, Sequence

from .blocks import blocks_for_cohort, find_block
from .cohorts import CANCELLED_ALLOCATION, active_company_ids, require_cohort
from .companies import ACTIVE_STATUSES, list_company_records, require_company
from .logging import get_logger
from .modules import get_installation_module
from .progress import COMPLETED, activation_index, is_module_enabled, progress_index
from .storage import (
    ALLOCATIONS_FILE,
    BLOCKS_FILE,
    MODULES_FILE,
    CapacityError,
    ConflictError,
    ValidationError,
    load_items,
    next_sequential_id,
    save_items,
    transaction,
)

PLANNED = "Previsto"

logger = get_logger(__name__)


def merge_allocation(existing: Dict[str, Any], incoming: Dict[str, Any]) -> Dict[str, Any]:
    """Resolve a realocação de uma empresa em um módulo que já tem registro na turma.

    O dia de entrada sempre vem do novo pedido. As observações antigas são
    mantidas quando o pedido não traz novas. Um registro cancelado volta para
    Previsto; qualquer outro status é preservado (nunca rebaixa Confirmado ou
    Executado).
    """
    resolved = dict(existing)
    resolved["entry_day"] = incoming["entry_day"]
    if incoming.get("notes") is not None:
        resolved["notes"] = incoming["notes"]
    if existing.get("status") == CANCELLED_ALLOCATION:
        resolved["status"] = PLANNED
    return resolved


def _find_allocation(
    items: List[Dict[str, Any]], cohort_id: str, company_id: str, module_id: str
) -> Dict[str, Any] | None:
    return next(
        (
            item
            for item in items
            if item.get("cohort_id") == cohort_id
            and item.get("company_id") == company_id
            and item.get("module_id") == module_id
        ),
        None,
    )


def _new_allocation(
    items: List[Dict[str, Any]],
    cohort_id: str,
    company_id: str,
    module_id: str,
    entry_day: int,
    notes: str | None,
) -> Dict[str, Any]:
    return {
        "id": next_sequential_id(items, prefix="all-"),
        "cohort_id": cohort_id,
        "company_id": company_id,
        "module_id": module_id,
        "entry_day": entry_day,
        "status": PLANNED,
        "notes": notes,
        "override_installation_prereq": False,
        "override_reason": None,
        "executed_at": None,
    }


def check_capacity(cohort: Dict[str, Any], company_id: str, allocations: List[Dict[str, Any]]) -> None:
    """Capacidade conta empresas distintas; quem já está na turma nunca estoura o limite."""
    occupied = active_company_ids(cohort["id"], allocations)
    if company_id in occupied:
        return
    if len(occupied) >= cohort["capacity_companies"]:
        logger.warning("Capacidade atingida na turma %s (%d empresas)", cohort["code"], len(occupied))
        raise CapacityError(
            "Capacidade da turma atingida.",
            details={"capacity_companies": cohort["capacity_companies"], "occupied": len(occupied)},
        )


def _upsert(
    items: List[Dict[str, Any]],
    cohort_id: str,
    company_id: str,
    module_id: str,
    entry_day: int,
    notes: str | None,
) -> Dict[str, Any]:
    existing = _find_allocation(items, cohort_id, company_id, module_id)
    if existing is None:
        allocation = _new_allocation(items, cohort_id, company_id, module_id, entry_day, notes)
        items.append(allocation)
        return allocation
    resolved = merge_allocation(existing, {"entry_day": entry_day, "notes": notes})
    if existing.get("status") != resolved.get("status"):
        logger.info("Alocação %s reativada (Cancelado -> Previsto)", existing["id"])
    existing.update(resolved)
    return existing


def create_allocation(
    cohort_id: str,
    company_id: str,
    module_id: str,
    entry_day: int,
    notes: str | None = None,
) -> Dict[str, Any]:
    if isinstance(entry_day, bool) or not isinstance(entry_day, int) or entry_day <= 0:
        raise ValidationError("Dia de entrada deve ser um inteiro positivo.", reason="InvalidEntryDay")

    with transaction():
        cohort = require_cohort(cohort_id)
        block = find_block(load_items(BLOCKS_FILE), cohort_id, module_id)
        if not block:
            raise ValidationError(
                "Módulo não pertence aos blocos da turma.",
                reason="ModuleNotInCohort",
                details={"module_id": module_id},
            )
        if entry_day < block["start_day_offset"]:
            raise ValidationError(
                "Dia de entrada não pode ser menor que o início do bloco.",
                reason="EntryDayBeforeBlock",
                details={"entry_day": entry_day, "start_day_offset": block["start_day_offset"]},
            )
        require_company(company_id)
        if not is_module_enabled(company_id, module_id):
            raise ValidationError(
                "Módulo está desativado para esta empresa.",
                reason="ModuleDisabled",
                details={"module_id": module_id},
            )

        items = load_items(ALLOCATIONS_FILE)
        existing = _find_allocation(items, cohort_id, company_id, module_id)
        if existing and existing.get("status") != CANCELLED_ALLOCATION:
            raise ConflictError(
                "Empresa já está alocada neste módulo da turma.",
                reason="DuplicateAllocation",
                details={"allocation_id": existing["id"], "status": existing["status"]},
            )
        check_capacity(cohort, company_id, items)
        allocation = _upsert(items, cohort_id, company_id, module_id, entry_day, notes)
        save_items(ALLOCATIONS_FILE, items)

    logger.info(
        "Alocação %s: empresa %s no módulo %s da turma %s (dia %d)",
        allocation["id"],
        company_id,
        module_id,
        cohort["code"],
        allocation["entry_day"],
    )
    return allocation


def _normalize_module_ids(module_ids: Sequence[str], entry_module_id: str) -> List[str]:
    cleaned: List[str] = []
    for value in module_ids:
        key = str(value or "").strip()
        if key and key not in cleaned:
            cleaned.append(key)
    if entry_module_id not in cleaned:
        cleaned.append(entry_module_id)
    return cleaned


def allocate_company_by_entry_module(
    cohort_id: str,
    company_id: str,
    entry_module_id: str,
    module_ids: Sequence[str],
    notes: str | None = None,
) -> Dict[str, Any]:
    """Aloca a empresa a partir de um módulo de entrada em todos os módulos escolhidos.

    Cada módulo recebe o dia de início do próprio bloco como dia de entrada.
    Não é possível escolher módulos anteriores ao de entrada.
    """
    with transaction():
        cohort = require_cohort(cohort_id)
        blocks = blocks_for_cohort(load_items(BLOCKS_FILE), cohort_id)
        if not blocks:
            raise ValidationError("Turma sem blocos cadastrados.", reason="CohortWithoutBlocks")

        block_by_module = {block["module_id"]: block for block in blocks}
        entry_block = block_by_module.get(entry_module_id)
        if not entry_block:
            raise ValidationError(
                "Módulo de entrada não pertence à turma.",
                reason="ModuleNotInCohort",
                details={"module_id": entry_module_id},
            )

        requested = _normalize_module_ids(module_ids, entry_module_id)
        missing = [item for item in requested if item not in block_by_module]
        if missing:
            raise ValidationError(
                "Um ou mais módulos selecionados não pertencem à turma.",
                reason="ModuleNotInCohort",
                details={"module_ids": missing},
            )
        selected = sorted((block_by_module[item] for item in requested), key=lambda block: block["order_in_cohort"])
        before_entry = [
            block["module_id"]
            for block in selected
            if block["order_in_cohort"] < entry_block["order_in_cohort"]
        ]
        if before_entry:
            raise ValidationError(
                "Não é permitido selecionar módulo anterior ao módulo de entrada.",
                reason="ModuleBeforeEntry",
                details={"module_ids": before_entry},
            )

        require_company(company_id)
        disabled = [block["module_id"] for block in selected if not is_module_enabled(company_id, block["module_id"])]
        if disabled:
            raise ValidationError(
                "Existe módulo desativado para esta empresa na seleção.",
                reason="ModuleDisabled",
                details={"module_ids": disabled},
            )

        items = load_items(ALLOCATIONS_FILE)
        check_capacity(cohort, company_id, items)
        for block in selected:
            _upsert(items, cohort_id, company_id, block["module_id"], block["start_day_offset"], notes)
        save_items(ALLOCATIONS_FILE, items)

    module_names = {item["id"]: item["name"] for item in load_items(MODULES_FILE)}
    logger.info(
        "Empresa %s alocada na turma %s a partir do módulo %s (%d módulos)",
        company_id,
        cohort["code"],
        entry_module_id,
        len(selected),
    )
    return {
        "ok": True,
        "company_id": company_id,
        "entry_module_id": entry_module_id,
        "allocations_created": [
            {
                "module_id": block["module_id"],
                "module_name": module_names.get(block["module_id"], block["module_id"]),
                "entry_day": block["start_day_offset"],
            }
            for block in selected
        ],
    }


def get_allocation_suggestions(cohort_id: str, module_id: str) -> Dict[str, Any]:
    require_cohort(cohort_id)
    block = find_block(load_items(BLOCKS_FILE), cohort_id, module_id)
    if not block:
        raise ValidationError(
            "Módulo não pertence à turma.", reason="ModuleNotInCohort", details={"module_id": module_id}
        )

    installation = get_installation_module()
    installation_id = installation["id"] if installation else None
    progress = progress_index()
    activation = activation_index()
    already_allocated = {
        item["company_id"]
        for item in load_items(ALLOCATIONS_FILE)
        if item.get("cohort_id") == cohort_id
        and item.get("module_id") == module_id
        and item.get("status") != CANCELLED_ALLOCATION
    }

    rows = []
    for company in list_company_records():
        company_id = company["id"]
        if company.get("status") not in ACTIVE_STATUSES:
            continue
        if not activation.get((company_id, module_id), True):
            continue
        module_status = progress.get((company_id, module_id), {}).get("status") or "Nao_iniciado"
        if module_status == COMPLETED or company_id in already_allocated:
            continue

        completed_dates = [
            row["completed_at"]
            for key, row in progress.items()
            if key[0] == company_id and row.get("completed_at")
        ]
        can_execute = (
            installation_id is None
            or module_id == installation_id
            or progress.get((company_id, installation_id), {}).get("status") == COMPLETED
        )
        rows.append(
            {
                "id": company_id,
                "name": company["name"],
                "priority": company.get("priority", 0),
                "module_status": module_status,
                "last_completed_at": max(completed_dates) if completed_dates else None,
                "can_execute": can_execute,
                "block_reason": None if can_execute else f"Falta {installation['code']}",
            }
        )

    rows.sort(
        key=lambda row: (
            not row["can_execute"],
            -row["priority"],
            row["last_completed_at"] is not None,
            row["last_completed_at"] or "",
            row["name"],
        )
    )
    return {"entry_day_suggested": block["start_day_offset"], "companies": rows}
