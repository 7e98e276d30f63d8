from __future__ import annotations

from typing import Any, Dict, List

from .business_days import parse_iso_date, today_iso
from .logging import get_logger
from .modules import get_installation_module, list_modules, require_module
from .progress import (
    COMPLETED,
    PROGRESS_STATUSES,
    activation_index,
    ensure_default_rows,
    get_progress,
    is_module_enabled,
    progress_index,
    remove_rows,
    set_activation,
    upsert_progress,
)
from .storage import (
    ALLOCATIONS_FILE,
    COHORTS_FILE,
    COMPANIES_FILE,
    MODULES_FILE,
    NotFoundError,
    ValidationError,
    ensure_unique_id,
    find_item,
    load_items,
    next_sequential_id,
    require_fields,
    save_items,
    transaction,
)

REQUIRED_FIELDS = ["id", "name", "status"]
COMPANY_STATUSES = {"Ativo", "Inativo", "Em_treinamento", "Finalizado"}
ACTIVE_STATUSES = {"Ativo", "Em_treinamento"}
PRIORITY_LEVELS = {"Alta", "Normal", "Baixa", "Parado", "Aguardando_liberacao"}
MODALITIES = {"Turma_Online", "Exclusivo_Online", "Presencial"}
EDITABLE_FIELDS = {
    "name",
    "status",
    "notes",
    "priority",
    "priority_level",
    "contact_name",
    "contact_phone",
    "contact_email",
    "modality",
}

logger = get_logger(__name__)


def _parse_priority(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 100:
        raise ValidationError("Prioridade deve ser um inteiro entre 0 e 100.", reason="InvalidPriority")
    return value


def _normalize_company(payload: Dict[str, Any]) -> Dict[str, Any]:
    normalized = dict(payload)
    if "name" in normalized:
        normalized["name"] = str(normalized.get("name") or "").strip()
    if "status" in normalized and normalized["status"] not in COMPANY_STATUSES:
        raise ValidationError(f"Status inválido para cliente: {normalized['status']}", reason="InvalidStatus")
    if "priority_level" in normalized and normalized["priority_level"] not in PRIORITY_LEVELS:
        raise ValidationError(
            f"Nível de prioridade inválido: {normalized['priority_level']}", reason="InvalidPriority"
        )
    if "modality" in normalized and normalized["modality"] not in MODALITIES:
        raise ValidationError(f"Modalidade inválida: {normalized['modality']}", reason="InvalidModality")
    if "priority" in normalized:
        normalized["priority"] = _parse_priority(normalized["priority"])
    return normalized


def list_company_records() -> List[Dict[str, Any]]:
    return sorted(load_items(COMPANIES_FILE), key=lambda item: item.get("name", ""))


def get_company(company_id: str) -> Dict[str, Any] | None:
    return find_item(load_items(COMPANIES_FILE), company_id)


def require_company(company_id: str) -> Dict[str, Any]:
    company = get_company(company_id)
    if not company:
        raise NotFoundError(f"Empresa não encontrada: {company_id}", entity="Company")
    return company


def ensure_company_default_rows(company_id: str) -> None:
    ensure_default_rows([(company_id, module["id"]) for module in load_items(MODULES_FILE)])


def create_company(payload: Dict[str, Any]) -> Dict[str, Any]:
    payload = {"status": "Ativo", "priority": 0, **payload}
    payload = _normalize_company(payload)
    with transaction():
        items = load_items(COMPANIES_FILE)
        if not payload.get("id"):
            payload["id"] = next_sequential_id(items, prefix="comp-")
        for field, default in (
            ("notes", None),
            ("priority_level", "Normal"),
            ("contact_name", None),
            ("contact_phone", None),
            ("contact_email", None),
            ("modality", "Turma_Online"),
        ):
            payload.setdefault(field, default)
        require_fields(payload, REQUIRED_FIELDS)
        ensure_unique_id(items, payload["id"])
        ensure_unique_id(items, payload["name"], id_field="name")
        items.append(payload)
        save_items(COMPANIES_FILE, items)
        ensure_company_default_rows(payload["id"])
    logger.info("Cliente criado: %s (%s)", payload["name"], payload["id"])
    return payload


def update_company(company_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(updates) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Campos não editáveis: {', '.join(sorted(unknown))}", reason="InvalidField")
    updates = _normalize_company(updates)
    with transaction():
        items = load_items(COMPANIES_FILE)
        company = find_item(items, company_id)
        if not company:
            raise NotFoundError(f"Empresa não encontrada: {company_id}", entity="Company")
        if "name" in updates and updates["name"] != company["name"]:
            ensure_unique_id(items, updates["name"], id_field="name")
        company.update(updates)
        require_fields(company, REQUIRED_FIELDS)
        save_items(COMPANIES_FILE, items)
    return company


def update_priority(company_id: str, priority: int) -> Dict[str, Any]:
    return update_company(company_id, {"priority": priority})


def delete_company(company_id: str) -> None:
    with transaction():
        items = load_items(COMPANIES_FILE)
        company = find_item(items, company_id)
        if not company:
            raise NotFoundError(f"Empresa não encontrada: {company_id}", entity="Company")
        items.remove(company)
        save_items(COMPANIES_FILE, items)
        allocations = [item for item in load_items(ALLOCATIONS_FILE) if item.get("company_id") != company_id]
        save_items(ALLOCATIONS_FILE, allocations)
        remove_rows(company_id=company_id)
    logger.info("Cliente removido: %s", company["name"])


def set_module_activation(company_id: str, module_id: str, is_enabled: bool) -> None:
    with transaction():
        require_company(company_id)
        require_module(module_id)
        set_activation(company_id, module_id, is_enabled)
        if is_enabled:
            ensure_default_rows([(company_id, module_id)])


def update_progress(
    company_id: str,
    module_id: str,
    status: str,
    completed_at: str | None = None,
    notes: str | None = None,
) -> Dict[str, Any]:
    if status not in PROGRESS_STATUSES:
        raise ValidationError(f"Status de progresso inválido: {status}", reason="InvalidStatus")
    with transaction():
        require_company(company_id)
        require_module(module_id)
        if not is_module_enabled(company_id, module_id):
            raise ValidationError(
                "Módulo está desativado para esta empresa.", reason="ModuleDisabled"
            )
        if status == COMPLETED:
            completed = parse_iso_date(completed_at).isoformat() if completed_at else today_iso()
        else:
            completed = None
        return upsert_progress(company_id, module_id, status, completed, notes)


def list_companies() -> List[Dict[str, Any]]:
    modules = list_modules()
    installation = get_installation_module()
    progress = progress_index()
    activation = activation_index()
    rows = []
    for company in list_company_records():
        total = 0
        completed = 0
        next_module = None
        for module in modules:
            key = (company["id"], module["id"])
            if not activation.get(key, True):
                continue
            total += 1
            if progress.get(key, {}).get("status") == COMPLETED:
                completed += 1
            elif next_module is None:
                next_module = module
        alert = None
        if installation:
            key = (company["id"], installation["id"])
            if activation.get(key, True) and progress.get(key, {}).get("status") != COMPLETED:
                alert = f"Falta {installation['code']}"
        rows.append(
            {
                **company,
                "total_modules": total,
                "modules_completed": completed,
                "completion_percent": 0 if total == 0 else round(completed / total * 100, 1),
                "next_module_code": next_module["code"] if next_module else None,
                "next_module_name": next_module["name"] if next_module else None,
                "alert": alert,
            }
        )
    return rows


def get_company_detail(company_id: str) -> Dict[str, Any]:
    company = require_company(company_id)
    modules = list_modules()
    timeline = []
    for module in modules:
        progress = get_progress(company_id, module["id"])
        timeline.append(
            {
                "module_id": module["id"],
                "code": module["code"],
                "name": module["name"],
                "category": module.get("category"),
                "duration_days": module["duration_days"],
                "status": progress.get("status"),
                "completed_at": progress.get("completed_at"),
                "custom_duration_days": progress.get("custom_duration_days"),
                "is_enabled": is_module_enabled(company_id, module["id"]),
            }
        )

    cohorts = {item["id"]: item for item in load_items(COHORTS_FILE)}
    module_map = {module["id"]: module for module in modules}
    history = []
    for allocation in load_items(ALLOCATIONS_FILE):
        if allocation.get("company_id") != company_id:
            continue
        cohort = cohorts.get(allocation["cohort_id"], {})
        module = module_map.get(allocation["module_id"], {})
        history.append(
            {
                "id": allocation["id"],
                "status": allocation["status"],
                "entry_day": allocation["entry_day"],
                "cohort_name": cohort.get("name"),
                "start_date": cohort.get("start_date"),
                "module_code": module.get("code"),
                "module_name": module.get("name"),
            }
        )
    history.sort(key=lambda item: item.get("start_date") or "", reverse=True)
    return {"company": company, "timeline": timeline, "history": history}
