from __future__ import annotations

from typing import Any, Dict, List

from .blocks import blocks_for_cohort
from .business_days import cohort_business_dates, cohort_end_date, parse_iso_date
from .logging import get_logger
from .storage import (
    ALLOCATIONS_FILE,
    BLOCKS_FILE,
    COHORTS_FILE,
    MODULES_FILE,
    TECHNICIANS_FILE,
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

REQUIRED_FIELDS = ["id", "name"]
ACTIVE_ALLOCATION_STATUSES = {"Previsto", "Confirmado", "Executado"}

logger = get_logger(__name__)


def _clean_module_ids(raw_ids: Any) -> List[str]:
    cleaned: List[str] = []
    for value in raw_ids or []:
        key = str(value or "").strip()
        if key and key not in cleaned:
            cleaned.append(key)
    return cleaned


def _ensure_modules_exist(module_ids: List[str]) -> None:
    modules = load_items(MODULES_FILE)
    missing = [item for item in module_ids if not find_item(modules, item)]
    if missing:
        raise NotFoundError(
            f"Módulo não encontrado: {', '.join(missing)}", entity="Module", details={"module_ids": missing}
        )


def _normalize_technician(payload: Dict[str, Any]) -> Dict[str, Any]:
    normalized = dict(payload)
    if "name" in normalized:
        name = str(normalized.get("name") or "").strip()
        if len(name) < 2:
            raise ValidationError("Nome do técnico é obrigatório.", reason="MissingFields")
        normalized["name"] = name
    if "module_ids" in normalized:
        normalized["module_ids"] = _clean_module_ids(normalized["module_ids"])
    return normalized


def _with_skills(technician: Dict[str, Any]) -> Dict[str, Any]:
    modules = {item["id"]: item for item in load_items(MODULES_FILE)}
    skills = [
        {"id": module_id, "code": modules[module_id]["code"], "name": modules[module_id]["name"]}
        for module_id in technician.get("module_ids") or []
        if module_id in modules
    ]
    skills.sort(key=lambda item: item["code"])
    return {**technician, "skills": skills}


def list_technicians() -> List[Dict[str, Any]]:
    items = sorted(load_items(TECHNICIANS_FILE), key=lambda item: item.get("name", ""))
    return [_with_skills(item) for item in items]


def create_technician(payload: Dict[str, Any]) -> Dict[str, Any]:
    payload = _normalize_technician({"module_ids": [], "availability_notes": None, **payload})
    with transaction():
        items = load_items(TECHNICIANS_FILE)
        if not payload.get("id"):
            payload["id"] = next_sequential_id(items, prefix="tech-")
        require_fields(payload, REQUIRED_FIELDS)
        ensure_unique_id(items, payload["id"])
        _ensure_modules_exist(payload["module_ids"])
        items.append(payload)
        save_items(TECHNICIANS_FILE, items)
    logger.info("Técnico criado: %s (%s)", payload["name"], payload["id"])
    return payload


def update_technician(technician_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    updates = _normalize_technician(updates)
    with transaction():
        items = load_items(TECHNICIANS_FILE)
        technician = find_item(items, technician_id)
        if not technician:
            raise NotFoundError(f"Técnico não encontrado: {technician_id}", entity="Technician")
        if "module_ids" in updates:
            _ensure_modules_exist(updates["module_ids"])
        technician.update(updates)
        require_fields(technician, REQUIRED_FIELDS)
        save_items(TECHNICIANS_FILE, items)
    return technician


def set_skills(technician_id: str, module_ids: List[str]) -> Dict[str, Any]:
    return update_technician(technician_id, {"module_ids": module_ids})


def delete_technician(technician_id: str) -> None:
    with transaction():
        items = load_items(TECHNICIANS_FILE)
        technician = find_item(items, technician_id)
        if not technician:
            raise NotFoundError(f"Técnico não encontrado: {technician_id}", entity="Technician")
        items.remove(technician)
        save_items(TECHNICIANS_FILE, items)
        cohorts = load_items(COHORTS_FILE)
        for cohort in cohorts:
            if cohort.get("technician_id") == technician_id:
                cohort["technician_id"] = None
        save_items(COHORTS_FILE, cohorts)
    logger.info("Técnico removido: %s", technician["name"])


def technician_calendar(technician_id: str, date_from: str = "", date_to: str = "") -> Dict[str, Any]:
    technician = find_item(load_items(TECHNICIANS_FILE), technician_id)
    if not technician:
        raise NotFoundError(f"Técnico não encontrado: {technician_id}", entity="Technician")
    start_limit = parse_iso_date(date_from) if date_from else None
    end_limit = parse_iso_date(date_to) if date_to else None

    modules = {item["id"]: item for item in load_items(MODULES_FILE)}
    all_blocks = load_items(BLOCKS_FILE)
    allocations = load_items(ALLOCATIONS_FILE)
    cohorts = []
    for cohort in load_items(COHORTS_FILE):
        if cohort.get("technician_id") != technician_id:
            continue
        start = parse_iso_date(cohort["start_date"])
        if start_limit and start < start_limit:
            continue
        if end_limit and start > end_limit:
            continue
        blocks = blocks_for_cohort(all_blocks, cohort["id"])
        occupancy = sum(
            1
            for item in allocations
            if item.get("cohort_id") == cohort["id"] and item.get("status") in ACTIVE_ALLOCATION_STATUSES
        )
        cohorts.append(
            {
                "id": cohort["id"],
                "code": cohort["code"],
                "name": cohort["name"],
                "start_date": cohort["start_date"],
                "end_date": cohort_end_date(start, blocks).isoformat(),
                "status": cohort["status"],
                "capacity_companies": cohort["capacity_companies"],
                "occupancy": occupancy,
                "business_dates": [day.isoformat() for day in cohort_business_dates(start, blocks)],
                "blocks": [
                    {
                        "module_code": modules.get(block["module_id"], {}).get("code"),
                        "module_name": modules.get(block["module_id"], {}).get("name"),
                        "order_in_cohort": block["order_in_cohort"],
                        "start_day_offset": block["start_day_offset"],
                        "duration_days": block["duration_days"],
                    }
                    for block in blocks
                ],
            }
        )
    cohorts.sort(key=lambda item: item["start_date"])
    return {
        "technician": {"id": technician["id"], "name": technician["name"]},
        "cohorts": cohorts,
    }
