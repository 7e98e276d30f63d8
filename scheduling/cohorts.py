from __future__ import annotations

from typing import Any, Dict, List

from .blocks import blocks_for_cohort, validate_blocks
from .business_days import cohort_end_date, parse_iso_date
from .conflicts import CANCELLED_COHORT, conflict_message, find_technician_conflict
from .logging import get_logger
from .storage import (
    ALLOCATIONS_FILE,
    BLOCKS_FILE,
    COHORTS_FILE,
    COMPANIES_FILE,
    MODULES_FILE,
    TECHNICIANS_FILE,
    ConflictError,
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

REQUIRED_FIELDS = ["code", "name", "start_date", "capacity_companies", "status"]
COHORT_STATUSES = {"Planejada", "Aguardando_quorum", "Confirmada", "Concluida", "Cancelada"}
EDITABLE_FIELDS = {
    "code",
    "name",
    "start_date",
    "technician_id",
    "status",
    "capacity_companies",
    "period",
    "delivery_mode",
    "notes",
}
CANCELLED_ALLOCATION = "Cancelado"

logger = get_logger(__name__)


def _normalize_cohort(payload: Dict[str, Any]) -> Dict[str, Any]:
    normalized = dict(payload)
    for field in ("code", "name"):
        if field in normalized:
            value = str(normalized.get(field) or "").strip()
            if len(value) < 3:
                raise ValidationError(
                    f"Campo {field} precisa de ao menos 3 caracteres.", reason="MissingFields"
                )
            normalized[field] = value.upper() if field == "code" else value
    if "start_date" in normalized:
        normalized["start_date"] = parse_iso_date(normalized["start_date"]).isoformat()
    if "status" in normalized and normalized["status"] not in COHORT_STATUSES:
        raise ValidationError(f"Status inválido para turma: {normalized['status']}", reason="InvalidStatus")
    if "capacity_companies" in normalized:
        capacity = normalized["capacity_companies"]
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
            raise ValidationError(
                "Capacidade da turma deve ser um inteiro positivo.", reason="InvalidCapacity"
            )
    if "technician_id" in normalized:
        normalized["technician_id"] = str(normalized.get("technician_id") or "").strip() or None
    return normalized


def _ensure_references(blocks: List[Dict[str, Any]], technician_id: str | None) -> None:
    modules = load_items(MODULES_FILE)
    missing = [block["module_id"] for block in blocks if not find_item(modules, block["module_id"])]
    if missing:
        raise NotFoundError(
            f"Módulo não encontrado: {', '.join(missing)}", entity="Module", details={"module_ids": missing}
        )
    if technician_id and not find_item(load_items(TECHNICIANS_FILE), technician_id):
        raise NotFoundError(f"Técnico não encontrado: {technician_id}", entity="Technician")


def _check_technician(
    technician_id: str | None,
    status: str,
    start_date: str,
    blocks: List[Dict[str, Any]],
    exclude_cohort_id: str | None = None,
) -> None:
    if not technician_id or status == CANCELLED_COHORT:
        return
    conflict = find_technician_conflict(
        technician_id,
        start_date,
        blocks,
        exclude_cohort_id=exclude_cohort_id,
        status=status,
    )
    if conflict:
        logger.warning("Conflito de agenda do técnico %s com a turma %s", technician_id, conflict.code)
        raise ConflictError(
            conflict_message(conflict),
            reason="TechnicianDoubleBooked",
            details=conflict.as_dict(),
        )


def _insert_blocks(cohort_id: str, blocks: List[Dict[str, Any]]) -> None:
    items = [item for item in load_items(BLOCKS_FILE) if item.get("cohort_id") != cohort_id]
    for block in blocks:
        items.append(
            {
                "id": next_sequential_id(items, prefix="blk-"),
                "cohort_id": cohort_id,
                "module_id": block["module_id"],
                "order_in_cohort": block["order_in_cohort"],
                "start_day_offset": block["start_day_offset"],
                "duration_days": block["duration_days"],
            }
        )
    save_items(BLOCKS_FILE, items)


def get_cohort_blocks(cohort_id: str) -> List[Dict[str, Any]]:
    return blocks_for_cohort(load_items(BLOCKS_FILE), cohort_id)


def require_cohort(cohort_id: str) -> Dict[str, Any]:
    cohort = find_item(load_items(COHORTS_FILE), cohort_id)
    if not cohort:
        raise NotFoundError(f"Turma não encontrada: {cohort_id}", entity="Cohort")
    return cohort


def create_cohort(draft: Dict[str, Any]) -> Dict[str, Any]:
    payload = _normalize_cohort(
        {"status": "Planejada", "technician_id": None, "period": "Integral", "delivery_mode": "Online", "notes": None, **draft}
    )
    raw_blocks = payload.pop("blocks", None) or []
    blocks = validate_blocks(raw_blocks)
    require_fields(payload, REQUIRED_FIELDS)

    with transaction():
        items = load_items(COHORTS_FILE)
        ensure_unique_id(items, payload["code"], id_field="code")
        _ensure_references(blocks, payload["technician_id"])
        _check_technician(payload["technician_id"], payload["status"], payload["start_date"], blocks)

        payload["id"] = next_sequential_id(items, prefix="coh-")
        items.append(payload)
        save_items(COHORTS_FILE, items)
        _insert_blocks(payload["id"], blocks)

    logger.info("Turma criada: %s (%s) com %d blocos", payload["code"], payload["id"], len(blocks))
    return {"id": payload["id"]}


def _check_active_allocations(cohort_id: str, blocks: List[Dict[str, Any]]) -> None:
    start_by_module = {block["module_id"]: block["start_day_offset"] for block in blocks}
    active = [
        item
        for item in load_items(ALLOCATIONS_FILE)
        if item.get("cohort_id") == cohort_id and item.get("status") != CANCELLED_ALLOCATION
    ]
    removed = [item["id"] for item in active if item["module_id"] not in start_by_module]
    if removed:
        raise ConflictError(
            "Não é possível remover bloco com alocações ativas. Cancele/realoque as alocações primeiro.",
            reason="AllocationModuleRemoved",
            details={"allocation_ids": removed},
        )
    invalid = [
        item["id"]
        for item in active
        if item["entry_day"] < start_by_module[item["module_id"]]
    ]
    if invalid:
        raise ConflictError(
            "Nova sequência de blocos inválida para alocações existentes "
            "(dia de entrada menor que o início do bloco).",
            reason="AllocationEntryDayInvalid",
            details={"allocation_ids": invalid},
        )


def update_cohort(cohort_id: str, partial: Dict[str, Any]) -> Dict[str, Any]:
    partial = dict(partial)
    raw_blocks = partial.pop("blocks", None)
    unknown = set(partial) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Campos não editáveis: {', '.join(sorted(unknown))}", reason="InvalidField")
    updates = _normalize_cohort(partial)

    with transaction():
        items = load_items(COHORTS_FILE)
        cohort = find_item(items, cohort_id)
        if not cohort:
            raise NotFoundError(f"Turma não encontrada: {cohort_id}", entity="Cohort")
        if not updates and raw_blocks is None:
            return {"ok": True, "changed": False}

        blocks = None
        if raw_blocks is not None:
            blocks = validate_blocks(raw_blocks)
            _check_active_allocations(cohort_id, blocks)
        if "code" in updates and updates["code"] != cohort["code"]:
            ensure_unique_id(items, updates["code"], id_field="code")

        next_technician = updates["technician_id"] if "technician_id" in updates else cohort.get("technician_id")
        next_start = updates.get("start_date", cohort["start_date"])
        next_status = updates.get("status", cohort["status"])
        next_blocks = blocks if blocks is not None else get_cohort_blocks(cohort_id)
        _ensure_references(next_blocks if blocks is not None else [], updates.get("technician_id"))
        _check_technician(next_technician, next_status, next_start, next_blocks, exclude_cohort_id=cohort_id)

        if updates:
            cohort.update(updates)
            save_items(COHORTS_FILE, items)
        if blocks is not None:
            _insert_blocks(cohort_id, blocks)

    logger.info("Turma atualizada: %s (%s)", cohort["code"], cohort_id)
    return {"ok": True, "changed": True}


def delete_cohort(cohort_id: str) -> None:
    with transaction():
        items = load_items(COHORTS_FILE)
        cohort = find_item(items, cohort_id)
        if not cohort:
            raise NotFoundError(f"Turma não encontrada: {cohort_id}", entity="Cohort")
        items.remove(cohort)
        save_items(COHORTS_FILE, items)
        save_items(BLOCKS_FILE, [item for item in load_items(BLOCKS_FILE) if item.get("cohort_id") != cohort_id])
        save_items(
            ALLOCATIONS_FILE,
            [item for item in load_items(ALLOCATIONS_FILE) if item.get("cohort_id") != cohort_id],
        )
    logger.info("Turma removida: %s (%s)", cohort["code"], cohort_id)


def _technician_names() -> Dict[str, str]:
    return {item["id"]: item["name"] for item in load_items(TECHNICIANS_FILE)}


def active_company_ids(cohort_id: str, allocations: List[Dict[str, Any]] | None = None) -> set[str]:
    rows = allocations if allocations is not None else load_items(ALLOCATIONS_FILE)
    return {
        item["company_id"]
        for item in rows
        if item.get("cohort_id") == cohort_id and item.get("status") != CANCELLED_ALLOCATION
    }


def list_cohorts() -> List[Dict[str, Any]]:
    technicians = _technician_names()
    rows = [
        {**cohort, "technician_name": technicians.get(cohort.get("technician_id") or "")}
        for cohort in load_items(COHORTS_FILE)
    ]
    rows.sort(key=lambda item: item["start_date"])
    return rows


def list_calendar_cohorts() -> List[Dict[str, Any]]:
    modules = {item["id"]: item for item in load_items(MODULES_FILE)}
    companies = {item["id"]: item["name"] for item in load_items(COMPANIES_FILE)}
    all_blocks = load_items(BLOCKS_FILE)
    allocations = load_items(ALLOCATIONS_FILE)
    rows = []
    for cohort in list_cohorts():
        blocks = blocks_for_cohort(all_blocks, cohort["id"])
        participants = active_company_ids(cohort["id"], allocations)
        rows.append(
            {
                **cohort,
                "end_date": cohort_end_date(cohort["start_date"], blocks).isoformat(),
                "occupancy": len(participants),
                "participant_names": sorted(companies.get(item, item) for item in participants),
                "module_codes": [modules.get(block["module_id"], {}).get("code") for block in blocks],
                "module_names": [modules.get(block["module_id"], {}).get("name") for block in blocks],
                "total_duration_days": sum(block["duration_days"] for block in blocks) or 1,
            }
        )
    return rows


def get_cohort(cohort_id: str) -> Dict[str, Any]:
    cohort = require_cohort(cohort_id)
    modules = {item["id"]: item for item in load_items(MODULES_FILE)}
    companies = {item["id"]: item["name"] for item in load_items(COMPANIES_FILE)}
    blocks = [
        {
            **block,
            "module_code": modules.get(block["module_id"], {}).get("code"),
            "module_name": modules.get(block["module_id"], {}).get("name"),
            "category": modules.get(block["module_id"], {}).get("category"),
        }
        for block in get_cohort_blocks(cohort_id)
    ]
    all_allocations = load_items(ALLOCATIONS_FILE)
    allocations = [
        {
            **item,
            "company_name": companies.get(item["company_id"]),
            "module_code": modules.get(item["module_id"], {}).get("code"),
            "module_name": modules.get(item["module_id"], {}).get("name"),
        }
        for item in all_allocations
        if item.get("cohort_id") == cohort_id
    ]
    allocations.sort(key=lambda item: (item["entry_day"], item.get("company_name") or ""))
    return {
        **cohort,
        "technician_name": _technician_names().get(cohort.get("technician_id") or ""),
        "end_date": cohort_end_date(cohort["start_date"], blocks).isoformat(),
        "occupancy": len(active_company_ids(cohort_id, all_allocations)),
        "blocks": blocks,
        "allocations": allocations,
    }
