from __future__ import annotations

from typing import Any, Dict, List

from .storage import (
    ACTIVATION_FILE,
    PROGRESS_FILE,
    load_items,
    next_sequential_id,
    save_items,
)

PROGRESS_STATUSES = ("Nao_iniciado", "Planejado", "Em_execucao", "Concluido")
DEFAULT_PROGRESS_STATUS = "Nao_iniciado"
COMPLETED = "Concluido"


def _find_row(items: List[Dict[str, Any]], company_id: str, module_id: str) -> Dict[str, Any] | None:
    return next(
        (
            item
            for item in items
            if item.get("company_id") == company_id and item.get("module_id") == module_id
        ),
        None,
    )


def add_default_rows(
    progress: List[Dict[str, Any]],
    activation: List[Dict[str, Any]],
    company_id: str,
    module_id: str,
) -> None:
    if not _find_row(progress, company_id, module_id):
        progress.append(
            {
                "id": next_sequential_id(progress, prefix="prog-"),
                "company_id": company_id,
                "module_id": module_id,
                "status": DEFAULT_PROGRESS_STATUS,
                "notes": None,
                "completed_at": None,
                "custom_duration_days": None,
            }
        )
    if not _find_row(activation, company_id, module_id):
        activation.append({"company_id": company_id, "module_id": module_id, "is_enabled": True})


def ensure_default_rows(pairs: List[tuple[str, str]]) -> None:
    progress = load_items(PROGRESS_FILE)
    activation = load_items(ACTIVATION_FILE)
    for company_id, module_id in pairs:
        add_default_rows(progress, activation, company_id, module_id)
    save_items(PROGRESS_FILE, progress)
    save_items(ACTIVATION_FILE, activation)


def get_progress(company_id: str, module_id: str) -> Dict[str, Any]:
    row = _find_row(load_items(PROGRESS_FILE), company_id, module_id)
    if row:
        return row
    return {
        "company_id": company_id,
        "module_id": module_id,
        "status": DEFAULT_PROGRESS_STATUS,
        "notes": None,
        "completed_at": None,
        "custom_duration_days": None,
    }


def is_module_enabled(company_id: str, module_id: str) -> bool:
    row = _find_row(load_items(ACTIVATION_FILE), company_id, module_id)
    return True if row is None else bool(row.get("is_enabled", True))


def has_completed_module(company_id: str, module_id: str) -> bool:
    return get_progress(company_id, module_id).get("status") == COMPLETED


def upsert_progress(
    company_id: str,
    module_id: str,
    status: str,
    completed_at: str | None,
    notes: Any = ...,
) -> Dict[str, Any]:
    """Cria ou atualiza a linha de progresso; `notes` só muda quando informado."""
    items = load_items(PROGRESS_FILE)
    row = _find_row(items, company_id, module_id)
    if row is None:
        row = {
            "id": next_sequential_id(items, prefix="prog-"),
            "company_id": company_id,
            "module_id": module_id,
            "notes": None,
            "custom_duration_days": None,
        }
        items.append(row)
    row["status"] = status
    row["completed_at"] = completed_at
    if notes is not ...:
        row["notes"] = notes
    save_items(PROGRESS_FILE, items)
    return row


def mark_module_completed(company_id: str, module_id: str, completed_at: str) -> Dict[str, Any]:
    return upsert_progress(company_id, module_id, COMPLETED, completed_at)


def set_activation(company_id: str, module_id: str, is_enabled: bool) -> None:
    items = load_items(ACTIVATION_FILE)
    row = _find_row(items, company_id, module_id)
    if row is None:
        items.append({"company_id": company_id, "module_id": module_id, "is_enabled": is_enabled})
    else:
        row["is_enabled"] = is_enabled
    save_items(ACTIVATION_FILE, items)


def remove_rows(company_id: str | None = None, module_id: str | None = None) -> None:
    for filename in (PROGRESS_FILE, ACTIVATION_FILE):
        items = load_items(filename)
        remaining = [
            item
            for item in items
            if not (
                (company_id is None or item.get("company_id") == company_id)
                and (module_id is None or item.get("module_id") == module_id)
            )
        ]
        save_items(filename, remaining)


def progress_index() -> Dict[tuple[str, str], Dict[str, Any]]:
    return {(item["company_id"], item["module_id"]): item for item in load_items(PROGRESS_FILE)}


def activation_index() -> Dict[tuple[str, str], bool]:
    return {
        (item["company_id"], item["module_id"]): bool(item.get("is_enabled", True))
        for item in load_items(ACTIVATION_FILE)
    }
