from __future__ import annotations

import copy
import json
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Tuple

from .config import get_settings

MODULES_FILE = "modules.json"
PREREQUISITES_FILE = "module_prerequisites.json"
COMPANIES_FILE = "companies.json"
PROGRESS_FILE = "company_module_progress.json"
ACTIVATION_FILE = "company_module_activation.json"
TECHNICIANS_FILE = "technicians.json"
COHORTS_FILE = "cohorts.json"
BLOCKS_FILE = "cohort_blocks.json"
ALLOCATIONS_FILE = "allocations.json"

ALL_FILES = [
    MODULES_FILE,
    PREREQUISITES_FILE,
    COMPANIES_FILE,
    PROGRESS_FILE,
    ACTIVATION_FILE,
    TECHNICIANS_FILE,
    COHORTS_FILE,
    BLOCKS_FILE,
    ALLOCATIONS_FILE,
]


class SchedulingError(Exception):
    """Erro de negócio com um código estável (`reason`) e detalhes para o chamador."""

    def __init__(self, message: str, reason: str | None = None, details: Dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.reason = reason or type(self).__name__
        self.details = details or {}


class ValidationError(SchedulingError, ValueError):
    pass


class NotFoundError(SchedulingError, LookupError):
    def __init__(self, message: str, entity: str, details: Dict[str, Any] | None = None):
        super().__init__(message, reason="NotFound", details=details)
        self.entity = entity


class ConflictError(SchedulingError):
    pass


class CapacityError(ConflictError):
    def __init__(self, message: str, details: Dict[str, Any] | None = None):
        super().__init__(message, reason="CapacityExceeded", details=details)


class PrerequisiteError(SchedulingError):
    override_available = True


_local = threading.local()
_write_lock = threading.RLock()


def data_dir() -> Path:
    return Path(get_settings().DATA_DIR)


def _pending() -> Dict[str, List[Dict[str, Any]]] | None:
    return getattr(_local, "pending", None)


def _read_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Arquivo não encontrado: {path}")
    with path.open("r", encoding="utf-8") as file:
        return json.load(file)


def _write_temp(path: Path, payload: Dict[str, Any]) -> str:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as file:
            json.dump(payload, file, ensure_ascii=False, indent=2)
            file.write("\n")
    except BaseException:
        os.unlink(tmp_name)
        raise
    return tmp_name


def _write_json(path: Path, payload: Dict[str, Any]) -> None:
    os.replace(_write_temp(path, payload), path)


def init_storage() -> None:
    base = data_dir()
    base.mkdir(parents=True, exist_ok=True)
    for filename in ALL_FILES:
        path = base / filename
        if not path.exists():
            _write_json(path, {"items": []})


def load_items(filename: str) -> List[Dict[str, Any]]:
    pending = _pending()
    if pending is not None and filename in pending:
        return copy.deepcopy(pending[filename])
    # a commit in progress replaces several files; wait for it to finish
    with _write_lock:
        data = _read_json(data_dir() / filename)
    return data.get("items", [])


def save_items(filename: str, items: List[Dict[str, Any]]) -> None:
    pending = _pending()
    if pending is not None:
        pending[filename] = copy.deepcopy(items)
        return
    with _write_lock:
        _commit({filename: items})


def _stage_file(filename: str, items: List[Dict[str, Any]]) -> Tuple[str, Path]:
    path = data_dir() / filename
    data = _read_json(path)
    data["items"] = items
    return _write_temp(path, data), path


def _commit(pending: Dict[str, List[Dict[str, Any]]]) -> None:
    """Grava todos os arquivos temporários antes de substituir qualquer um."""
    staged: List[Tuple[str, Path]] = []
    try:
        for filename, items in pending.items():
            staged.append(_stage_file(filename, items))
    except BaseException:
        for tmp_name, _ in staged:
            os.unlink(tmp_name)
        raise
    for tmp_name, path in staged:
        os.replace(tmp_name, path)


@contextmanager
def transaction() -> Iterator[None]:
    """Agrupa escritas: tudo é gravado ao final do bloco ou nada é gravado.

    Um único escritor por vez. Leituras dentro do bloco enxergam as escritas
    pendentes do próprio bloco. Transações aninhadas participam da externa.
    """
    if _pending() is not None:
        yield
        return
    with _write_lock:
        _local.pending = {}
        try:
            yield
            _commit(_local.pending)
        finally:
            _local.pending = None


def require_fields(payload: Dict[str, Any], fields: List[str]) -> None:
    missing = [field for field in fields if payload.get(field) in (None, "")]
    if missing:
        raise ValidationError(
            f"Campos obrigatórios ausentes: {', '.join(missing)}",
            reason="MissingFields",
            details={"fields": missing},
        )


def ensure_unique_id(items: List[Dict[str, Any]], item_id: str, id_field: str = "id") -> None:
    if any(item.get(id_field) == item_id for item in items):
        raise ConflictError(
            f"{id_field} já cadastrado: {item_id}",
            reason="Duplicate",
            details={"field": id_field, "value": item_id},
        )


def find_item(items: List[Dict[str, Any]], item_id: str, id_field: str = "id") -> Dict[str, Any] | None:
    return next((item for item in items if item.get(id_field) == item_id), None)


def next_sequential_id(items: List[Dict[str, Any]], prefix: str, id_field: str = "id") -> str:
    highest = 0
    for item in items:
        value = str(item.get(id_field, ""))
        if not value.startswith(prefix):
            continue
        suffix = value[len(prefix) :]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"{prefix}{highest + 1:03d}"
