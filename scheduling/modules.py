from __future__ import annotations

from typing import Any, Dict, List, Sequence

from .config import get_settings
from .logging import get_logger
from .progress import ensure_default_rows, remove_rows
from .storage import (
    ALLOCATIONS_FILE,
    BLOCKS_FILE,
    COMPANIES_FILE,
    MODULES_FILE,
    PREREQUISITES_FILE,
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

REQUIRED_FIELDS = ["id", "code", "category", "name", "duration_days"]
EDITABLE_FIELDS = {"code", "category", "name", "description", "duration_days", "profile", "is_mandatory"}

logger = get_logger(__name__)


def _parse_duration(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError("Duração (diárias) inválida.", reason="InvalidDuration")
    try:
        duration = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError("Duração (diárias) inválida.", reason="InvalidDuration") from exc
    if duration <= 0 or duration != value:
        raise ValidationError("Duração (diárias) deve ser um inteiro positivo.", reason="InvalidDuration")
    return duration


def _normalize_module(payload: Dict[str, Any]) -> Dict[str, Any]:
    normalized = dict(payload)
    if normalized.get("code"):
        normalized["code"] = str(normalized["code"]).strip().upper()
    if "duration_days" in normalized:
        normalized["duration_days"] = _parse_duration(normalized["duration_days"])
    if "is_mandatory" in normalized:
        normalized["is_mandatory"] = bool(normalized["is_mandatory"])
    return normalized


def list_modules() -> List[Dict[str, Any]]:
    return sorted(load_items(MODULES_FILE), key=lambda item: item.get("code", ""))


def get_module(module_id: str) -> Dict[str, Any] | None:
    return find_item(load_items(MODULES_FILE), module_id)


def require_module(module_id: str) -> Dict[str, Any]:
    module = get_module(module_id)
    if not module:
        raise NotFoundError(f"Módulo não encontrado: {module_id}", entity="Module")
    return module


def get_installation_module() -> Dict[str, Any] | None:
    code = get_settings().INSTALLATION_MODULE_CODE
    return find_item(load_items(MODULES_FILE), code, id_field="code")


def create_module(payload: Dict[str, Any]) -> Dict[str, Any]:
    payload = _normalize_module(payload)
    with transaction():
        items = load_items(MODULES_FILE)
        if not payload.get("id"):
            payload["id"] = next_sequential_id(items, prefix="mod-")
        payload.setdefault("description", None)
        payload.setdefault("profile", None)
        payload.setdefault("is_mandatory", False)
        require_fields(payload, REQUIRED_FIELDS)
        ensure_unique_id(items, payload["id"])
        ensure_unique_id(items, payload["code"], id_field="code")
        items.append(payload)
        save_items(MODULES_FILE, items)
        companies = load_items(COMPANIES_FILE)
        ensure_default_rows([(company["id"], payload["id"]) for company in companies])
    logger.info("Módulo criado: %s (%s)", payload["code"], payload["id"])
    return payload


def update_module(module_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(updates) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Campos não editáveis: {', '.join(sorted(unknown))}", reason="InvalidField")
    updates = _normalize_module(updates)
    with transaction():
        items = load_items(MODULES_FILE)
        module = find_item(items, module_id)
        if not module:
            raise NotFoundError(f"Módulo não encontrado: {module_id}", entity="Module")
        if "code" in updates and updates["code"] != module["code"]:
            if module["code"] == get_settings().INSTALLATION_MODULE_CODE:
                raise ConflictError(
                    "Não é permitido alterar o código do módulo global de instalação.",
                    reason="InstallationModuleProtected",
                )
            ensure_unique_id(items, updates["code"], id_field="code")
        module.update(updates)
        require_fields(module, REQUIRED_FIELDS)
        save_items(MODULES_FILE, items)
    return module


def delete_module(module_id: str) -> None:
    with transaction():
        items = load_items(MODULES_FILE)
        module = find_item(items, module_id)
        if not module:
            raise NotFoundError(f"Módulo não encontrado: {module_id}", entity="Module")
        if module["code"] == get_settings().INSTALLATION_MODULE_CODE:
            raise ConflictError(
                "Não é permitido excluir o módulo global de instalação.",
                reason="InstallationModuleProtected",
            )
        if any(block.get("module_id") == module_id for block in load_items(BLOCKS_FILE)):
            raise ConflictError(
                "Módulo usado em blocos de turma. Remova os blocos antes de excluir.",
                reason="ModuleInUse",
            )
        if any(item.get("module_id") == module_id for item in load_items(ALLOCATIONS_FILE)):
            raise ConflictError(
                "Módulo possui alocações históricas. Exclusão bloqueada para preservar histórico.",
                reason="ModuleHasHistory",
            )
        items.remove(module)
        save_items(MODULES_FILE, items)
        edges = [
            edge
            for edge in load_items(PREREQUISITES_FILE)
            if module_id not in (edge.get("module_id"), edge.get("prerequisite_module_id"))
        ]
        save_items(PREREQUISITES_FILE, edges)
        remove_rows(module_id=module_id)
    logger.info("Módulo removido: %s", module["code"])


def explicit_prerequisites(module_id: str) -> List[str]:
    return [
        edge["prerequisite_module_id"]
        for edge in load_items(PREREQUISITES_FILE)
        if edge.get("module_id") == module_id
    ]


def effective_prerequisites(
    module_id: str,
    explicit_ids: Sequence[str],
    installation_module_id: str | None,
) -> List[str]:
    """Pré-requisitos efetivos: a instalação vale para todo módulo que não seja ela mesma."""
    if installation_module_id is None:
        return list(explicit_ids)
    if module_id == installation_module_id:
        return []
    if installation_module_id in explicit_ids:
        return list(explicit_ids)
    return [installation_module_id, *explicit_ids]


def _creates_cycle(edges: Dict[str, List[str]], module_id: str) -> bool:
    stack = list(edges.get(module_id, []))
    seen: set[str] = set()
    while stack:
        current = stack.pop()
        if current == module_id:
            return True
        if current in seen:
            continue
        seen.add(current)
        stack.extend(edges.get(current, []))
    return False


def set_prerequisites(module_id: str, prerequisite_ids: Sequence[str]) -> List[str]:
    cleaned: List[str] = []
    for value in prerequisite_ids:
        key = str(value or "").strip()
        if key and key not in cleaned:
            cleaned.append(key)
    if module_id in cleaned:
        raise ValidationError(
            "Módulo não pode ter pré-requisito dele mesmo.", reason="SelfPrerequisite"
        )
    with transaction():
        modules = load_items(MODULES_FILE)
        if not find_item(modules, module_id):
            raise NotFoundError(f"Módulo não encontrado: {module_id}", entity="Module")
        missing = [item for item in cleaned if not find_item(modules, item)]
        if missing:
            raise NotFoundError(
                f"Pré-requisito não encontrado: {', '.join(missing)}",
                entity="Module",
                details={"module_ids": missing},
            )
        edges = [edge for edge in load_items(PREREQUISITES_FILE) if edge.get("module_id") != module_id]
        graph: Dict[str, List[str]] = {}
        for edge in edges:
            graph.setdefault(edge["module_id"], []).append(edge["prerequisite_module_id"])
        graph[module_id] = cleaned
        if _creates_cycle(graph, module_id):
            raise ValidationError(
                "Pré-requisitos criam dependência circular.", reason="PrerequisiteCycle"
            )
        edges.extend({"module_id": module_id, "prerequisite_module_id": item} for item in cleaned)
        save_items(PREREQUISITES_FILE, edges)
    return cleaned


def get_catalog() -> Dict[str, Any]:
    modules = list_modules()
    by_id = {module["id"]: module for module in modules}
    installation = get_installation_module()
    installation_id = installation["id"] if installation else None
    catalog = []
    for module in modules:
        prerequisites = effective_prerequisites(
            module["id"], explicit_prerequisites(module["id"]), installation_id
        )
        catalog.append(
            {
                **module,
                "prerequisites": [
                    {"id": item, "code": by_id[item]["code"], "name": by_id[item]["name"]}
                    for item in prerequisites
                    if item in by_id
                ],
            }
        )
    return {
        "modules": catalog,
        "global_rules": {
            "installation_prerequisite": installation["code"]
            if installation
            else get_settings().INSTALLATION_MODULE_CODE
        },
    }
