import pytest

from scheduling.allocation_status import update_allocation_status
from scheduling.allocations import create_allocation
from scheduling.cohorts import update_cohort
from scheduling.config import get_settings
from scheduling.modules import (
    create_module,
    delete_module,
    effective_prerequisites,
    get_catalog,
    set_prerequisites,
    update_module,
)
from scheduling.storage import (
    PROGRESS_FILE,
    ConflictError,
    PrerequisiteError,
    ValidationError,
    load_items,
)

from conftest import block


@pytest.mark.parametrize(
    "module_id, explicit, installation, expected",
    [
        ("mod-02", [], "mod-01", ["mod-01"]),
        ("mod-03", ["mod-02"], "mod-01", ["mod-01", "mod-02"]),
        ("mod-03", ["mod-02", "mod-01"], "mod-01", ["mod-02", "mod-01"]),
        ("mod-01", ["mod-02"], "mod-01", []),
        ("mod-03", ["mod-02"], None, ["mod-02"]),
    ],
)
def test_effective_prerequisites(module_id, explicit, installation, expected):
    assert effective_prerequisites(module_id, explicit, installation) == expected


def test_catalog_lists_installation_rule(seeded):
    catalog = get_catalog()
    by_code = {item["code"]: item for item in catalog["modules"]}

    assert catalog["global_rules"] == {"installation_prerequisite": "MOD-01"}
    assert by_code["MOD-01"]["prerequisites"] == []
    assert [item["code"] for item in by_code["MOD-05"]["prerequisites"]] == ["MOD-01"]


def test_installation_code_is_configurable(seeded, monkeypatch):
    monkeypatch.setenv("INSTALLATION_MODULE_CODE", "mod-02")
    get_settings.cache_clear()

    by_code = {item["code"]: item for item in get_catalog()["modules"]}
    assert by_code["MOD-02"]["prerequisites"] == []
    assert [item["code"] for item in by_code["MOD-04"]["prerequisites"]] == ["MOD-02", "MOD-01"]


def test_prerequisite_cycles_are_rejected(seeded):
    set_prerequisites("mod-03", ["mod-02"])

    with pytest.raises(ValidationError) as excinfo:
        set_prerequisites("mod-02", ["mod-03"])
    assert excinfo.value.reason == "PrerequisiteCycle"

    with pytest.raises(ValidationError) as excinfo:
        set_prerequisites("mod-02", ["mod-02"])
    assert excinfo.value.reason == "SelfPrerequisite"


def test_create_module_adds_default_rows(seeded):
    module = create_module(
        {"code": "mod-07", "category": "CAM", "name": "Pós-processadores", "duration_days": 2}
    )

    assert module["id"] == "mod-007"
    assert module["code"] == "MOD-07"
    rows = [item for item in load_items(PROGRESS_FILE) if item["module_id"] == module["id"]]
    assert len(rows) == 4
    assert {item["status"] for item in rows} == {"Nao_iniciado"}


def test_create_module_validation(seeded):
    with pytest.raises(ConflictError):
        create_module({"code": "MOD-02", "category": "CAD", "name": "Outro", "duration_days": 1})
    with pytest.raises(ValidationError) as excinfo:
        create_module({"code": "MOD-08", "category": "CAD", "name": "Outro", "duration_days": 0})
    assert excinfo.value.reason == "InvalidDuration"


def test_update_module_rejects_unknown_fields(seeded):
    with pytest.raises(ValidationError):
        update_module("mod-02", {"id": "mod-99"})

    assert update_module("mod-02", {"duration_days": 4})["duration_days"] == 4


def test_installation_code_cannot_be_renamed(seeded):
    with pytest.raises(ConflictError) as excinfo:
        update_module("mod-01", {"code": "INST-01"})
    assert excinfo.value.reason == "InstallationModuleProtected"

    assert update_module("mod-01", {"code": "mod-01", "name": "Instalação"})["code"] == "MOD-01"


def test_execution_gate_survives_installation_rename_attempt(seeded):
    allocation = create_allocation("coh-02", "comp-03", "mod-02", 2)
    with pytest.raises(ConflictError):
        update_module("mod-01", {"code": "INST-01"})

    with pytest.raises(PrerequisiteError):
        update_allocation_status(allocation["id"], "Executado")


def test_delete_module_protection(seeded):
    with pytest.raises(ConflictError) as excinfo:
        delete_module("mod-01")
    assert excinfo.value.reason == "InstallationModuleProtected"

    with pytest.raises(ConflictError) as excinfo:
        delete_module("mod-02")
    assert excinfo.value.reason == "ModuleInUse"


def test_delete_module_with_history(seeded):
    update_allocation_status("all-001", "Cancelado")
    update_cohort("coh-01", {"blocks": [block("mod-02", 1, 1, 3)]})

    with pytest.raises(ConflictError) as excinfo:
        delete_module("mod-03")
    assert excinfo.value.reason == "ModuleHasHistory"


def test_delete_unused_module(seeded):
    delete_module("mod-06")

    assert all(item["module_id"] != "mod-06" for item in load_items(PROGRESS_FILE))
    assert "MOD-06" not in {item["code"] for item in get_catalog()["modules"]}
