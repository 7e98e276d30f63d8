import pytest

from scheduling.allocation_status import update_allocation_status
from scheduling.allocations import (
    allocate_company_by_entry_module,
    create_allocation,
    get_allocation_suggestions,
    merge_allocation,
)
from scheduling.cohorts import update_cohort
from scheduling.companies import create_company, set_module_activation, update_progress
from scheduling.storage import (
    ALLOCATIONS_FILE,
    CapacityError,
    ConflictError,
    NotFoundError,
    ValidationError,
    find_item,
    load_items,
)


def _allocation(allocation_id):
    return find_item(load_items(ALLOCATIONS_FILE), allocation_id)


# ── merge_allocation ──────────────────────────────────────────────────────


def test_merge_revives_cancelled_row():
    existing = {"id": "all-001", "entry_day": 2, "status": "Cancelado", "notes": "antiga"}

    merged = merge_allocation(existing, {"entry_day": 3, "notes": None})

    assert merged == {"id": "all-001", "entry_day": 3, "status": "Previsto", "notes": "antiga"}


@pytest.mark.parametrize("status", ["Previsto", "Confirmado", "Executado"])
def test_merge_never_downgrades(status):
    existing = {"id": "all-001", "entry_day": 2, "status": status, "notes": None}

    merged = merge_allocation(existing, {"entry_day": 1, "notes": "nova"})

    assert merged["status"] == status
    assert merged["entry_day"] == 1
    assert merged["notes"] == "nova"


# ── create_allocation ─────────────────────────────────────────────────────


def test_create_allocation(seeded):
    allocation = create_allocation("coh-01", "comp-02", "mod-02", 1, "primeira turma")

    assert allocation["id"] == "all-003"
    assert allocation["status"] == "Previsto"
    assert allocation["override_installation_prereq"] is False
    assert _allocation("all-003")["notes"] == "primeira turma"


@pytest.mark.parametrize(
    "cohort_id, company_id, module_id, entry_day, reason",
    [
        ("coh-01", "comp-02", "mod-02", 0, "InvalidEntryDay"),
        ("coh-01", "comp-02", "mod-05", 1, "ModuleNotInCohort"),
        ("coh-01", "comp-02", "mod-03", 3, "EntryDayBeforeBlock"),
    ],
)
def test_create_allocation_validation(seeded, cohort_id, company_id, module_id, entry_day, reason):
    with pytest.raises(ValidationError) as excinfo:
        create_allocation(cohort_id, company_id, module_id, entry_day)
    assert excinfo.value.reason == reason


def test_create_allocation_unknown_references(seeded):
    with pytest.raises(NotFoundError) as excinfo:
        create_allocation("coh-99", "comp-02", "mod-02", 1)
    assert excinfo.value.entity == "Cohort"

    with pytest.raises(NotFoundError) as excinfo:
        create_allocation("coh-01", "comp-99", "mod-02", 1)
    assert excinfo.value.entity == "Company"


def test_disabled_module_cannot_be_allocated(seeded):
    set_module_activation("comp-02", "mod-02", False)

    with pytest.raises(ValidationError) as excinfo:
        create_allocation("coh-01", "comp-02", "mod-02", 1)
    assert excinfo.value.reason == "ModuleDisabled"


def test_active_duplicate_is_rejected(seeded):
    with pytest.raises(ConflictError) as excinfo:
        create_allocation("coh-01", "comp-01", "mod-03", 4)
    assert excinfo.value.reason == "DuplicateAllocation"


def test_cancelled_allocation_is_revived(seeded):
    update_allocation_status("all-001", "Cancelado")

    allocation = create_allocation("coh-01", "comp-01", "mod-03", 5)

    assert allocation["id"] == "all-001"
    assert allocation["status"] == "Previsto"
    assert allocation["entry_day"] == 5
    assert allocation["notes"] == "Entrou no modulo de montagem"
    assert len(load_items(ALLOCATIONS_FILE)) == 2


def test_capacity_counts_distinct_companies(seeded):
    update_cohort("coh-01", {"capacity_companies": 2})

    create_allocation("coh-01", "comp-02", "mod-02", 1)
    # Metal Forte already occupies a seat, another module does not take a new one
    create_allocation("coh-01", "comp-01", "mod-02", 1)

    with pytest.raises(CapacityError) as excinfo:
        create_allocation("coh-01", "comp-03", "mod-02", 1)
    assert excinfo.value.reason == "CapacityExceeded"
    assert excinfo.value.details == {"capacity_companies": 2, "occupied": 2}


def test_cancelled_allocations_free_capacity(seeded):
    update_cohort("coh-01", {"capacity_companies": 1})
    with pytest.raises(CapacityError):
        create_allocation("coh-01", "comp-02", "mod-02", 1)

    update_allocation_status("all-001", "Cancelado")

    assert create_allocation("coh-01", "comp-02", "mod-02", 1)["status"] == "Previsto"


# ── allocate_company_by_entry_module ──────────────────────────────────────


def test_guided_allocation_uses_block_start_days(seeded):
    result = allocate_company_by_entry_module("coh-01", "comp-02", "mod-02", ["mod-02", "mod-03"])

    assert result["ok"] is True
    assert result["allocations_created"] == [
        {"module_id": "mod-02", "module_name": "TopSolid Design Basico", "entry_day": 1},
        {"module_id": "mod-03", "module_name": "TopSolid Montagem", "entry_day": 4},
    ]


def test_guided_allocation_always_includes_entry_module(seeded):
    result = allocate_company_by_entry_module("coh-01", "comp-02", "mod-03", [])

    assert [item["module_id"] for item in result["allocations_created"]] == ["mod-03"]


def test_guided_allocation_rejects_modules_before_entry(seeded):
    with pytest.raises(ValidationError) as excinfo:
        allocate_company_by_entry_module("coh-01", "comp-02", "mod-03", ["mod-02", "mod-03"])
    assert excinfo.value.reason == "ModuleBeforeEntry"


def test_guided_allocation_rejects_disabled_modules(seeded):
    set_module_activation("comp-02", "mod-03", False)

    with pytest.raises(ValidationError) as excinfo:
        allocate_company_by_entry_module("coh-01", "comp-02", "mod-02", ["mod-02", "mod-03"])
    assert excinfo.value.reason == "ModuleDisabled"
    assert not [item for item in load_items(ALLOCATIONS_FILE) if item["company_id"] == "comp-02"]


def test_guided_allocation_keeps_existing_status(seeded):
    allocate_company_by_entry_module("coh-01", "comp-01", "mod-02", ["mod-02", "mod-03"])

    existing = _allocation("all-001")
    assert existing["status"] == "Confirmado"
    assert existing["notes"] == "Entrou no modulo de montagem"


def test_guided_allocation_revives_cancelled_row(seeded):
    update_allocation_status("all-001", "Cancelado")

    allocate_company_by_entry_module("coh-01", "comp-01", "mod-03", ["mod-03"])

    revived = _allocation("all-001")
    assert revived["status"] == "Previsto"
    assert revived["entry_day"] == 4
    assert len(load_items(ALLOCATIONS_FILE)) == 2


def test_guided_allocation_respects_capacity(seeded):
    update_cohort("coh-01", {"capacity_companies": 1})

    with pytest.raises(CapacityError):
        allocate_company_by_entry_module("coh-01", "comp-02", "mod-02", ["mod-02"])


# ── get_allocation_suggestions ────────────────────────────────────────────


def test_suggestions_exclude_allocated_and_inactive(seeded):
    result = get_allocation_suggestions("coh-01", "mod-03")

    assert result["entry_day_suggested"] == 4
    assert [row["name"] for row in result["companies"]] == ["Usinagem Alpha", "Mecanica Beta"]
    blocked = result["companies"][1]
    assert blocked["can_execute"] is False
    assert blocked["block_reason"] == "Falta MOD-01"


def test_suggestions_skip_completed_module(seeded):
    names = [row["name"] for row in get_allocation_suggestions("coh-01", "mod-02")["companies"]]

    assert "Metal Forte" not in names


def test_suggestions_order_by_priority_then_least_recent(seeded):
    urgent = create_company({"name": "Urgente Ltda", "priority": 50})
    update_progress(urgent["id"], "mod-01", "Concluido", "2026-01-20")
    waiting = create_company({"name": "Antiga SA"})
    update_progress(waiting["id"], "mod-01", "Concluido", "2025-06-01")

    names = [row["name"] for row in get_allocation_suggestions("coh-01", "mod-02")["companies"]]

    assert names == ["Urgente Ltda", "Antiga SA", "Usinagem Alpha", "Mecanica Beta"]


def test_suggestions_for_module_outside_cohort(seeded):
    with pytest.raises(ValidationError):
        get_allocation_suggestions("coh-01", "mod-05")
