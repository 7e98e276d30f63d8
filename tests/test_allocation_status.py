import pytest

from scheduling.allocation_status import update_allocation_status
from scheduling.allocations import create_allocation
from scheduling.business_days import today_iso
from scheduling.progress import get_progress
from scheduling.storage import (
    ALLOCATIONS_FILE,
    NotFoundError,
    PrerequisiteError,
    find_item,
    load_items,
)


def _allocation(allocation_id):
    return find_item(load_items(ALLOCATIONS_FILE), allocation_id)


def test_executing_installation_needs_no_override(seeded):
    result = update_allocation_status("all-002", "Executado")

    assert result == {"ok": True, "override_used": False}
    allocation = _allocation("all-002")
    assert allocation["executed_at"] == today_iso()
    progress = get_progress("comp-03", "mod-01")
    assert progress["status"] == "Concluido"
    assert progress["completed_at"] == today_iso()


def test_execution_blocked_without_installation(seeded):
    allocation = create_allocation("coh-02", "comp-03", "mod-02", 2)

    with pytest.raises(PrerequisiteError) as excinfo:
        update_allocation_status(allocation["id"], "Executado")

    assert excinfo.value.reason == "InstallationRequired"
    assert excinfo.value.override_available is True
    assert _allocation(allocation["id"])["status"] == "Previsto"
    assert get_progress("comp-03", "mod-02")["status"] == "Nao_iniciado"


def test_override_requires_reason(seeded):
    allocation = create_allocation("coh-02", "comp-03", "mod-02", 2)

    with pytest.raises(PrerequisiteError):
        update_allocation_status(
            allocation["id"], "Executado", override_installation_prereq=True, override_reason="   "
        )


def test_override_with_reason_is_recorded(seeded):
    allocation = create_allocation("coh-02", "comp-03", "mod-02", 2)

    result = update_allocation_status(
        allocation["id"],
        "Executado",
        override_installation_prereq=True,
        override_reason="Instalação feita pelo cliente",
    )

    assert result == {"ok": True, "override_used": True}
    stored = _allocation(allocation["id"])
    assert stored["override_installation_prereq"] is True
    assert stored["override_reason"] == "Instalação feita pelo cliente"
    assert get_progress("comp-03", "mod-02")["status"] == "Concluido"


def test_installation_completed_unlocks_execution(seeded):
    update_allocation_status("all-002", "Executado")
    allocation = create_allocation("coh-02", "comp-03", "mod-02", 2)

    assert update_allocation_status(allocation["id"], "Executado")["override_used"] is False


def test_non_executed_status_skips_installation_rule(seeded):
    allocation = create_allocation("coh-02", "comp-03", "mod-02", 2)

    assert update_allocation_status(allocation["id"], "Confirmado", notes="ok")["ok"] is True
    assert _allocation(allocation["id"])["notes"] == "ok"


def test_leaving_executed_clears_execution_fields(seeded):
    allocation = create_allocation("coh-02", "comp-03", "mod-02", 2)
    update_allocation_status(
        allocation["id"], "Executado", override_installation_prereq=True, override_reason="exceção"
    )

    update_allocation_status(allocation["id"], "Confirmado")

    stored = _allocation(allocation["id"])
    assert stored["executed_at"] is None
    assert stored["override_installation_prereq"] is False
    assert stored["override_reason"] is None


def test_unknown_allocation(seeded):
    with pytest.raises(NotFoundError):
        update_allocation_status("all-999", "Confirmado")
