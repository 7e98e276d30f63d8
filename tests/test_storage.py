import pytest

from scheduling import storage
from scheduling.cohorts import create_cohort
from scheduling.storage import (
    BLOCKS_FILE,
    COHORTS_FILE,
    ConflictError,
    load_items,
    save_items,
    transaction,
)

from conftest import cohort_draft


def test_failed_commit_leaves_every_file_untouched(seeded, monkeypatch):
    original = storage._stage_file

    def failing_stage(filename, items):
        if filename == BLOCKS_FILE:
            raise OSError("disco cheio")
        return original(filename, items)

    monkeypatch.setattr(storage, "_stage_file", failing_stage)

    with pytest.raises(OSError):
        create_cohort(cohort_draft())

    assert [item["id"] for item in load_items(COHORTS_FILE)] == ["coh-01", "coh-02"]
    assert len(load_items(BLOCKS_FILE)) == 4
    assert not list(seeded.glob("*.tmp"))

    monkeypatch.setattr(storage, "_stage_file", original)
    assert create_cohort(cohort_draft())["id"] == "coh-003"


def test_error_inside_transaction_discards_writes(seeded):
    with pytest.raises(ConflictError):
        with transaction():
            save_items(COHORTS_FILE, [])
            assert load_items(COHORTS_FILE) == []
            raise ConflictError("cancelado", reason="Test")

    assert len(load_items(COHORTS_FILE)) == 2


def test_nested_transaction_joins_outer(seeded):
    with transaction():
        with transaction():
            save_items(BLOCKS_FILE, [])
        assert load_items(BLOCKS_FILE) == []
        assert len(storage._read_json(seeded / BLOCKS_FILE)["items"]) == 4

    assert load_items(BLOCKS_FILE) == []
