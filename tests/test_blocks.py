import pytest

from scheduling.blocks import validate_blocks
from scheduling.storage import ValidationError

from conftest import block


def test_valid_sequence_is_returned_in_order():
    blocks = [block("mod-03", 2, 4, 2), block("mod-02", 1, 1, 3)]

    result = validate_blocks(blocks)

    assert [item["module_id"] for item in result] == ["mod-02", "mod-03"]


@pytest.mark.parametrize(
    "blocks, reason",
    [
        ([], "EmptySequence"),
        ([block("a", 1, 1, 1), block("b", 1, 2, 1)], "DuplicateOrder"),
        ([block("a", 1, 1, 1), block("a", 2, 2, 1)], "DuplicateModule"),
        ([block("a", 1, 1, 1), block("b", 3, 2, 1)], "NonSequentialOrder"),
        ([block("a", 1, 2, 1)], "GapOrOverlap"),
        ([block("a", 1, 1, 2), block("b", 2, 4, 1)], "GapOrOverlap"),
        ([block("a", 1, 1, 2), block("b", 2, 2, 1)], "GapOrOverlap"),
        ([block("a", 1, 1, 0)], "InvalidBlock"),
        ([block("a", True, 1, 1)], "InvalidBlock"),
        ([block("", 1, 1, 1)], "InvalidBlock"),
    ],
)
def test_invalid_sequences(blocks, reason):
    with pytest.raises(ValidationError) as excinfo:
        validate_blocks(blocks)
    assert excinfo.value.reason == reason


def test_validation_does_not_mutate_input():
    blocks = [block("b", 2, 3, 1), block("a", 1, 1, 2)]

    validate_blocks(blocks)

    assert blocks[0]["module_id"] == "b"
