from __future__ import annotations

from typing import Any, Dict, List, Sequence

from .storage import ValidationError

BLOCK_FIELDS = ["module_id", "order_in_cohort", "start_day_offset", "duration_days"]
INT_FIELDS = ["order_in_cohort", "start_day_offset", "duration_days"]


def _check_block_fields(index: int, block: Dict[str, Any]) -> None:
    if not str(block.get("module_id") or "").strip():
        raise ValidationError(f"Bloco {index}: módulo é obrigatório.", reason="InvalidBlock")
    for field in INT_FIELDS:
        value = block.get(field)
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValidationError(
                f"Bloco {index}: {field} deve ser inteiro positivo.",
                reason="InvalidBlock",
                details={"field": field, "value": value},
            )


def validate_blocks(blocks: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Valida a sequência de blocos de uma turma e devolve os blocos ordenados.

    A sequência precisa particionar a linha do tempo da turma: ordens 1..N sem
    repetição, sem módulo repetido, e cada bloco começando exatamente no dia
    seguinte ao fim do anterior (o primeiro no dia 1).
    """
    if not blocks:
        raise ValidationError("Turma precisa ter ao menos um bloco.", reason="EmptySequence")

    for index, block in enumerate(blocks, start=1):
        _check_block_fields(index, block)

    seen_orders: set[int] = set()
    seen_modules: set[str] = set()
    for block in blocks:
        order = block["order_in_cohort"]
        module_id = block["module_id"]
        if order in seen_orders:
            raise ValidationError(
                "Cada bloco precisa ter ordem única na turma.",
                reason="DuplicateOrder",
                details={"order_in_cohort": order},
            )
        if module_id in seen_modules:
            raise ValidationError(
                "Módulo repetido na turma não é permitido.",
                reason="DuplicateModule",
                details={"module_id": module_id},
            )
        seen_orders.add(order)
        seen_modules.add(module_id)

    ordered = sorted(blocks, key=lambda item: item["order_in_cohort"])
    expected_start = 1
    for expected_order, block in enumerate(ordered, start=1):
        if block["order_in_cohort"] != expected_order:
            raise ValidationError(
                "A ordem dos blocos deve ser sequencial (1..N).",
                reason="NonSequentialOrder",
                details={"expected": expected_order, "found": block["order_in_cohort"]},
            )
        if block["start_day_offset"] != expected_start:
            raise ValidationError(
                "Blocos devem ser sequenciais sem lacunas. Ajuste os dias de início.",
                reason="GapOrOverlap",
                details={
                    "order_in_cohort": block["order_in_cohort"],
                    "expected_start": expected_start,
                    "start_day_offset": block["start_day_offset"],
                },
            )
        expected_start += block["duration_days"]
    return [dict(block) for block in ordered]


def blocks_for_cohort(items: List[Dict[str, Any]], cohort_id: str) -> List[Dict[str, Any]]:
    selected = [item for item in items if item.get("cohort_id") == cohort_id]
    return sorted(selected, key=lambda item: item["order_in_cohort"])


def find_block(items: List[Dict[str, Any]], cohort_id: str, module_id: str) -> Dict[str, Any] | None:
    return next(
        (
            item
            for item in items
            if item.get("cohort_id") == cohort_id and item.get("module_id") == module_id
        ),
        None,
    )
