from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Sequence

from .blocks import blocks_for_cohort
from .business_days import cohort_business_dates, format_date_br, parse_iso_date
from .storage import (
    BLOCKS_FILE,
    COHORTS_FILE,
    TECHNICIANS_FILE,
    NotFoundError,
    find_item,
    load_items,
)

CANCELLED_COHORT = "Cancelada"


@dataclass(frozen=True)
class TechnicianConflict:
    cohort_id: str
    code: str
    name: str
    conflict_date: str

    def as_dict(self) -> Dict[str, Any]:
        return {
            "cohort_id": self.cohort_id,
            "code": self.code,
            "name": self.name,
            "date": self.conflict_date,
        }


def conflict_message(conflict: TechnicianConflict) -> str:
    return (
        f"Técnico já está alocado na turma {conflict.code} - {conflict.name} "
        f"em {format_date_br(conflict.conflict_date)}."
    )


def find_technician_conflict(
    technician_id: str,
    start_date: Any,
    blocks: Sequence[Dict[str, Any]],
    exclude_cohort_id: str | None = None,
    status: str = "Planejada",
) -> TechnicianConflict | None:
    """Primeira turma do técnico (por data de início) que ocupa um dia útil da candidata.

    A ocupação é o conjunto de dias úteis de cada turma, então a comparação é
    feita por interseção de datas e não por sobreposição de intervalos.
    """
    if status == CANCELLED_COHORT:
        return None

    if not find_item(load_items(TECHNICIANS_FILE), technician_id):
        raise NotFoundError(f"Técnico não encontrado: {technician_id}", entity="Technician")

    candidate_dates = set(cohort_business_dates(start_date, blocks))
    existing = [
        item
        for item in load_items(COHORTS_FILE)
        if item.get("technician_id") == technician_id
        and item.get("status") != CANCELLED_COHORT
        and item.get("id") != exclude_cohort_id
    ]
    existing.sort(key=lambda item: parse_iso_date(item["start_date"]))

    all_blocks = load_items(BLOCKS_FILE)
    for cohort in existing:
        cohort_blocks = blocks_for_cohort(all_blocks, cohort["id"])
        overlap = next(
            (
                day
                for day in cohort_business_dates(cohort["start_date"], cohort_blocks)
                if day in candidate_dates
            ),
            None,
        )
        if overlap is not None:
            return TechnicianConflict(
                cohort_id=cohort["id"],
                code=cohort["code"],
                name=cohort["name"],
                conflict_date=overlap.isoformat(),
            )
    return None
