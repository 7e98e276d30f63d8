from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List

from .storage import ValidationError

SATURDAY = 5


def parse_iso_date(raw: Any) -> date:
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    try:
        return datetime.strptime(str(raw or "").strip(), "%Y-%m-%d").date()
    except ValueError as exc:
        raise ValidationError(f"Data inválida: {raw}", reason="InvalidDate") from exc


def format_date_br(value: date | str) -> str:
    return parse_iso_date(value).strftime("%d/%m/%Y")


def today() -> date:
    return date.today()


def today_iso() -> str:
    return today().isoformat()


def is_weekend(value: date) -> bool:
    return value.weekday() >= SATURDAY


def normalize_to_business_day(value: date) -> date:
    current = value
    while is_weekend(current):
        current += timedelta(days=1)
    return current


def add_business_days(value: date, offset: int) -> date:
    current = normalize_to_business_day(value)
    moved = 0
    while moved < offset:
        current += timedelta(days=1)
        if not is_weekend(current):
            moved += 1
    return current


def cohort_span_days(blocks: Iterable[Dict[str, Any]]) -> int:
    ends = [int(block["start_day_offset"]) + int(block["duration_days"]) - 1 for block in blocks]
    return max([1, *ends])


def cohort_business_dates(start: date | str, blocks: Iterable[Dict[str, Any]]) -> List[date]:
    """Dias úteis ocupados pela turma, do dia 1 ao último dia do último bloco."""
    start_date = parse_iso_date(start)
    total = cohort_span_days(blocks)
    return [add_business_days(start_date, day) for day in range(total)]


def cohort_end_date(start: date | str, blocks: Iterable[Dict[str, Any]]) -> date:
    return add_business_days(parse_iso_date(start), cohort_span_days(blocks) - 1)
