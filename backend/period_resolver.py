from __future__ import annotations

import re
from calendar import monthrange
from datetime import date, datetime
from typing import Optional

from backend.budget_engine import Period

MONTH_PATTERN = re.compile(r"\d{4}-\d{2}")
DATE_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}")


class InvalidPeriod(ValueError):
    """Raised when a period cannot be resolved to a concrete date range."""


class PeriodKind:
    THIS_MONTH = "thisMonth"
    LAST_MONTH = "lastMonth"
    LAST_3_MONTHS = "last3Months"
    CUSTOM = "custom"

    values = {THIS_MONTH, LAST_MONTH, LAST_3_MONTHS, CUSTOM}

    @classmethod
    def validate(cls, value: str | None) -> str:
        normalized = value.strip() if value else ""
        if normalized not in cls.values:
            raise InvalidPeriod(
                f"Unsupported period: {value}. Use thisMonth, lastMonth, last3Months or custom."
            )
        return normalized


def resolve_period(
    kind: str,
    reference_date: date,
    custom_start: Optional[date] = None,
    custom_end: Optional[date] = None,
) -> Period:
    normalized = PeriodKind.validate(kind)
    if normalized == PeriodKind.THIS_MONTH:
        return Period(start=month_start(reference_date), end=month_end(reference_date))
    if normalized == PeriodKind.LAST_MONTH:
        previous = shift_month(reference_date, -1)
        return Period(start=previous, end=month_end(previous))
    if normalized == PeriodKind.LAST_3_MONTHS:
        return Period(
            start=shift_month(reference_date, -2),
            end=month_end(reference_date),
        )
    if custom_start is None or custom_end is None:
        raise InvalidPeriod("Custom period requires both start and end dates.")
    if custom_start > custom_end:
        raise InvalidPeriod("Custom period start must be on or before end.")
    return Period(start=custom_start, end=custom_end)


def month_period(value: str) -> Period:
    normalized = value.strip() if isinstance(value, str) else ""
    if not MONTH_PATTERN.fullmatch(normalized):
        raise InvalidPeriod("Invalid month format. Use YYYY-MM.")
    try:
        first_day = datetime.strptime(normalized, "%Y-%m").date()
    except ValueError as exc:
        raise InvalidPeriod("Invalid month format. Use YYYY-MM.") from exc
    return Period(start=first_day, end=month_end(first_day))


def parse_period_date(value: Optional[str]) -> Optional[date]:
    if value is None or not value.strip():
        return None
    normalized = value.strip()
    if not DATE_PATTERN.fullmatch(normalized):
        raise InvalidPeriod("Date must be in YYYY-MM-DD format.")
    try:
        return datetime.strptime(normalized, "%Y-%m-%d").date()
    except ValueError as exc:
        raise InvalidPeriod("Date must be in YYYY-MM-DD format.") from exc


def month_start(value: date) -> date:
    return value.replace(day=1)


def month_end(value: date) -> date:
    return value.replace(day=monthrange(value.year, value.month)[1])


def shift_month(value: date, months: int) -> date:
    """Return the first day of the month ``months`` away from ``value``."""
    month_index = (value.year * 12 + value.month - 1) + months
    year = month_index // 12
    month = month_index % 12 + 1
    return date(year, month, 1)
