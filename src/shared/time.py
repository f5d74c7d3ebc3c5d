from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Tuple

from src.core.errors import BadRequestError

PERIOD_DAYS = {"7d": 7, "30d": 30, "90d": 90, "365d": 365}
PERIOD_PATTERN = "^(7d|30d|90d|365d)$"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def days_between(start: date | datetime, end: date | datetime) -> int:
    """Whole calendar days from ``start`` to ``end`` (negative when ``end`` is earlier)."""
    return (_as_date(end) - _as_date(start)).days


def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def resolve_period(period: str, now: datetime) -> Tuple[datetime, datetime]:
    if period not in PERIOD_DAYS:
        raise BadRequestError("Unsupported period, expected one of 7d, 30d, 90d, 365d")
    return now - timedelta(days=PERIOD_DAYS[period]), now


def year_window(year: int) -> Tuple[datetime, datetime]:
    return (
        datetime(year, 1, 1, tzinfo=timezone.utc),
        datetime(year + 1, 1, 1, tzinfo=timezone.utc),
    )


def stay_midpoint(check_in: date, check_out: date) -> date:
    return check_in + timedelta(days=days_between(check_in, check_out) // 2)


def intervals_overlap(first_start: date, first_end: date, second_start: date, second_end: date) -> bool:
    """Closed-interval overlap test."""
    return first_start <= second_end and second_start <= first_end
