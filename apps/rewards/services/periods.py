from __future__ import annotations

from datetime import date, datetime, timedelta
from datetime import timezone as dt_timezone
from typing import Tuple

from django.utils import timezone


def period_id_for(day: date) -> int:
    """ISO week id as YYYYWW (e.g. 202536); the ISO year decides the prefix."""
    if isinstance(day, datetime):
        day = day.date()
    iso_year, iso_week, _ = day.isocalendar()
    return iso_year * 100 + iso_week


def _utc_today(now: datetime | None = None) -> date:
    now = now or timezone.now()
    if timezone.is_aware(now):
        now = now.astimezone(dt_timezone.utc)
    return now.date()


def current_period_id(now: datetime | None = None) -> int:
    return period_id_for(_utc_today(now))


def previous_period_id(now: datetime | None = None) -> int:
    return period_id_for(_utc_today(now) - timedelta(days=7))


def period_bounds(period_id: int) -> Tuple[date, date]:
    """Monday of the ISO week and the following Monday (exclusive end)."""
    year, week = divmod(int(period_id), 100)
    try:
        monday = date.fromisocalendar(year, week, 1)
    except ValueError as exc:
        raise ValueError(f"Invalid period id: {period_id}") from exc
    return monday, monday + timedelta(days=7)


def ranking_key(period_id: int) -> str:
    return f"lb:weekly:{int(period_id)}"
