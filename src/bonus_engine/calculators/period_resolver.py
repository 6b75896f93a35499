"""Period window resolution for bonus bucketing."""

from __future__ import annotations

import calendar
from datetime import datetime, time, timedelta
from zoneinfo import ZoneInfo

from bonus_engine.calculators.types import BonusPeriod, PeriodWindow

# All-time window used by ONE_TIME rules; a cap on such a rule is a lifetime cap
ONE_TIME_START = datetime(2020, 1, 1)
ONE_TIME_END = datetime(2099, 12, 31, 23, 59, 59)

_END_OF_DAY = time(23, 59, 59)


def local_now(timezone: str | None = None) -> datetime:
    """Current calendar-local time as a naive datetime.

    With ``timezone`` set the wall clock of that zone is used, otherwise the
    server's local time.
    """
    if timezone:
        return datetime.now(ZoneInfo(timezone)).replace(tzinfo=None)
    return datetime.now()


def _day_start(d: datetime) -> datetime:
    return datetime.combine(d.date(), time.min)


def _day_end(d: datetime) -> datetime:
    return datetime.combine(d.date(), _END_OF_DAY)


def _month_end(year: int, month: int) -> datetime:
    last_day = calendar.monthrange(year, month)[1]
    return datetime(year, month, last_day, 23, 59, 59)


def resolve_period(period: BonusPeriod | str, reference: datetime) -> PeriodWindow:
    """Map a period granularity and a reference instant to its window.

    Weeks run Monday 00:00:00 through Sunday 23:59:59, so a Sunday belongs
    to the week that started six days earlier.
    """
    period = BonusPeriod(period)

    if period is BonusPeriod.DAILY:
        return PeriodWindow(_day_start(reference), _day_end(reference))

    if period is BonusPeriod.WEEKLY:
        monday = _day_start(reference) - timedelta(days=reference.weekday())
        return PeriodWindow(monday, _day_end(monday + timedelta(days=6)))

    if period is BonusPeriod.MONTHLY:
        return PeriodWindow(
            datetime(reference.year, reference.month, 1),
            _month_end(reference.year, reference.month),
        )

    if period is BonusPeriod.QUARTERLY:
        first_month = ((reference.month - 1) // 3) * 3 + 1
        return PeriodWindow(
            datetime(reference.year, first_month, 1),
            _month_end(reference.year, first_month + 2),
        )

    if period is BonusPeriod.YEARLY:
        return PeriodWindow(
            datetime(reference.year, 1, 1),
            datetime(reference.year, 12, 31, 23, 59, 59),
        )

    if period is BonusPeriod.ONE_TIME:
        return PeriodWindow(ONE_TIME_START, ONE_TIME_END)

    raise ValueError(f"Unhandled bonus period: {period}")


def describe_period(period: BonusPeriod | str, window: PeriodWindow) -> str:
    """Source reference text for target-based awards."""
    return (
        f"{BonusPeriod(period).value} target: "
        f"{window.start.date().isoformat()} - {window.end.date().isoformat()}"
    )
