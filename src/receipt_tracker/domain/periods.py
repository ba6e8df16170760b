from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from receipt_tracker.models import Period

END_OF_DAY = time(23, 59, 59, 999000)


@dataclass(frozen=True)
class PeriodRange:
    start: datetime
    end: datetime
    title: str

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


def parse_record_date(value: str | None) -> date | None:
    """Read a ``YYYY-MM-DD`` string as a local calendar date.

    Anything after the day part (a time component) is ignored. Returns None for
    missing or malformed values.
    """
    if not value:
        return None
    parts = value.strip()[:10].split("-")
    if len(parts) != 3:
        return None
    try:
        year, month, day = (int(part) for part in parts)
        return date(year, month, day)
    except ValueError:
        return None


def record_moment(value: str | None) -> datetime | None:
    parsed = parse_record_date(value)
    if parsed is None:
        return None
    return datetime.combine(parsed, time.min)


def _format_day(value: date) -> str:
    return f"{value.strftime('%b')} {value.day}, {value.year}"


def _start_of(day: date) -> datetime:
    return datetime.combine(day, time.min)


def _end_of(day: date) -> datetime:
    return datetime.combine(day, END_OF_DAY)


def _last_day_of_month(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def period_range(period: Period, now: datetime) -> PeriodRange | None:
    """Inclusive [start, end] window of ``period`` around ``now``; None for All."""
    today = now.date()

    if period is Period.DAILY:
        return PeriodRange(_start_of(today), _end_of(today), f"Summary for {_format_day(today)}")

    if period is Period.WEEKLY:
        # Monday-start week; weekday() is 0 for Monday, 6 for Sunday
        week_start = today - timedelta(days=today.weekday())
        week_end = week_start + timedelta(days=6)
        return PeriodRange(
            _start_of(week_start),
            _end_of(week_end),
            f"Summary for {_format_day(week_start)} - {_format_day(week_end)}",
        )

    if period is Period.MONTHLY:
        first = today.replace(day=1)
        last = _last_day_of_month(today.year, today.month)
        return PeriodRange(
            _start_of(first),
            _end_of(last),
            f"Summary for {today.strftime('%B')} {today.year}",
        )

    if period is Period.QUARTERLY:
        quarter = (today.month - 1) // 3
        first_month = quarter * 3 + 1
        first = date(today.year, first_month, 1)
        last = _last_day_of_month(today.year, first_month + 2)
        return PeriodRange(
            _start_of(first),
            _end_of(last),
            f"Summary for Q{quarter + 1} {today.year}",
        )

    if period is Period.YEARLY:
        return PeriodRange(
            _start_of(date(today.year, 1, 1)),
            _end_of(date(today.year, 12, 31)),
            f"Summary for {today.year}",
        )

    return None
