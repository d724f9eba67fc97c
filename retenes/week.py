"""
Monday-aligned week arithmetic for the weekly assignment board.

Windows are plain ``date`` values naming their Monday; nothing here holds
state, and "today" is only consulted when no reference date is passed.
"""

from collections.abc import Iterable
from datetime import date, datetime, timedelta

from retenes.errors import ValidationError
from retenes.models import Assignment

DAYS_PER_WEEK = 7


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def monday_of(reference: date | datetime | None = None) -> date:
    """
    Return the Monday of the week containing ``reference``.

    Datetimes are truncated to their calendar day first, so the time of day
    never leaks into the window anchor.
    """
    day = _as_date(reference) if reference is not None else date.today()
    # isoweekday: Monday=1 .. Sunday=7
    return day - timedelta(days=day.isoweekday() - 1)


def _add_days(day: date, days: int, field: str) -> date:
    try:
        return day + timedelta(days=days)
    except OverflowError as exc:
        raise ValidationError(
            f"week of {day.isoformat()} shifted by {days} days is out of range", [field]
        ) from exc


def shift_week(window_start: date, delta_weeks: int) -> date:
    """
    Move the window by whole weeks. The shifted window must fit in the
    calendar, Sunday included.
    """
    shifted = _add_days(window_start, DAYS_PER_WEEK * delta_weeks, "offset")
    _add_days(shifted, DAYS_PER_WEEK - 1, "offset")
    return shifted


def days_of(window_start: date) -> list[date]:
    return [_add_days(window_start, i, "date") for i in range(DAYS_PER_WEEK)]


def week_bounds(window_start: date) -> tuple[date, date]:
    """Inclusive (Monday, Sunday) pair used for range fetches."""
    return window_start, _add_days(window_start, DAYS_PER_WEEK - 1, "date")


def bucket_by_day(
    assignments: Iterable[Assignment], window_start: date
) -> dict[date, list[Assignment]]:
    """
    Partition assignments into the seven days of the window.

    Every day of the window gets a bucket, empty or not. Assignments dated
    outside the window are dropped.
    """
    buckets: dict[date, list[Assignment]] = {
        day: [] for day in days_of(window_start)
    }
    for assignment in assignments:
        bucket = buckets.get(assignment.assignment_date)
        if bucket is not None:
            bucket.append(assignment)
    return buckets
