"""Streak calculation over completed workouts."""
from datetime import date, timedelta, tzinfo
from typing import Iterable

from periolifts.schemas.workout import DateSource, WorkoutRecord


def activity_days(
    records: Iterable[WorkoutRecord],
    *,
    date_source: DateSource = DateSource.COMPLETED_OR_SCHEDULED,
    tz: tzinfo | None = None,
    as_of: date | None = None,
) -> list[date]:
    """Distinct calendar days with at least one completed workout, most recent first."""
    days: set[date] = set()
    for record in records:
        if not record.is_completed:
            continue
        instant = record.activity_at(date_source)
        if instant is None:
            continue
        day = (instant.astimezone(tz) if tz else instant).date()
        if as_of is not None and day > as_of:
            continue
        days.add(day)
    return sorted(days, reverse=True)


def _current_run(days: list[date]) -> int:
    if not days:
        return 0
    streak = 1
    for newer, older in zip(days, days[1:]):
        if newer - older != timedelta(days=1):
            break
        streak += 1
    return streak


def _longest_run(days: list[date]) -> int:
    if not days:
        return 0
    longest = current = 1
    for newer, older in zip(days, days[1:]):
        if newer - older == timedelta(days=1):
            current += 1
        else:
            current = 1
        longest = max(longest, current)
    return longest


def current_streak(
    records: Iterable[WorkoutRecord],
    *,
    date_source: DateSource = DateSource.COMPLETED_OR_SCHEDULED,
    tz: tzinfo | None = None,
    as_of: date | None = None,
) -> int:
    """Consecutive days counted backwards from the most recent completed day."""
    return _current_run(activity_days(records, date_source=date_source, tz=tz, as_of=as_of))


def longest_streak(
    records: Iterable[WorkoutRecord],
    *,
    date_source: DateSource = DateSource.COMPLETED_OR_SCHEDULED,
    tz: tzinfo | None = None,
    as_of: date | None = None,
) -> int:
    return _longest_run(activity_days(records, date_source=date_source, tz=tz, as_of=as_of))


def streak_summary(
    records: Iterable[WorkoutRecord],
    *,
    date_source: DateSource = DateSource.COMPLETED_OR_SCHEDULED,
    tz: tzinfo | None = None,
    as_of: date | None = None,
) -> dict[str, int]:
    days = activity_days(records, date_source=date_source, tz=tz, as_of=as_of)
    return {"current_streak": _current_run(days), "longest_streak": _longest_run(days)}
