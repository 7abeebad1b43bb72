import enum
from collections import defaultdict
from datetime import date, datetime, timedelta, tzinfo
from typing import Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from periolifts.schemas.stats import DateRange, DaySummary
from periolifts.schemas.workout import DateSource, WorkoutRecord


def get_user_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def now_in_user_tz(name: str) -> datetime:
    return datetime.now(get_user_timezone(name))


class Period(str, enum.Enum):
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


def period_start(period: Period, reference: date) -> date:
    if period == Period.WEEK:
        # Weeks start on Monday.
        return reference - timedelta(days=reference.weekday())
    if period == Period.MONTH:
        return reference.replace(day=1)
    if period == Period.QUARTER:
        return date(reference.year, ((reference.month - 1) // 3) * 3 + 1, 1)
    return date(reference.year, 1, 1)


def range_for(period: Period, reference: datetime) -> DateRange:
    """Range from the start of ``period`` containing ``reference`` up to ``reference`` itself."""
    start_day = period_start(period, reference.date())
    start = datetime(start_day.year, start_day.month, start_day.day, tzinfo=reference.tzinfo)
    return DateRange(start=start, end=reference)


def custom_range(start: datetime, end: datetime) -> DateRange:
    return DateRange(start=start, end=end)


def bucket_by_day(
    records: Iterable[WorkoutRecord],
    *,
    date_source: DateSource = DateSource.COMPLETED_OR_SCHEDULED,
    tz: tzinfo | None = None,
) -> dict[date, list[WorkoutRecord]]:
    buckets: dict[date, list[WorkoutRecord]] = defaultdict(list)
    for record in records:
        instant = record.activity_at(date_source)
        if instant is None:
            continue
        local = instant.astimezone(tz) if tz else instant
        buckets[local.date()].append(record)
    return {day: buckets[day] for day in sorted(buckets)}


def day_summaries(buckets: dict[date, list[WorkoutRecord]]) -> list[DaySummary]:
    return [
        DaySummary(
            day=day,
            workouts=len(day_records),
            completed=sum(1 for r in day_records if r.is_completed),
            total_volume=sum(r.total_weight_lifted for r in day_records),
            workout_ids=[r.id for r in day_records],
        )
        for day, day_records in buckets.items()
    ]
