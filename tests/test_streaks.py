from datetime import date, timedelta
from zoneinfo import ZoneInfo

from conftest import workout_record
from periolifts.schemas.workout import DateSource, WorkoutRecord
from periolifts.services.streak_service import activity_days, current_streak, longest_streak, streak_summary

D = date(2024, 5, 15)


def done(day: date, *, hour: int = 9, with_completion: bool = True, status: str = "completed"):
    stamp = f"{day.isoformat()} {hour:02d}:00:00.000Z"
    return WorkoutRecord.from_record(
        workout_record(
            status=status,
            scheduled_date=stamp,
            completed_at=stamp if with_completion else "",
        )
    )


def test_gap_breaks_current_streak():
    records = [done(D), done(D - timedelta(days=1)), done(D - timedelta(days=3))]

    assert current_streak(records) == 2
    assert longest_streak(records) == 2


def test_no_records_means_no_streak():
    assert current_streak([]) == 0
    assert longest_streak([]) == 0


def test_same_day_workouts_count_once():
    records = [done(D, hour=7), done(D, hour=18), done(D - timedelta(days=1))]

    assert activity_days(records) == [D, D - timedelta(days=1)]
    assert current_streak(records) == 2


def test_longest_run_can_be_in_the_past():
    old_run = [done(D - timedelta(days=n)) for n in range(10, 15)]
    records = [done(D), *old_run]

    assert current_streak(records) == 1
    assert longest_streak(records) == 5


def test_unfinished_workouts_are_ignored():
    records = [done(D), done(D - timedelta(days=1), status="in_progress"), done(D - timedelta(days=2))]

    assert current_streak(records) == 1
    assert longest_streak(records) == 1


def test_scheduled_date_fallback_is_configurable():
    records = [done(D), done(D - timedelta(days=1), with_completion=False)]

    assert current_streak(records, date_source=DateSource.COMPLETED_OR_SCHEDULED) == 2
    assert current_streak(records, date_source=DateSource.COMPLETED_ONLY) == 1


def test_days_after_as_of_are_ignored():
    records = [done(D + timedelta(days=1)), done(D), done(D - timedelta(days=1))]

    assert streak_summary(records, as_of=D) == {"current_streak": 2, "longest_streak": 2}
    assert streak_summary(records) == {"current_streak": 3, "longest_streak": 3}


def test_days_are_truncated_in_the_given_timezone():
    # 23:00 UTC on the 14th is already the 15th in Tokyo.
    records = [done(D - timedelta(days=1), hour=23), done(D - timedelta(days=1), hour=1)]

    assert current_streak(records) == 1
    assert current_streak(records, tz=ZoneInfo("Asia/Tokyo")) == 2
