"""Workout history aggregation.

Every function here is a pure computation over an already fetched and
filtered list of records: the same input always yields the same output and
nothing is cached between calls.
"""
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta, tzinfo
from typing import Iterable, Sequence

from periolifts.core.exceptions import MalformedRecordError
from periolifts.schemas.stats import (
    DateRange,
    ExerciseProgress,
    RankedExercise,
    WeekCount,
    WorkoutHistoryStats,
    WorkoutPatterns,
)
from periolifts.schemas.workout import DateSource, ExerciseEntry, SetEntry, WorkoutRecord
from periolifts.services.streak_service import streak_summary


@dataclass
class _ExerciseAccumulator:
    exercise_id: str
    weights: list[float] = field(default_factory=list)
    total_reps: int = 0
    total_volume: float = 0.0

    def add(self, entry: SetEntry) -> None:
        self.weights.append(entry.weight)
        self.total_reps += entry.reps
        self.total_volume += entry.volume

    def to_progress(self, name: str) -> ExerciseProgress:
        return ExerciseProgress(
            exercise_id=self.exercise_id,
            exercise_name=name,
            max_weight=max(self.weights),
            avg_weight=sum(self.weights) / len(self.weights),
            total_reps=self.total_reps,
            total_volume=self.total_volume,
            completed_sets=len(self.weights),
        )


def _check_set(record: WorkoutRecord, exercise: ExerciseEntry, entry: SetEntry) -> None:
    if entry.reps < 0 or entry.weight < 0 or not math.isfinite(entry.weight):
        raise MalformedRecordError(
            f"Workout {record.id or record.name!r}: set of {exercise.name!r} has "
            f"reps={entry.reps} weight={entry.weight}"
        )


def compute_stats(
    records: Iterable[WorkoutRecord],
    *,
    user_id: str = "",
    period: DateRange | None = None,
) -> WorkoutHistoryStats:
    records = list(records)
    completed_workouts = sum(1 for r in records if r.is_completed)

    total_duration = 0
    for record in records:
        if record.duration_seconds is None:
            continue
        if record.duration_seconds < 0:
            raise MalformedRecordError(f"Workout {record.id or record.name!r} has a negative duration")
        total_duration += record.duration_seconds

    frequency: dict[str, int] = {}
    accumulators: dict[str, _ExerciseAccumulator] = {}
    total_weight = 0.0
    for record in records:
        for exercise in record.exercises:
            for entry in exercise.sets:
                _check_set(record, exercise, entry)
                if not entry.completed:
                    continue
                acc = accumulators.get(exercise.name)
                if acc is None:
                    acc = accumulators[exercise.name] = _ExerciseAccumulator(exercise_id=exercise.exercise_id)
                acc.add(entry)
                total_weight += entry.volume
            if exercise.is_completed:
                frequency[exercise.name] = frequency.get(exercise.name, 0) + 1

    return WorkoutHistoryStats(
        user_id=user_id,
        period_start=period.start if period else None,
        period_end=period.end if period else None,
        total_workouts=len(records),
        completed_workouts=completed_workouts,
        total_duration_seconds=total_duration,
        total_weight_lifted=total_weight,
        exercise_frequency=frequency,
        exercise_progress=[acc.to_progress(name) for name, acc in accumulators.items()],
    )


def _ranked(pairs: Iterable[tuple[str, float]], limit: int) -> list[RankedExercise]:
    # sorted() is stable, so ties keep first-encountered order.
    ordered = sorted(pairs, key=lambda pair: pair[1], reverse=True)
    return [RankedExercise(exercise_name=name, value=value) for name, value in ordered[:limit]]


def top_exercises(stats: WorkoutHistoryStats, limit: int = 5) -> list[RankedExercise]:
    return _ranked(((name, count) for name, count in stats.exercise_frequency.items() if count > 0), limit)


def personal_records(stats: WorkoutHistoryStats, limit: int = 5) -> list[RankedExercise]:
    return _ranked(((p.exercise_name, p.max_weight) for p in stats.exercise_progress if p.max_weight > 0), limit)


def volume_leaders(stats: WorkoutHistoryStats, limit: int = 5) -> list[RankedExercise]:
    return _ranked(((p.exercise_name, p.total_volume) for p in stats.exercise_progress if p.total_volume > 0), limit)


def weekly_pattern(
    records: Iterable[WorkoutRecord],
    *,
    date_source: DateSource = DateSource.COMPLETED_OR_SCHEDULED,
    tz: tzinfo | None = None,
) -> dict[int, int]:
    """Completed workouts per ISO weekday, Monday=1 through Sunday=7."""
    pattern = {weekday: 0 for weekday in range(1, 8)}
    for record in records:
        if not record.is_completed:
            continue
        instant = record.activity_at(date_source)
        if instant is None:
            continue
        local = instant.astimezone(tz) if tz else instant
        pattern[local.isoweekday()] += 1
    return pattern


def workouts_by_week(
    records: Sequence[WorkoutRecord],
    reference: date,
    *,
    weeks: int = 4,
    date_source: DateSource = DateSource.COMPLETED_OR_SCHEDULED,
    tz: tzinfo | None = None,
) -> list[WeekCount]:
    counts: dict[date, int] = defaultdict(int)
    for record in records:
        if not record.is_completed:
            continue
        instant = record.activity_at(date_source)
        if instant is None:
            continue
        day = (instant.astimezone(tz) if tz else instant).date()
        counts[day - timedelta(days=day.weekday())] += 1

    this_week = reference - timedelta(days=reference.weekday())
    starts = [this_week - timedelta(weeks=i) for i in range(weeks)]
    return [WeekCount(week_start=start, completed_workouts=counts.get(start, 0)) for start in starts]


def compute_patterns(
    records: Iterable[WorkoutRecord],
    *,
    reference: date,
    date_source: DateSource = DateSource.COMPLETED_OR_SCHEDULED,
    tz: tzinfo | None = None,
) -> WorkoutPatterns:
    records = list(records)
    streaks = streak_summary(records, date_source=date_source, tz=tz, as_of=reference)
    return WorkoutPatterns(
        current_streak=streaks["current_streak"],
        longest_streak=streaks["longest_streak"],
        weekly_pattern=weekly_pattern(records, date_source=date_source, tz=tz),
        workouts_by_week=workouts_by_week(records, reference, date_source=date_source, tz=tz),
    )
