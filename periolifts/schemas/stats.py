from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


class DateRange(BaseModel):
    """Inclusive interval between two instants."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @model_validator(mode="after")
    def _ordered(self) -> "DateRange":
        if self.start > self.end:
            raise ValueError("start must not be after end")
        return self

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant <= self.end


class ExerciseProgress(BaseModel):
    model_config = ConfigDict(frozen=True)

    exercise_id: str = ""
    exercise_name: str
    max_weight: float = 0.0
    avg_weight: float = 0.0
    total_reps: int = 0
    total_volume: float = 0.0
    completed_sets: int = 0


class WorkoutHistoryStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str = ""
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    total_workouts: int = 0
    completed_workouts: int = 0
    total_duration_seconds: int = 0
    total_weight_lifted: float = 0.0
    exercise_frequency: dict[str, int] = Field(default_factory=dict)
    exercise_progress: list[ExerciseProgress] = Field(default_factory=list)

    @computed_field
    @property
    def completion_rate(self) -> float:
        if self.total_workouts == 0:
            return 0.0
        return self.completed_workouts / self.total_workouts * 100

    @computed_field
    @property
    def average_duration_seconds(self) -> int:
        if self.completed_workouts == 0:
            return 0
        return self.total_duration_seconds // self.completed_workouts


class RankedExercise(BaseModel):
    exercise_name: str
    value: float


class WeekCount(BaseModel):
    week_start: date
    completed_workouts: int


class WorkoutPatterns(BaseModel):
    current_streak: int = 0
    longest_streak: int = 0
    weekly_pattern: dict[int, int] = Field(default_factory=dict)
    workouts_by_week: list[WeekCount] = Field(default_factory=list)


class DaySummary(BaseModel):
    day: date
    workouts: int
    completed: int
    total_volume: float
    workout_ids: list[str] = Field(default_factory=list)


class ExerciseHighlights(BaseModel):
    top_exercises: list[RankedExercise] = Field(default_factory=list)
    personal_records: list[RankedExercise] = Field(default_factory=list)
    volume_leaders: list[RankedExercise] = Field(default_factory=list)
