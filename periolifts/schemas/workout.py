import enum
import json
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from periolifts.core.exceptions import MalformedRecordError


class WorkoutStatus(str, enum.Enum):
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @classmethod
    def parse(cls, value: Any) -> "WorkoutStatus":
        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().lower().replace("-", "_")
        if normalized in ("in_progress", "inprogress"):
            return cls.IN_PROGRESS
        if normalized == "completed":
            return cls.COMPLETED
        return cls.PLANNED


class DateSource(str, enum.Enum):
    """Which timestamp places a workout on the calendar."""

    COMPLETED_OR_SCHEDULED = "completed_or_scheduled"
    COMPLETED_ONLY = "completed_only"


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SetEntry(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    reps: int = Field(0, ge=0, validation_alias=AliasChoices("reps", "actual_reps", "actualReps"))
    target_reps: Optional[int] = Field(None, ge=0, validation_alias=AliasChoices("target_reps", "targetReps"))
    weight: float = Field(
        0.0, ge=0, allow_inf_nan=False, validation_alias=AliasChoices("weight", "actual_weight", "actualWeight")
    )
    target_weight: Optional[float] = Field(
        None, ge=0, allow_inf_nan=False, validation_alias=AliasChoices("target_weight", "targetWeight")
    )
    completed: bool = False
    rest_seconds: Optional[int] = Field(
        None, ge=0, validation_alias=AliasChoices("rest_seconds", "rest_time", "restTime")
    )

    @property
    def volume(self) -> float:
        return self.reps * self.weight if self.completed else 0.0


class ExerciseEntry(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    exercise_id: str = Field("", validation_alias=AliasChoices("exercise_id", "exerciseId"))
    name: str = Field(validation_alias=AliasChoices("name", "exercise_name", "exerciseName"))
    sets: tuple[SetEntry, ...] = ()

    @field_validator("sets", mode="before")
    @classmethod
    def _sets_default(cls, value: Any) -> Any:
        return () if value is None else value

    @property
    def completed_sets(self) -> tuple[SetEntry, ...]:
        return tuple(s for s in self.sets if s.completed)

    @property
    def is_completed(self) -> bool:
        # An occurrence counts only when it had sets and every one of them was done.
        return bool(self.sets) and all(s.completed for s in self.sets)

    @property
    def total_volume(self) -> float:
        return sum(s.volume for s in self.sets)

    @property
    def total_reps(self) -> int:
        return sum(s.reps for s in self.completed_sets)


class WorkoutRecord(BaseModel):
    """A scheduled or performed workout as stored in the history collection."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = ""
    user_id: str = ""
    name: str = ""
    status: WorkoutStatus = WorkoutStatus.PLANNED
    scheduled_date: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[int] = Field(None, ge=0, validation_alias=AliasChoices("duration_seconds", "duration"))
    exercises: tuple[ExerciseEntry, ...] = ()
    notes: str = ""
    created: Optional[datetime] = None
    updated: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: Any) -> WorkoutStatus:
        return WorkoutStatus.parse(value)

    @field_validator("started_at", "completed_at", "created", "updated", "duration_seconds", mode="before")
    @classmethod
    def _blank_is_missing(cls, value: Any) -> Any:
        # PocketBase sends "" for unset date and number fields.
        return None if value == "" else value

    @field_validator("scheduled_date", "started_at", "completed_at", "created", "updated")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    @field_validator("notes", mode="before")
    @classmethod
    def _notes_default(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("exercises", mode="before")
    @classmethod
    def _decode_exercises(cls, value: Any) -> Any:
        if value is None or value == "":
            return ()
        if isinstance(value, str):
            value = json.loads(value)
        if not isinstance(value, (list, tuple)):
            raise ValueError("exercises must be a list")
        decoded = []
        for item in value:
            if isinstance(item, str):
                item = json.loads(item)
            if not isinstance(item, (dict, ExerciseEntry)):
                raise ValueError("Invalid exercise data format")
            decoded.append(item)
        return decoded

    @model_validator(mode="after")
    def _check_chronology(self) -> "WorkoutRecord":
        if self.started_at and self.completed_at and self.completed_at < self.started_at:
            raise ValueError("Completion time cannot be before start time")
        return self

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> "WorkoutRecord":
        """Map a raw store record, filling the scheduled date from the start or creation time."""
        payload = dict(data)
        if not payload.get("scheduled_date"):
            fallback = payload.get("started_at") or payload.get("created")
            if not fallback:
                raise MalformedRecordError(f"Record {payload.get('id', '?')} has no usable date")
            payload["scheduled_date"] = fallback
        return cls.model_validate(payload)

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "status": self.status.value,
            "scheduled_date": self.scheduled_date.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration": self.duration_seconds,
            "exercises": [exercise.model_dump() for exercise in self.exercises],
            "notes": self.notes,
            "total_sets": self.total_sets,
            "total_reps": self.total_reps,
            "total_weight_lifted": self.total_weight_lifted,
        }

    @property
    def is_completed(self) -> bool:
        return self.status == WorkoutStatus.COMPLETED

    @property
    def is_in_progress(self) -> bool:
        return self.status == WorkoutStatus.IN_PROGRESS

    @property
    def is_planned(self) -> bool:
        return self.status == WorkoutStatus.PLANNED

    @property
    def total_sets(self) -> int:
        return sum(len(e.sets) for e in self.exercises)

    @property
    def total_reps(self) -> int:
        return sum(e.total_reps for e in self.exercises)

    @property
    def total_weight_lifted(self) -> float:
        return sum(e.total_volume for e in self.exercises)

    @property
    def completion_percentage(self) -> float:
        if self.total_sets == 0:
            return 0.0
        done = sum(len(e.completed_sets) for e in self.exercises)
        return done / self.total_sets * 100

    def activity_at(self, source: DateSource = DateSource.COMPLETED_OR_SCHEDULED) -> Optional[datetime]:
        if self.completed_at is not None:
            return self.completed_at
        if source == DateSource.COMPLETED_OR_SCHEDULED:
            return self.scheduled_date
        return None


class WorkoutInput(BaseModel):
    """Client-supplied fields of a workout; identity and ownership come from the session."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    status: WorkoutStatus = WorkoutStatus.PLANNED
    scheduled_date: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[int] = Field(None, ge=0, validation_alias=AliasChoices("duration_seconds", "duration"))
    exercises: list[ExerciseEntry] = Field(default_factory=list)
    notes: str = ""

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: Any) -> WorkoutStatus:
        return WorkoutStatus.parse(value)


class HistoryPage(BaseModel):
    page: int
    per_page: int
    total_items: int
    total_pages: int
    items: list[WorkoutRecord]
