"""Workout history repository over the remote record store.

Every public method returns a ``Result``. Store failures, mapping failures
and cancelled fetches all come back as ``Err``; nothing here raises an
``AppError`` to the caller.
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, TypeVar

from periolifts.core.cancellation import CancellationToken
from periolifts.core.exceptions import (
    AppError,
    FetchCancelledError,
    PermissionDeniedError,
    UnknownError,
    ValidationError,
)
from periolifts.core.result import Err, Ok, Result
from periolifts.schemas.stats import DateRange
from periolifts.schemas.workout import HistoryPage, WorkoutInput, WorkoutRecord, WorkoutStatus
from periolifts.services import filters
from periolifts.services.record_store import RecordStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

HISTORY_SORT = "-completed_at,-started_at,-created"
RANGE_SORT = "-completed_at"

MAX_NAME_LENGTH = 100
MAX_NOTES_LENGTH = 1000
MAX_REPS = 1000
MAX_SCHEDULE_AGE = timedelta(days=365)
MAX_RECENT = 50


@dataclass(frozen=True)
class HistoryFilter:
    start: datetime | None = None
    end: datetime | None = None
    status: WorkoutStatus | None = None
    exercise_name: str | None = None
    workout_name: str | None = None

    def expression(self, user_id: str) -> str:
        return filters.all_of(
            filters.eq("user_id", user_id),
            filters.gte("started_at", self.start) if self.start else None,
            filters.lte("completed_at", self.end) if self.end else None,
            filters.eq("status", self.status.value) if self.status else None,
            filters.contains("exercises", self.exercise_name.strip()) if self.exercise_name else None,
            filters.contains("name", self.workout_name.strip()) if self.workout_name else None,
        )


def range_expression(date_range: DateRange) -> str:
    """Records whose completion time, or scheduled date when never completed, falls in the range."""
    return filters.any_of(
        filters.all_of(
            filters.gte("completed_at", date_range.start),
            filters.lte("completed_at", date_range.end),
        ),
        filters.all_of(
            filters.eq("completed_at", ""),
            filters.gte("scheduled_date", date_range.start),
            filters.lte("scheduled_date", date_range.end),
        ),
    )


def validate_workout(data: WorkoutInput, *, now: datetime | None = None, check_schedule: bool = True) -> None:
    """Raise ``ValidationError`` listing every rule ``data`` breaks."""
    problems: list[str] = []
    name = data.name.strip()
    if not name:
        problems.append("Workout name cannot be empty")
    elif len(name) > MAX_NAME_LENGTH:
        problems.append(f"Workout name cannot exceed {MAX_NAME_LENGTH} characters")
    if len(data.notes) > MAX_NOTES_LENGTH:
        problems.append(f"Notes cannot exceed {MAX_NOTES_LENGTH} characters")

    for index, exercise in enumerate(data.exercises, start=1):
        if not exercise.exercise_id.strip():
            problems.append(f"Exercise {index}: exercise ID cannot be empty")
        if not exercise.name.strip():
            problems.append(f"Exercise {index}: exercise name cannot be empty")
        for set_number, entry in enumerate(exercise.sets, start=1):
            if entry.reps > MAX_REPS:
                problems.append(f"Exercise {index}, set {set_number}: reps must be between 0 and {MAX_REPS}")
            if not math.isfinite(entry.weight):
                problems.append(f"Exercise {index}, set {set_number}: weight must be a finite number")

    if data.started_at and data.completed_at and data.completed_at < data.started_at:
        problems.append("Completion time cannot be before start time")

    if check_schedule:
        now = now or datetime.now(timezone.utc)
        scheduled = data.scheduled_date
        if scheduled.tzinfo is None:
            scheduled = scheduled.replace(tzinfo=timezone.utc)
        if scheduled < now - MAX_SCHEDULE_AGE:
            problems.append("Scheduled date cannot be more than one year in the past")

    if problems:
        raise ValidationError("; ".join(problems), details={"errors": problems})


def to_workout(raw: dict[str, Any]) -> WorkoutRecord:
    try:
        return WorkoutRecord.from_record(raw)
    except ValueError as exc:
        raise ValidationError(
            f"Malformed workout record {raw.get('id') or '?'}",
            details={"record_id": raw.get("id"), "error": str(exc)},
        ) from exc


class WorkoutHistoryRepository:
    def __init__(
        self,
        store: RecordStore,
        user_id: str,
        *,
        collection: str = "workout_history",
        max_page_size: int = 100,
        batch_size: int = 200,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.user_id = user_id
        self.collection = collection
        self.max_page_size = max_page_size
        self.batch_size = batch_size
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def list_history(
        self,
        history_filter: HistoryFilter | None = None,
        *,
        page: int = 1,
        per_page: int = 20,
        cancel_token: CancellationToken | None = None,
    ) -> Result[HistoryPage]:
        async def fetch() -> HistoryPage:
            if page < 1:
                raise ValidationError("Page must be greater than 0")
            if not 1 <= per_page <= self.max_page_size:
                raise ValidationError(f"Per page must be between 1 and {self.max_page_size}")
            expression = (history_filter or HistoryFilter()).expression(self.user_id)
            result = await self._guarded(
                self.store.list(self.collection, filter=expression, sort=HISTORY_SORT, page=page, per_page=per_page),
                cancel_token,
            )
            return HistoryPage(
                page=result.page,
                per_page=result.per_page,
                total_items=result.total_items,
                total_pages=result.total_pages,
                items=[to_workout(item) for item in result.items],
            )

        return await self._run("list_history", fetch)

    async def fetch_range(
        self,
        date_range: DateRange | None = None,
        *,
        status: WorkoutStatus | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> Result[list[WorkoutRecord]]:
        """Every record of the user in ``date_range``, most recently completed first."""

        async def fetch() -> list[WorkoutRecord]:
            expression = filters.all_of(
                filters.eq("user_id", self.user_id),
                range_expression(date_range) if date_range else None,
                filters.eq("status", status.value) if status else None,
            )
            items = await self._guarded(
                self.store.list_all(self.collection, filter=expression, sort=RANGE_SORT, batch=self.batch_size),
                cancel_token,
            )
            return [to_workout(item) for item in items]

        return await self._run("fetch_range", fetch)

    async def recent(self, limit: int = 10, *, cancel_token: CancellationToken | None = None) -> Result[list[WorkoutRecord]]:
        async def fetch() -> list[WorkoutRecord]:
            if not 1 <= limit <= MAX_RECENT:
                raise ValidationError(f"Limit must be between 1 and {MAX_RECENT}")
            result = await self._guarded(
                self.store.list(
                    self.collection,
                    filter=filters.eq("user_id", self.user_id),
                    sort=HISTORY_SORT,
                    page=1,
                    per_page=limit,
                ),
                cancel_token,
            )
            return [to_workout(item) for item in result.items]

        return await self._run("recent", fetch)

    async def get(self, record_id: str, *, cancel_token: CancellationToken | None = None) -> Result[WorkoutRecord]:
        return await self._run("get", lambda: self._owned(record_id, cancel_token))

    async def create(self, data: WorkoutInput) -> Result[WorkoutRecord]:
        async def write() -> WorkoutRecord:
            validate_workout(data, now=self._clock())
            record = self._build(data)
            created = await self.store.create(self.collection, self._body(record))
            logger.info("Created workout %s for user %s", created.get("id"), self.user_id)
            return to_workout(created)

        return await self._run("create", write)

    async def update(self, record_id: str, data: WorkoutInput) -> Result[WorkoutRecord]:
        async def write() -> WorkoutRecord:
            existing = await self._owned(record_id, None)
            # Past workouts are edited after the fact, so the schedule age rule applies to creation only.
            validate_workout(data, check_schedule=False)
            record = self._build(data, record_id=existing.id)
            updated = await self.store.update(self.collection, record_id, self._body(record))
            return to_workout(updated)

        return await self._run("update", write)

    async def delete(self, record_id: str) -> Result[None]:
        async def write() -> None:
            await self._owned(record_id, None)
            await self.store.delete(self.collection, record_id)
            logger.info("Deleted workout %s for user %s", record_id, self.user_id)

        return await self._run("delete", write)

    async def _owned(self, record_id: str, cancel_token: CancellationToken | None) -> WorkoutRecord:
        if not record_id.strip():
            raise ValidationError("Record ID cannot be empty")
        raw = await self._guarded(self.store.get(self.collection, record_id), cancel_token)
        record = to_workout(raw)
        if record.user_id != self.user_id:
            raise PermissionDeniedError("Workout belongs to another user", details={"record_id": record_id})
        return record

    def _build(self, data: WorkoutInput, record_id: str = "") -> WorkoutRecord:
        try:
            return WorkoutRecord.model_validate(
                {**data.model_dump(), "id": record_id, "user_id": self.user_id, "name": data.name.strip()}
            )
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

    @staticmethod
    def _body(record: WorkoutRecord) -> dict[str, Any]:
        body = record.to_record()
        body.pop("id")
        return body

    @staticmethod
    async def _guarded(awaitable: Awaitable[T], cancel_token: CancellationToken | None) -> T:
        if cancel_token is None:
            return await awaitable
        return await cancel_token.run(awaitable)

    async def _run(self, operation: str, call: Callable[[], Awaitable[T]]) -> Result[T]:
        try:
            return Ok(await call())
        except FetchCancelledError as exc:
            logger.info("%s for user %s cancelled", operation, self.user_id)
            return Err(exc)
        except AppError as exc:
            return Err(exc)
        except Exception as exc:
            logger.exception("Unexpected failure in %s for user %s", operation, self.user_id)
            return Err(UnknownError(str(exc) or None, details={"operation": operation}))
