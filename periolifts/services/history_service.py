"""Fetch-then-compute analytics for a single user's workout history."""
from datetime import tzinfo

from periolifts.core.cancellation import CancellationToken
from periolifts.core.exceptions import ValidationError
from periolifts.core.result import Err, Ok, Result
from periolifts.schemas.stats import DateRange, DaySummary, ExerciseHighlights, WorkoutHistoryStats, WorkoutPatterns
from periolifts.schemas.workout import DateSource, WorkoutStatus
from periolifts.services import calendar_service, stats_service
from periolifts.services.workout_repository import WorkoutHistoryRepository


class HistoryAnalyticsService:
    def __init__(
        self,
        repository: WorkoutHistoryRepository,
        *,
        date_source: DateSource = DateSource.COMPLETED_OR_SCHEDULED,
        tz: tzinfo | None = None,
        ranking_limit: int = 5,
    ):
        self.repository = repository
        self.date_source = date_source
        self.tz = tz
        self.ranking_limit = ranking_limit

    async def stats(
        self,
        date_range: DateRange | None = None,
        *,
        status: WorkoutStatus | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> Result[WorkoutHistoryStats]:
        fetched = await self.repository.fetch_range(date_range, status=status, cancel_token=cancel_token)
        if isinstance(fetched, Err):
            return fetched
        return self._compute(
            lambda: stats_service.compute_stats(fetched.value, user_id=self.repository.user_id, period=date_range)
        )

    async def patterns(
        self, date_range: DateRange, *, cancel_token: CancellationToken | None = None
    ) -> Result[WorkoutPatterns]:
        """Streaks and weekly activity for the records in ``date_range``, as of its end."""
        fetched = await self.repository.fetch_range(date_range, cancel_token=cancel_token)
        if isinstance(fetched, Err):
            return fetched
        reference = date_range.end.astimezone(self.tz).date() if self.tz else date_range.end.date()
        return self._compute(
            lambda: stats_service.compute_patterns(
                fetched.value, reference=reference, date_source=self.date_source, tz=self.tz
            )
        )

    async def calendar(
        self, date_range: DateRange, *, cancel_token: CancellationToken | None = None
    ) -> Result[list[DaySummary]]:
        fetched = await self.repository.fetch_range(date_range, cancel_token=cancel_token)
        if isinstance(fetched, Err):
            return fetched
        buckets = calendar_service.bucket_by_day(fetched.value, date_source=self.date_source, tz=self.tz)
        return self._compute(lambda: calendar_service.day_summaries(buckets))

    async def personal_records(
        self, date_range: DateRange | None = None, *, cancel_token: CancellationToken | None = None
    ) -> Result[ExerciseHighlights]:
        result = await self.stats(date_range, cancel_token=cancel_token)
        if isinstance(result, Err):
            return result
        stats = result.value
        return Ok(
            ExerciseHighlights(
                top_exercises=stats_service.top_exercises(stats, self.ranking_limit),
                personal_records=stats_service.personal_records(stats, self.ranking_limit),
                volume_leaders=stats_service.volume_leaders(stats, self.ranking_limit),
            )
        )

    @staticmethod
    def _compute(compute) -> Result:
        # Records that reach aggregation malformed are reported, never zeroed out.
        try:
            return Ok(compute())
        except ValueError as exc:
            return Err(ValidationError(str(exc)))
