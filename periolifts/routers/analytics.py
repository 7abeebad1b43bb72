from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from periolifts.auth.dependencies import get_cancel_token, get_history_service
from periolifts.config import settings
from periolifts.core.cancellation import CancellationToken
from periolifts.core.exceptions import ValidationError
from periolifts.core.responses import StandardResponse, unwrap_result
from periolifts.schemas.stats import DateRange
from periolifts.schemas.workout import WorkoutStatus
from periolifts.services.calendar_service import Period, custom_range, now_in_user_tz, range_for
from periolifts.services.history_service import HistoryAnalyticsService

router = APIRouter()


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def requested_range(
    period: Period | None = None,
    from_date: datetime | None = Query(None, alias="from"),
    to_date: datetime | None = Query(None, alias="to"),
) -> DateRange | None:
    """``from``/``to`` win over ``period``; neither means all history."""
    if from_date is not None or to_date is not None:
        if from_date is None or to_date is None:
            raise ValidationError("Both 'from' and 'to' are required for a custom range")
        try:
            return custom_range(_aware(from_date), _aware(to_date))
        except ValueError as exc:
            raise ValidationError("'from' must not be after 'to'") from exc
    if period is not None:
        return range_for(period, now_in_user_tz(settings.USER_TIMEZONE))
    return None


def _or_this_month(date_range: DateRange | None) -> DateRange:
    return date_range or range_for(Period.MONTH, now_in_user_tz(settings.USER_TIMEZONE))


@router.get("/stats", response_model=StandardResponse)
async def get_stats(
    service: Annotated[HistoryAnalyticsService, Depends(get_history_service)],
    date_range: Annotated[DateRange | None, Depends(requested_range)],
    cancel_token: Annotated[CancellationToken, Depends(get_cancel_token)],
    workout_status: WorkoutStatus | None = Query(None, alias="status"),
):
    result = await service.stats(date_range, status=workout_status, cancel_token=cancel_token)
    return StandardResponse(data=unwrap_result(result))


@router.get("/patterns", response_model=StandardResponse)
async def get_patterns(
    service: Annotated[HistoryAnalyticsService, Depends(get_history_service)],
    date_range: Annotated[DateRange | None, Depends(requested_range)],
    cancel_token: Annotated[CancellationToken, Depends(get_cancel_token)],
):
    result = await service.patterns(_or_this_month(date_range), cancel_token=cancel_token)
    return StandardResponse(data=unwrap_result(result))


@router.get("/calendar", response_model=StandardResponse)
async def get_calendar(
    service: Annotated[HistoryAnalyticsService, Depends(get_history_service)],
    date_range: Annotated[DateRange | None, Depends(requested_range)],
    cancel_token: Annotated[CancellationToken, Depends(get_cancel_token)],
):
    result = await service.calendar(_or_this_month(date_range), cancel_token=cancel_token)
    return StandardResponse(data=unwrap_result(result))


@router.get("/personal-records", response_model=StandardResponse)
async def get_personal_records(
    service: Annotated[HistoryAnalyticsService, Depends(get_history_service)],
    date_range: Annotated[DateRange | None, Depends(requested_range)],
    cancel_token: Annotated[CancellationToken, Depends(get_cancel_token)],
):
    result = await service.personal_records(date_range, cancel_token=cancel_token)
    return StandardResponse(data=unwrap_result(result))
