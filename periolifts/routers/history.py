from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from periolifts.auth.dependencies import get_cancel_token, get_record_store, get_repository
from periolifts.config import settings
from periolifts.core.cancellation import CancellationToken
from periolifts.core.responses import StandardResponse, unwrap_result
from periolifts.schemas.workout import WorkoutInput, WorkoutStatus
from periolifts.services.offline_cache import CachingRecordStore, SyncReport
from periolifts.services.record_store import RecordStore
from periolifts.services.workout_repository import HistoryFilter, WorkoutHistoryRepository

router = APIRouter()


@router.get("", response_model=StandardResponse)
async def list_history(
    repository: Annotated[WorkoutHistoryRepository, Depends(get_repository)],
    cancel_token: Annotated[CancellationToken, Depends(get_cancel_token)],
    from_date: datetime | None = Query(None, alias="from"),
    to_date: datetime | None = Query(None, alias="to"),
    workout_status: WorkoutStatus | None = Query(None, alias="status"),
    exercise: str | None = None,
    name: str | None = None,
    page: int = 1,
    per_page: int = Query(settings.DEFAULT_PAGE_SIZE, alias="perPage"),
):
    history_filter = HistoryFilter(
        start=from_date, end=to_date, status=workout_status, exercise_name=exercise, workout_name=name
    )
    result = await repository.list_history(history_filter, page=page, per_page=per_page, cancel_token=cancel_token)
    return StandardResponse(data=unwrap_result(result))


@router.post("", response_model=StandardResponse, status_code=status.HTTP_201_CREATED)
async def create_workout(
    data: WorkoutInput,
    repository: Annotated[WorkoutHistoryRepository, Depends(get_repository)],
):
    result = await repository.create(data)
    return StandardResponse(data=unwrap_result(result), message="Workout saved")


@router.get("/recent", response_model=StandardResponse)
async def recent_workouts(
    repository: Annotated[WorkoutHistoryRepository, Depends(get_repository)],
    cancel_token: Annotated[CancellationToken, Depends(get_cancel_token)],
    limit: int = 10,
):
    result = await repository.recent(limit, cancel_token=cancel_token)
    return StandardResponse(data=unwrap_result(result))


@router.get("/{record_id}", response_model=StandardResponse)
async def get_workout(
    record_id: str,
    repository: Annotated[WorkoutHistoryRepository, Depends(get_repository)],
    cancel_token: Annotated[CancellationToken, Depends(get_cancel_token)],
):
    result = await repository.get(record_id, cancel_token=cancel_token)
    return StandardResponse(data=unwrap_result(result))


@router.put("/{record_id}", response_model=StandardResponse)
async def update_workout(
    record_id: str,
    data: WorkoutInput,
    repository: Annotated[WorkoutHistoryRepository, Depends(get_repository)],
):
    result = await repository.update(record_id, data)
    return StandardResponse(data=unwrap_result(result), message="Workout updated")


@router.delete("/{record_id}", response_model=StandardResponse)
async def delete_workout(
    record_id: str,
    repository: Annotated[WorkoutHistoryRepository, Depends(get_repository)],
):
    unwrap_result(await repository.delete(record_id))
    return StandardResponse(message="Workout deleted")


@router.post("/sync", response_model=StandardResponse)
async def sync_offline_writes(store: Annotated[RecordStore, Depends(get_record_store)]):
    """Replay writes queued while the record store was unreachable."""
    if not isinstance(store, CachingRecordStore):
        return StandardResponse(data=SyncReport(), message="Offline cache is disabled")
    report = await store.sync_pending()
    return StandardResponse(data=report)
