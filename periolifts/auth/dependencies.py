import asyncio
import time
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from typing import Annotated

import httpx
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from periolifts.config import settings
from periolifts.core.cancellation import CancellationToken
from periolifts.core.exceptions import AuthenticationError
from periolifts.schemas.workout import DateSource
from periolifts.services.history_service import HistoryAnalyticsService
from periolifts.services.offline_cache import CachingRecordStore
from periolifts.services.record_store import PocketBaseClient, RecordStore
from periolifts.services.calendar_service import get_user_timezone
from periolifts.services.workout_repository import WorkoutHistoryRepository

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class SessionUser:
    user_id: str
    token: str


def read_session(token: str, *, now: float | None = None) -> SessionUser:
    """Identify the user behind a record store auth token.

    The signature is checked by the record store on every call made with the
    token; here the claims are only read to learn whose history to query.
    """
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError as exc:
        raise AuthenticationError("Invalid session token") from exc

    user_id = claims.get("id")
    if not user_id:
        raise AuthenticationError("Session token has no user id")
    expires_at = claims.get("exp")
    if expires_at is not None and float(expires_at) <= (now if now is not None else time.time()):
        raise AuthenticationError("Session expired")
    return SessionUser(user_id=str(user_id), token=token)


async def get_current_session(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> SessionUser:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError()
    return read_session(credentials.credentials)


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


async def get_record_store(
    request: Request,
    session: Annotated[SessionUser, Depends(get_current_session)],
    http: Annotated[httpx.AsyncClient, Depends(get_http_client)],
) -> RecordStore:
    client = PocketBaseClient(
        http,
        token=session.token,
        retry_attempts=settings.NETWORK_RETRY_ATTEMPTS,
        retry_backoff_seconds=settings.NETWORK_RETRY_BACKOFF_SECONDS,
    )
    cache = getattr(request.app.state, "offline_cache", None)
    if cache is None:
        return client
    return CachingRecordStore(client, cache, session.user_id)


async def get_repository(
    session: Annotated[SessionUser, Depends(get_current_session)],
    store: Annotated[RecordStore, Depends(get_record_store)],
) -> WorkoutHistoryRepository:
    return WorkoutHistoryRepository(
        store,
        session.user_id,
        collection=settings.HISTORY_COLLECTION,
        max_page_size=settings.MAX_PAGE_SIZE,
        batch_size=settings.FULL_LIST_BATCH_SIZE,
    )


async def get_history_service(
    repository: Annotated[WorkoutHistoryRepository, Depends(get_repository)],
) -> HistoryAnalyticsService:
    return HistoryAnalyticsService(
        repository,
        date_source=DateSource(settings.STREAK_DATE_SOURCE),
        tz=get_user_timezone(settings.USER_TIMEZONE),
    )


DISCONNECT_POLL_SECONDS = 0.5


async def _watch_disconnect(request: Request, token: CancellationToken) -> None:
    while not token.cancelled:
        if await request.is_disconnected():
            token.cancel("client disconnected")
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


async def get_cancel_token(request: Request) -> AsyncGenerator[CancellationToken, None]:
    """Token cancelled when the client goes away before its response is ready."""
    token = CancellationToken()
    watcher = asyncio.create_task(_watch_disconnect(request, token))
    try:
        yield token
    finally:
        watcher.cancel()
