"""Write-through cache and offline write queue in front of the record store."""
from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from periolifts.core.exceptions import AppError, NetworkError, NotFoundError
from periolifts.models import CachedQuery, CachedRecord, PendingAction, PendingOperation
from periolifts.services.record_store import RecordPage, RecordStore

logger = logging.getLogger(__name__)

LOCAL_ID_PREFIX = "local-"


def is_local_id(record_id: str) -> bool:
    return record_id.startswith(LOCAL_ID_PREFIX)


class OfflineCache:
    """Cached records, per-user list queries and the per-user pending write queue.

    At most ``query_limit`` list queries are kept per user, collection and
    kind; the least recently written ones are evicted first.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], *, query_limit: int = 50):
        self._session_factory = session_factory
        self._query_limit = query_limit

    async def put_record(self, collection: str, record: dict[str, Any]) -> None:
        async with self._session_factory() as session:
            row = await self._record_row(session, collection, record["id"])
            if row is None:
                session.add(CachedRecord(collection=collection, record_id=record["id"], payload=record))
            else:
                row.payload = record
            await session.commit()

    async def get_record(self, collection: str, record_id: str) -> dict[str, Any] | None:
        async with self._session_factory() as session:
            row = await self._record_row(session, collection, record_id)
            return row.payload if row else None

    async def drop_record(self, collection: str, record_id: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                delete(CachedRecord).where(
                    CachedRecord.collection == collection, CachedRecord.record_id == record_id
                )
            )
            await session.commit()

    async def put_query(self, user_id: str, collection: str, kind: str, key: str, payload: Any) -> None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(CachedQuery).where(
                    CachedQuery.user_id == user_id,
                    CachedQuery.collection == collection,
                    CachedQuery.kind == kind,
                    CachedQuery.query_key == key,
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                session.add(
                    CachedQuery(user_id=user_id, collection=collection, kind=kind, query_key=key, payload=payload)
                )
            else:
                row.payload = payload
                row.cached_at = datetime.now(timezone.utc)
            await session.flush()

            stale = await session.execute(
                select(CachedQuery.id)
                .where(CachedQuery.user_id == user_id, CachedQuery.collection == collection, CachedQuery.kind == kind)
                .order_by(CachedQuery.cached_at.desc(), CachedQuery.id.desc())
                .offset(self._query_limit)
            )
            stale_ids = list(stale.scalars().all())
            if stale_ids:
                await session.execute(delete(CachedQuery).where(CachedQuery.id.in_(stale_ids)))
            await session.commit()

    async def get_query(self, user_id: str, collection: str, kind: str, key: str) -> Any | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(CachedQuery.payload).where(
                    CachedQuery.user_id == user_id,
                    CachedQuery.collection == collection,
                    CachedQuery.kind == kind,
                    CachedQuery.query_key == key,
                )
            )
            return result.scalar_one_or_none()

    async def count_queries(self, user_id: str, collection: str) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count(CachedQuery.id)).where(
                    CachedQuery.user_id == user_id, CachedQuery.collection == collection
                )
            )
            return result.scalar_one()

    async def enqueue(
        self,
        user_id: str,
        collection: str,
        action: PendingAction,
        record_id: str,
        payload: dict[str, Any] | None = None,
    ) -> PendingOperation:
        async with self._session_factory() as session:
            operation = PendingOperation(
                user_id=user_id, collection=collection, action=action, record_id=record_id, payload=payload
            )
            session.add(operation)
            await session.commit()
            return operation

    async def pending(self, user_id: str) -> list[PendingOperation]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(PendingOperation).where(PendingOperation.user_id == user_id).order_by(PendingOperation.id)
            )
            return list(result.scalars().all())

    async def pending_create(self, user_id: str, collection: str, record_id: str) -> PendingOperation | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(PendingOperation).where(
                    PendingOperation.user_id == user_id,
                    PendingOperation.collection == collection,
                    PendingOperation.record_id == record_id,
                    PendingOperation.action == PendingAction.CREATE,
                )
            )
            return result.scalar_one_or_none()

    async def replace_payload(self, operation_id: int, payload: dict[str, Any]) -> None:
        async with self._session_factory() as session:
            operation = await session.get(PendingOperation, operation_id)
            if operation is not None:
                operation.payload = payload
                await session.commit()

    async def remove_pending(self, operation_id: int) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(PendingOperation).where(PendingOperation.id == operation_id))
            await session.commit()

    async def record_failure(self, operation_id: int, error: str) -> None:
        async with self._session_factory() as session:
            operation = await session.get(PendingOperation, operation_id)
            if operation is not None:
                operation.attempts += 1
                operation.last_error = error
                await session.commit()

    @staticmethod
    async def _record_row(session: AsyncSession, collection: str, record_id: str) -> CachedRecord | None:
        result = await session.execute(
            select(CachedRecord).where(CachedRecord.collection == collection, CachedRecord.record_id == record_id)
        )
        return result.scalar_one_or_none()


@dataclass
class SyncReport:
    applied: int = 0
    rejected: list[int] = field(default_factory=list)
    remaining: int = 0


# Filter timestamps are cut to the day so ranges ending "now" reuse one entry per day.
_FILTER_TIMESTAMP = re.compile(r"(\d{4}-\d{2}-\d{2}) \d{2}:\d{2}:\d{2}\.\d{3}Z")


def _query_key(filter: str, sort: str, page: int, per_page: int) -> str:
    day_filter = _FILTER_TIMESTAMP.sub(r"\1", filter)
    return f"{page}|{per_page}|{sort}|{day_filter}"


class CachingRecordStore:
    """``RecordStore`` that falls back to cached data when the live store is unreachable.

    Only ``NetworkError`` triggers the fallback; authentication, validation
    and server errors propagate untouched so callers never mistake a stale
    copy for an authoritative answer to a request the store rejected.

    Queued writes and cached queries belong to ``user_id``; ``sync_pending``
    replays only that user's queue, since it runs with their token.
    """

    def __init__(self, live: RecordStore, cache: OfflineCache, user_id: str):
        self.live = live
        self.cache = cache
        self.user_id = user_id

    async def list(
        self, collection: str, *, filter: str = "", sort: str = "", page: int = 1, per_page: int = 20
    ) -> RecordPage:
        key = _query_key(filter, sort, page, per_page)
        try:
            result = await self.live.list(collection, filter=filter, sort=sort, page=page, per_page=per_page)
        except NetworkError:
            cached = await self.cache.get_query(self.user_id, collection, "page", key)
            if cached is None:
                raise
            logger.info("Serving cached page for %s", collection)
            return RecordPage.model_validate(cached)
        await self.cache.put_query(self.user_id, collection, "page", key, result.model_dump(by_alias=True))
        return result

    async def list_all(
        self, collection: str, *, filter: str = "", sort: str = "", batch: int = 200
    ) -> list[dict[str, Any]]:
        key = _query_key(filter, sort, 0, batch)
        try:
            items = await self.live.list_all(collection, filter=filter, sort=sort, batch=batch)
        except NetworkError:
            cached = await self.cache.get_query(self.user_id, collection, "all", key)
            if cached is None:
                raise
            logger.info("Serving cached full list for %s", collection)
            return list(cached)
        await self.cache.put_query(self.user_id, collection, "all", key, items)
        return items

    async def get(self, collection: str, record_id: str) -> dict[str, Any]:
        if is_local_id(record_id):
            return await self._cached_or_raise(collection, record_id, NotFoundError("Record not yet synced"))
        try:
            record = await self.live.get(collection, record_id)
        except NetworkError as exc:
            return await self._cached_or_raise(collection, record_id, exc)
        await self.cache.put_record(collection, record)
        return record

    async def create(self, collection: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            record = await self.live.create(collection, body)
        except NetworkError:
            now = datetime.now(timezone.utc).isoformat()
            record = {**body, "id": f"{LOCAL_ID_PREFIX}{uuid.uuid4().hex}", "created": now, "updated": now}
            await self.cache.enqueue(self.user_id, collection, PendingAction.CREATE, record["id"], body)
            logger.info("Queued offline create %s in %s", record["id"], collection)
        await self.cache.put_record(collection, record)
        return record

    async def update(self, collection: str, record_id: str, body: dict[str, Any]) -> dict[str, Any]:
        if not is_local_id(record_id):
            try:
                record = await self.live.update(collection, record_id, body)
            except NetworkError:
                await self.cache.enqueue(self.user_id, collection, PendingAction.UPDATE, record_id, body)
                logger.info("Queued offline update of %s in %s", record_id, collection)
            else:
                await self.cache.put_record(collection, record)
                return record
        else:
            queued = await self.cache.pending_create(self.user_id, collection, record_id)
            if queued is not None:
                await self.cache.replace_payload(queued.id, {**(queued.payload or {}), **body})

        record = {**(await self.cache.get_record(collection, record_id) or {}), **body, "id": record_id}
        await self.cache.put_record(collection, record)
        return record

    async def delete(self, collection: str, record_id: str) -> None:
        if is_local_id(record_id):
            queued = await self.cache.pending_create(self.user_id, collection, record_id)
            if queued is not None:
                await self.cache.remove_pending(queued.id)
        else:
            try:
                await self.live.delete(collection, record_id)
            except NetworkError:
                await self.cache.enqueue(self.user_id, collection, PendingAction.DELETE, record_id)
                logger.info("Queued offline delete of %s in %s", record_id, collection)
        await self.cache.drop_record(collection, record_id)

    async def sync_pending(self) -> SyncReport:
        """Replay queued writes in order, stopping at the first network failure."""
        report = SyncReport()
        operations = await self.cache.pending(self.user_id)
        for index, operation in enumerate(operations):
            try:
                await self._replay(operation)
            except NetworkError as exc:
                await self.cache.record_failure(operation.id, exc.message)
                report.remaining = len(operations) - index
                logger.info("Sync paused with %s operations pending", report.remaining)
                return report
            except AppError as exc:
                logger.warning(
                    "Dropping queued %s of %s: %s", operation.action.value, operation.record_id, exc.message
                )
                report.rejected.append(operation.id)
            else:
                report.applied += 1
            await self.cache.remove_pending(operation.id)
        return report

    async def _replay(self, operation: PendingOperation) -> None:
        collection = operation.collection
        if operation.action == PendingAction.CREATE:
            record = await self.live.create(collection, operation.payload or {})
            await self.cache.drop_record(collection, operation.record_id)
            await self.cache.put_record(collection, record)
        elif operation.action == PendingAction.UPDATE:
            record = await self.live.update(collection, operation.record_id, operation.payload or {})
            await self.cache.put_record(collection, record)
        else:
            await self.live.delete(collection, operation.record_id)

    async def _cached_or_raise(self, collection: str, record_id: str, error: AppError) -> dict[str, Any]:
        cached = await self.cache.get_record(collection, record_id)
        if cached is None:
            raise error
        logger.info("Serving cached record %s from %s", record_id, collection)
        return cached
