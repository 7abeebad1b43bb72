import enum
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, Enum, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from periolifts.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CachedRecord(Base):
    """Last copy of a single record seen from the record store."""
    __tablename__ = "cached_records"
    __table_args__ = (UniqueConstraint("collection", "record_id", name="uq_cached_record"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    collection: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    record_id: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    cached_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class CachedQuery(Base):
    """Last response to a list query of one user, keyed by its filter, sort and paging."""
    __tablename__ = "cached_queries"
    __table_args__ = (UniqueConstraint("user_id", "collection", "kind", "query_key", name="uq_cached_query"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    collection: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    query_key: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[Any] = mapped_column(JSON, nullable=False)
    cached_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class PendingAction(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class PendingOperation(Base):
    """A user's write made while the record store was unreachable, replayed in id order with their token."""
    __tablename__ = "pending_operations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    collection: Mapped[str] = mapped_column(String(100), nullable=False)
    action: Mapped[PendingAction] = mapped_column(Enum(PendingAction), nullable=False)
    record_id: Mapped[str] = mapped_column(String(64), nullable=False)  # local-* id for queued creates
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
