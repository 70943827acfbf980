"""
SQL session store.

Uses SQLAlchemy 2.0 async ORM. Many sessions share the ``session_entries``
table, keyed by ``session_id``.
"""

from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import JSON, DateTime, Integer, String, UniqueConstraint, select
from sqlalchemy.ext.asyncio import AsyncAttrs, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..errors import SessionIntegrityError
from ..messages import message_from_dict, message_to_dict
from .store import SessionStore, with_id
from .tree import MESSAGE_ENTRY, SessionEntry, SessionTree

logger = structlog.get_logger()


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all models."""
    pass


class SessionEntryRecord(Base):
    """One session entry row."""

    __tablename__ = "session_entries"
    __table_args__ = (UniqueConstraint("session_id", "entry_id", name="uq_session_entry"),)

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(64), index=True)
    entry_id: Mapped[str] = mapped_column(String(64))
    parent_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entry_type: Mapped[str] = mapped_column(String(50), default=MESSAGE_ENTRY)

    message: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    extra_data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    def to_entry(self) -> SessionEntry:
        created_at = self.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return SessionEntry(
            id=self.entry_id,
            parent_id=self.parent_id,
            type=self.entry_type,
            message=message_from_dict(self.message) if self.message is not None else None,
            metadata=dict(self.extra_data or {}),
            created_at=created_at,
        )


async def init_database(database_url: str) -> async_sessionmaker:
    """Initialize the database and return session maker."""
    engine = create_async_engine(database_url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    return async_sessionmaker(engine, expire_on_commit=False)


class SqlSessionStore(SessionStore):
    """Session store persisted through an async SQLAlchemy session maker."""

    def __init__(self, session_maker: async_sessionmaker, session_id: str):
        self.session_maker = session_maker
        self.session_id = session_id

    async def load(self) -> SessionTree:
        async with self.session_maker() as db:
            result = await db.execute(
                select(SessionEntryRecord)
                .where(SessionEntryRecord.session_id == self.session_id)
                .order_by(SessionEntryRecord.seq)
            )
            records = result.scalars().all()
        return SessionTree(record.to_entry() for record in records)

    async def _exists(self, db, entry_id: str) -> bool:
        result = await db.execute(
            select(SessionEntryRecord.seq).where(
                SessionEntryRecord.session_id == self.session_id,
                SessionEntryRecord.entry_id == entry_id,
            )
        )
        return result.scalar_one_or_none() is not None

    async def append(self, entry: SessionEntry) -> SessionEntry:
        entry = with_id(entry)
        async with self.session_maker() as db:
            if await self._exists(db, entry.id):
                raise SessionIntegrityError(f"Duplicate session entry id: {entry.id}")
            if entry.parent_id is not None and not await self._exists(db, entry.parent_id):
                raise SessionIntegrityError(
                    f"Entry {entry.id} references unknown parent {entry.parent_id}"
                )

            db.add(SessionEntryRecord(
                session_id=self.session_id,
                entry_id=entry.id,
                parent_id=entry.parent_id,
                entry_type=entry.type,
                message=message_to_dict(entry.message) if entry.message is not None else None,
                extra_data=dict(entry.metadata),
                created_at=entry.created_at,
            ))
            await db.commit()

        logger.debug("Session entry stored", session_id=self.session_id, entry_id=entry.id)
        return entry
