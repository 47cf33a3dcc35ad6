"""
Database-backed storage for the state document, using SQLAlchemy.

Uses async SQLAlchemy for non-blocking database operations. The state
document is kept as a single row per storage key; every write replaces
that row inside one committed transaction.

Design Decisions:
- AsyncSession for non-blocking operations
- One key/value table instead of per-entity tables, so the stored payload
  is byte-for-byte the exported document
- Tables created on first use; use migrations for anything long-lived
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator

from sqlalchemy import DateTime, String, Text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from medverify.infrastructure.storage import DocumentBackend

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class StateDocumentRow(Base):
    """Serialized state document stored under a key."""
    __tablename__ = "state_documents"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    payload: Mapped[str] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class DatabaseBackend(DocumentBackend):
    """
    SQLAlchemy storage backend.

    Example:
        backend = DatabaseBackend("sqlite+aiosqlite:///./medverify.db")
        await backend.write("medverify_state_vr1", raw)
    """

    def __init__(self, url: str, echo: bool = False) -> None:
        self.url = url
        self.echo = echo
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._initialized = False

    def _get_engine(self) -> AsyncEngine:
        """Get or create the async database engine."""
        if self._engine is None:
            self._engine = create_async_engine(self.url, echo=self.echo)
            logger.info(f"Database engine created for {self._engine.url.render_as_string(hide_password=True)}")
        return self._engine

    async def _init_tables(self) -> None:
        if not self._initialized:
            async with self._get_engine().begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            self._initialized = True
            logger.info("Database tables initialized")

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        await self._init_tables()
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                self._get_engine(),
                class_=AsyncSession,
                expire_on_commit=False,
            )
        session = self._session_factory()
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def read(self, key: str) -> str | None:
        async with self._session() as session:
            row = await session.get(StateDocumentRow, key)
            return row.payload if row else None

    async def write(self, key: str, raw: str) -> None:
        async with self._session() as session:
            row = await session.get(StateDocumentRow, key)
            if row is None:
                session.add(StateDocumentRow(key=key, payload=raw))
            else:
                row.payload = raw
            await session.commit()

    async def delete(self, key: str) -> bool:
        async with self._session() as session:
            row = await session.get(StateDocumentRow, key)
            if row is None:
                return False
            await session.delete(row)
            await session.commit()
            return True

    async def close(self) -> None:
        """Close database connections on shutdown."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            self._initialized = False
        logger.info("Database connections closed")
