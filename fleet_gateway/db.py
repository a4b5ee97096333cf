"""
Relational storage for alert workflow state.

Three tables keyed by (company, alert id): the alert state itself, its
ordered action-plan steps and its append-only comments. The engine is
created lazily so importing the package never opens a connection.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .config_loader import config

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class AlertState(Base):
    __tablename__ = "alert_states"

    company: Mapped[str] = mapped_column(String(128), primary_key=True)
    alert_id: Mapped[str] = mapped_column(String(256), primary_key=True)
    status: Mapped[str] = mapped_column(String(32), default="new")
    type: Mapped[str] = mapped_column(String(64), default="success")
    taken_by: Mapped[str | None] = mapped_column(String(256), nullable=True)
    taken_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class AlertAction(Base):
    __tablename__ = "alert_actions"

    company: Mapped[str] = mapped_column(String(128), primary_key=True)
    alert_id: Mapped[str] = mapped_column(String(256), primary_key=True)
    action_id: Mapped[str] = mapped_column(String(256), primary_key=True)
    label: Mapped[str] = mapped_column(Text, default="")
    done: Mapped[bool] = mapped_column(Boolean, default=False)
    position: Mapped[int] = mapped_column(Integer, default=0)
    created_by: Mapped[str | None] = mapped_column(String(256), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class AlertCommentRow(Base):
    __tablename__ = "alert_comments"

    company: Mapped[str] = mapped_column(String(128), primary_key=True)
    alert_id: Mapped[str] = mapped_column(String(256), primary_key=True)
    comment_id: Mapped[str] = mapped_column(String(256), primary_key=True)
    text: Mapped[str] = mapped_column(Text, default="")
    author: Mapped[str | None] = mapped_column(String(256), nullable=True)
    at_local: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class Database:
    """Owns the async engine and hands out transactional sessions."""

    def __init__(self, url: str | None = None, echo: bool | None = None):
        self.url = url or config.database_url
        self.echo = config.database_echo if echo is None else echo
        self._engine: AsyncEngine | None = None
        self._sessionmaker: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            kwargs = {"echo": self.echo}
            if self.url.startswith("sqlite") and ":memory:" in self.url:
                # One shared connection, otherwise every session sees an empty database.
                from sqlalchemy.pool import StaticPool

                kwargs["poolclass"] = StaticPool
            self._engine = create_async_engine(self.url, **kwargs)
            self._sessionmaker = async_sessionmaker(self._engine, expire_on_commit=False)
        return self._engine

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    async def create_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Plain session for reads."""
        _ = self.engine
        async with self._sessionmaker() as session:
            yield session

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """
        Session wrapped in one transaction.

        Commits when the block exits normally; any exception rolls the whole
        batch back and propagates, so partial writes are never visible.
        """
        transaction_id = uuid.uuid4().hex[:8]
        async with self.session() as session:
            try:
                yield session
                await session.commit()
                logger.debug("Transaction %s committed", transaction_id)
            except BaseException as exc:
                await session.rollback()
                logger.error("Transaction %s rolled back: %s", transaction_id, exc)
                raise

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None


__all__ = ["AlertAction", "AlertCommentRow", "AlertState", "Base", "Database"]
