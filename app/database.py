"""Database utilities for the ReelRate service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import MetaData, inspect, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from .errors import StorageUnavailable

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base with consistent naming conventions."""

    metadata = MetaData()


class Database:
    """Thin wrapper managing the SQLAlchemy async engine and sessions."""

    def __init__(self, database_url: str):
        self._engine: AsyncEngine = create_async_engine(database_url, future=True)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_all(self) -> None:
        """Create database tables if they do not yet exist."""

        # Registers the ORM tables on ``Base.metadata``.
        from . import db_models  # noqa: F401

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
            await connection.run_sync(self._apply_schema_migrations)

    @staticmethod
    def _apply_schema_migrations(sync_connection) -> None:
        """Move review uniqueness from account scope to profile scope."""

        from .db_models import LEGACY_REVIEW_UNIQUE_INDEX, REVIEW_UNIQUE_INDEX

        inspector = inspect(sync_connection)
        if "reviews" not in inspector.get_table_names():
            return

        index_names = {
            index["name"] for index in inspector.get_indexes("reviews")
        }
        constraint_names = {
            constraint["name"]
            for constraint in inspector.get_unique_constraints("reviews")
            if constraint.get("name")
        }

        if LEGACY_REVIEW_UNIQUE_INDEX in index_names:
            logger.info("Dropping superseded review index %s", LEGACY_REVIEW_UNIQUE_INDEX)
            sync_connection.execute(text(f"DROP INDEX {LEGACY_REVIEW_UNIQUE_INDEX}"))

        if REVIEW_UNIQUE_INDEX not in index_names | constraint_names:
            logger.info("Creating review index %s", REVIEW_UNIQUE_INDEX)
            sync_connection.execute(
                text(
                    f"CREATE UNIQUE INDEX {REVIEW_UNIQUE_INDEX} "
                    "ON reviews (author_id, profile_id, media_ref)"
                )
            )

    async def dispose(self) -> None:
        """Dispose of the underlying database engine."""

        await self._engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Provide a transactional scope around a series of operations."""

        async with self.session_factory() as session:
            yield session


@asynccontextmanager
async def guarded_session(
    session_factory: async_sessionmaker[AsyncSession], operation: str
) -> AsyncIterator[AsyncSession]:
    """Open a session, reporting driver failures as ``StorageUnavailable``.

    Constraint violations are re-raised untouched so stores can translate them.
    """

    try:
        async with session_factory() as session:
            yield session
    except IntegrityError:
        raise
    except SQLAlchemyError as exc:
        logger.exception("Storage failure during %s", operation)
        raise StorageUnavailable(f"Storage failure during {operation}") from exc
