from __future__ import annotations

import asyncio

from sqlalchemy import create_engine, inspect, text

from app.database import Database
from app.db_models import LEGACY_REVIEW_UNIQUE_INDEX, REVIEW_UNIQUE_INDEX


def _initialise_legacy_schema(database_path: str) -> None:
    """Create a reviews table whose uniqueness is scoped to the account only."""

    engine = create_engine(f"sqlite:///{database_path}")
    try:
        with engine.begin() as connection:
            connection.execute(
                text(
                    """
                    CREATE TABLE reviews (
                        id VARCHAR(32) PRIMARY KEY,
                        author_id VARCHAR(64),
                        profile_id VARCHAR(64),
                        media_ref VARCHAR(64),
                        rating FLOAT,
                        content TEXT,
                        is_public BOOLEAN NOT NULL,
                        spoiler BOOLEAN NOT NULL,
                        like_count INTEGER NOT NULL,
                        created_at DATETIME,
                        updated_at DATETIME
                    )
                    """
                )
            )
            connection.execute(
                text(
                    f"CREATE UNIQUE INDEX {LEGACY_REVIEW_UNIQUE_INDEX} "
                    "ON reviews (author_id, media_ref)"
                )
            )
    finally:
        engine.dispose()


def test_create_all_moves_uniqueness_to_profile_scope(tmp_path) -> None:
    """Schema migrations should replace the account-scoped review index."""

    database_path = tmp_path / "legacy.db"
    _initialise_legacy_schema(str(database_path))

    database = Database(f"sqlite+aiosqlite:///{database_path}")
    asyncio.run(database.create_all())
    asyncio.run(database.dispose())

    inspector_engine = create_engine(f"sqlite:///{database_path}")
    try:
        inspector = inspect(inspector_engine)
        indexes = {index["name"]: index for index in inspector.get_indexes("reviews")}
        tables = set(inspector.get_table_names())
    finally:
        inspector_engine.dispose()

    assert LEGACY_REVIEW_UNIQUE_INDEX not in indexes
    assert indexes[REVIEW_UNIQUE_INDEX]["column_names"] == [
        "author_id",
        "profile_id",
        "media_ref",
    ]
    assert {"media_items", "profiles", "external_media_cache"} <= tables


def test_create_all_is_repeatable(tmp_path) -> None:
    async def runner() -> None:
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'fresh.db'}")
        await database.create_all()
        await database.create_all()
        await database.dispose()

    asyncio.run(runner())
