from __future__ import annotations

import asyncio

from app.database import Database
from app.models import AggregateRating, MediaUpsertRequest
from app.services.media_store import MediaStore
from app.services.review_store import NewReview, ReviewStore
from reelrate.__main__ import rebuild_aggregates


def test_rebuild_aggregates_command_repairs_stale_rows(tmp_path) -> None:
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"

    async def seed() -> str:
        database = Database(database_url)
        await database.create_all()
        media_store = MediaStore(database.session_factory)
        reviews = ReviewStore(database.session_factory, media_store)
        media = await media_store.upsert_media(
            MediaUpsertRequest(external_id=603, media_kind="movie", title="The Matrix")
        )
        await reviews.create(
            NewReview(
                author_id="alice",
                profile_id="p1",
                media_ref=media.id,
                rating=4,
                content="Stale until rebuilt",
            )
        )
        await database.dispose()
        return media.id

    async def stored(media_id: str) -> AggregateRating:
        database = Database(database_url)
        record = await MediaStore(database.session_factory).find_by_local_id(media_id)
        await database.dispose()
        assert record is not None
        return record.aggregate

    media_id = asyncio.run(seed())
    assert asyncio.run(stored(media_id)) == AggregateRating(0.0, 0)

    assert asyncio.run(rebuild_aggregates(database_url)) == 1
    assert asyncio.run(stored(media_id)) == AggregateRating(4.0, 1)
