from __future__ import annotations

import asyncio

import pytest

from app.database import Database
from app.models import AggregateRating, MediaUpsertRequest
from app.services.media_store import MediaStore
from app.services.rating_aggregator import RatingAggregator, summarize
from app.services.review_store import NewReview, ReviewStore
from app.utils import round_rating


@pytest.mark.parametrize(
    ("ratings", "expected"),
    [
        ([], AggregateRating(0.0, 0)),
        ([0, 0], AggregateRating(0.0, 0)),
        ([4], AggregateRating(4.0, 1)),
        ([4, 0, 2], AggregateRating(3.0, 2)),
        ([3.5, 3], AggregateRating(3.3, 2)),
        ([5, 4, 4], AggregateRating(4.3, 3)),
    ],
)
def test_summarize_counts_only_positive_ratings(ratings, expected) -> None:
    assert summarize(ratings) == expected


def test_round_rating_half_up() -> None:
    assert round_rating(3.25) == 3.3
    assert round_rating(2.75) == 2.8
    assert round_rating(4.0) == 4.0


def _fixed(aggregate: AggregateRating):
    async def derive(session) -> AggregateRating:
        return aggregate

    return derive


async def _open(tmp_path) -> tuple[Database, MediaStore, ReviewStore, RatingAggregator]:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'aggregate.db'}")
    await database.create_all()
    media_store = MediaStore(database.session_factory)
    review_store = ReviewStore(database.session_factory, media_store)
    return database, media_store, review_store, RatingAggregator(review_store, media_store)


def test_recompute_is_idempotent_and_persists_local(tmp_path) -> None:
    async def runner() -> None:
        database, media_store, reviews, aggregator = await _open(tmp_path)
        media = await media_store.upsert_media(
            MediaUpsertRequest(external_id=603, media_kind="movie", title="The Matrix")
        )
        for profile_id, rating in (("p1", 5), ("p2", 4)):
            await reviews.create(
                NewReview(
                    author_id="acct",
                    profile_id=profile_id,
                    media_ref=media.id,
                    rating=rating,
                    content="Take",
                )
            )

        first = await aggregator.recompute(media.id)
        second = await aggregator.recompute(media.id)
        stored = await media_store.find_by_local_id(media.id)

        assert first == second == AggregateRating(4.5, 2)
        assert stored is not None
        assert stored.aggregate == AggregateRating(4.5, 2)

        await database.dispose()

    asyncio.run(runner())


def test_recompute_external_skips_store_write(tmp_path) -> None:
    async def runner() -> None:
        database, media_store, reviews, aggregator = await _open(tmp_path)
        await reviews.create(
            NewReview(
                author_id="acct",
                profile_id="p1",
                media_ref="external:movie:550",
                rating=5,
                content="Classic",
            )
        )

        assert await aggregator.recompute("external:movie:550") == AggregateRating(5.0, 1)
        assert await media_store.set_aggregate_rating(
            "external:movie:550", _fixed(AggregateRating(5.0, 1))
        ) is None
        assert await media_store.local_media_ids() == []

        await database.dispose()

    asyncio.run(runner())


def test_top_rated_skips_missing_local_media(tmp_path) -> None:
    async def runner() -> None:
        database, _, reviews, aggregator = await _open(tmp_path)
        await reviews.create(
            NewReview(
                author_id="acct",
                profile_id="p1",
                media_ref="507f1f77bcf86cd799439011",
                rating=5,
                content="Orphaned",
            )
        )
        await reviews.create(
            NewReview(
                author_id="acct",
                profile_id="p1",
                media_ref="external:movie:550",
                rating=4,
                content="Kept",
            )
        )

        entries = await aggregator.top_rated(limit=5)

        assert [entry.media_ref for entry in entries] == ["external:movie:550"]
        assert entries[0].media is not None
        assert entries[0].media.title == "TMDb 550"

        await database.dispose()

    asyncio.run(runner())


def test_slow_recompute_cannot_overwrite_newer_aggregate(tmp_path) -> None:
    """A review committed during a recompute is counted by the final value."""

    async def runner() -> None:
        database, media_store, reviews, aggregator = await _open(tmp_path)
        media = await media_store.upsert_media(
            MediaUpsertRequest(external_id=603, media_kind="movie", title="The Matrix")
        )
        await reviews.create(
            NewReview(
                author_id="acct",
                profile_id="p1",
                media_ref=media.id,
                rating=4,
                content="First",
            )
        )

        async def slow_derive(session) -> AggregateRating:
            ratings = await reviews.select_ratings(session, media.id)
            await asyncio.sleep(0.2)
            return summarize(ratings)

        async def sibling() -> AggregateRating:
            await asyncio.sleep(0.05)
            await reviews.create(
                NewReview(
                    author_id="acct",
                    profile_id="p2",
                    media_ref=media.id,
                    rating=2,
                    content="Second",
                )
            )
            return await aggregator.recompute(media.id)

        slow, fresh = await asyncio.gather(
            media_store.set_aggregate_rating(media.id, slow_derive), sibling()
        )
        stored = await media_store.find_by_local_id(media.id)

        assert slow == AggregateRating(4.0, 1)
        assert fresh == AggregateRating(3.0, 2)
        assert stored is not None
        assert stored.aggregate == AggregateRating(3.0, 2)

        await database.dispose()

    asyncio.run(runner())
