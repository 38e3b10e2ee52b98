"""Derivation of aggregate ratings from the stored reviews."""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import AggregationFailed, ReviewError
from ..media_identity import MediaKind, is_external
from ..models import AggregateRating, TopRatedEntry
from ..utils import mean, round_rating
from .media_store import MediaStore
from .review_store import ReviewStore

logger = logging.getLogger(__name__)


def summarize(ratings: Iterable[float]) -> AggregateRating:
    """Return the rounded mean and count of the ratings above zero."""

    counted = [float(rating) for rating in ratings if float(rating) > 0]
    average = mean(counted)
    if average is None:
        return AggregateRating(average=0.0, review_count=0)
    return AggregateRating(average=round_rating(average), review_count=len(counted))


class RatingAggregator:
    """Sole writer of the aggregate rating stored on media items.

    ``recompute`` always reads the full rating set for the media reference.
    For local media the read and the write share one transaction that holds
    the media row, so the last recompute to commit saw the newest ratings.
    """

    def __init__(self, review_store: ReviewStore, media_store: MediaStore):
        self._reviews = review_store
        self._media = media_store

    async def aggregate_for(self, media_ref: str) -> AggregateRating:
        """Compute the current aggregate without writing it anywhere."""

        return summarize(await self._reviews.ratings_for(media_ref))

    async def recompute(self, media_ref: str) -> AggregateRating:
        """Recompute the aggregate and persist it for local media.

        Raises :class:`AggregationFailed` when the read or the write fails.
        """

        try:
            aggregate = None
            if not is_external(media_ref):
                aggregate = await self._store(media_ref)
                if aggregate is None:
                    logger.debug("No media item %s to store aggregate on", media_ref)
            if aggregate is None:
                aggregate = await self.aggregate_for(media_ref)
        except ReviewError as exc:
            raise AggregationFailed(media_ref, exc.message) from exc
        logger.info(
            "Aggregate for %s is %.1f over %d ratings",
            media_ref,
            aggregate.average,
            aggregate.review_count,
        )
        return aggregate

    async def recompute_all(self) -> int:
        """Rewrite the stored aggregate of every local media item.

        Repairs aggregates left stale by an earlier ``AggregationFailed``.
        Returns the number of media items written.
        """

        written = 0
        for media_id in await self._media.local_media_ids():
            if await self._store(media_id) is not None:
                written += 1
        logger.info("Rebuilt aggregates for %d media items", written)
        return written

    async def _store(self, media_id: str) -> AggregateRating | None:
        async def derive(session: AsyncSession) -> AggregateRating:
            return summarize(await self._reviews.select_ratings(session, media_id))

        return await self._media.set_aggregate_rating(media_id, derive)

    async def top_rated(
        self, limit: int = 10, media_kind: MediaKind | None = None
    ) -> list[TopRatedEntry]:
        """Rank local and external reviewed media by average, then count."""

        summaries = {
            media_ref: summarize(ratings)
            for media_ref, ratings in (await self._reviews.ratings_by_media()).items()
        }
        if not summaries:
            return []
        media = await self._media.summaries_for(summaries.keys())

        entries: list[TopRatedEntry] = []
        for media_ref, aggregate in summaries.items():
            summary = media.get(media_ref)
            if summary is None:
                # Local reference whose media item no longer exists.
                continue
            if media_kind is not None and summary.media_kind != media_kind:
                continue
            entries.append(
                TopRatedEntry(media_ref=media_ref, aggregate=aggregate, media=summary)
            )

        entries.sort(
            key=lambda entry: (
                -entry.aggregate.average,
                -entry.aggregate.review_count,
                entry.media_ref,
            )
        )
        return entries[: max(limit, 0)]
