"""Persistence for catalog media items and the external metadata cache."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Iterable

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database import guarded_session
from ..db_models import ExternalMediaCacheEntry, MediaItem
from ..media_identity import ExternalMedia, LocalMedia, classify, is_external
from ..models import (
    AggregateRating,
    ExternalMediaMetadata,
    MediaItemRecord,
    MediaSummary,
    MediaUpsertRequest,
)
from ..utils import utcnow

logger = logging.getLogger(__name__)

AggregateSource = Callable[[AsyncSession], Awaitable[AggregateRating]]


@dataclass(slots=True)
class ExternalCacheRecord:
    """Cached display metadata for an external media reference."""

    media_ref: str
    media_kind: str
    external_id: int
    metadata: ExternalMediaMetadata
    fetched_at: datetime

    def is_fresh(self, ttl_seconds: int, *, now: datetime | None = None) -> bool:
        current = now or utcnow()
        return current < self.fetched_at + timedelta(seconds=ttl_seconds)

    def summary(self) -> MediaSummary:
        return MediaSummary(
            media_ref=self.media_ref,
            media_kind=self.media_kind,  # type: ignore[arg-type]
            title=self.metadata.title,
            external_id=self.external_id,
            poster_path=self.metadata.poster_path,
            backdrop_path=self.metadata.backdrop_path,
            local=False,
        )


class MediaStore:
    """Stores media items; the aggregate rating columns are written only via
    :meth:`set_aggregate_rating`."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def find_by_local_id(self, media_id: str) -> MediaItemRecord | None:
        async with guarded_session(self._session_factory, "media lookup") as session:
            item = await session.get(MediaItem, media_id)
            if item is None:
                return None
            return self._to_record(item)

    async def find_by_external(
        self, media_kind: str, external_id: int
    ) -> MediaItemRecord | None:
        async with guarded_session(self._session_factory, "media lookup") as session:
            stmt = select(MediaItem).where(
                MediaItem.external_id == external_id,
                MediaItem.media_kind == media_kind,
            )
            result = await session.execute(stmt)
            item = result.scalar_one_or_none()
            if item is None:
                return None
            return self._to_record(item)

    async def upsert_media(self, payload: MediaUpsertRequest) -> MediaItemRecord:
        """Create or refresh a media item from catalog data.

        The aggregate rating columns are left untouched on refresh.
        """

        values = {
            "title": payload.title,
            "overview": payload.overview,
            "poster_path": payload.poster_path,
            "backdrop_path": payload.backdrop_path,
            "release_date": payload.release_date,
            "genres": list(payload.genres),
            "popularity": payload.popularity,
        }
        async with guarded_session(self._session_factory, "media upsert") as session:
            item = await self._load_external(
                session, payload.media_kind, payload.external_id
            )
            if item is None:
                item = MediaItem(
                    external_id=payload.external_id,
                    media_kind=payload.media_kind,
                    rating_average=0.0,
                    rating_count=0,
                    **values,
                )
                session.add(item)
                try:
                    await session.commit()
                    logger.info(
                        "Created media item %s for %s %s",
                        item.id,
                        payload.media_kind,
                        payload.external_id,
                    )
                    return self._to_record(item)
                except IntegrityError:
                    # Another writer inserted the same catalog entry first.
                    await session.rollback()
                    item = await self._load_external(
                        session, payload.media_kind, payload.external_id
                    )
                    if item is None:
                        raise
            for key, value in values.items():
                setattr(item, key, value)
            item.updated_at = utcnow()
            await session.commit()
            return self._to_record(item)

    async def set_aggregate_rating(
        self, media_ref: str, derive: AggregateSource
    ) -> AggregateRating | None:
        """Derive and store the aggregate of a local media item atomically.

        The media row is locked by a first ``UPDATE`` before ``derive`` reads
        the ratings in the same transaction, so a recompute that read older
        ratings can never commit after one that read newer ones. External
        references and missing rows are skipped and return ``None``.
        """

        if is_external(media_ref):
            return None
        async with guarded_session(self._session_factory, "aggregate write") as session:
            locked = await session.execute(
                update(MediaItem)
                .where(MediaItem.id == media_ref)
                .values(updated_at=utcnow())
            )
            if not locked.rowcount:
                await session.rollback()
                return None
            aggregate = await derive(session)
            await session.execute(
                update(MediaItem)
                .where(MediaItem.id == media_ref)
                .values(
                    rating_average=aggregate.average,
                    rating_count=aggregate.review_count,
                )
            )
            await session.commit()
            return aggregate

    async def local_media_ids(self) -> list[str]:
        async with guarded_session(self._session_factory, "media listing") as session:
            result = await session.execute(select(MediaItem.id))
            return [row[0] for row in result.all()]

    async def get_external_cache(self, media_ref: str) -> ExternalCacheRecord | None:
        async with guarded_session(self._session_factory, "cache lookup") as session:
            entry = await session.get(ExternalMediaCacheEntry, media_ref)
            if entry is None:
                return None
            return self._cache_to_record(entry)

    async def save_external_cache(
        self, media: ExternalMedia, metadata: ExternalMediaMetadata
    ) -> ExternalCacheRecord:
        """Insert or refresh the cache entry for ``media``.

        Concurrent first writers for the same reference race on the primary
        key; the loser reloads the winner's row and refreshes it instead.
        """

        async with guarded_session(self._session_factory, "cache write") as session:
            entry = await session.get(ExternalMediaCacheEntry, media.ref)
            if entry is None:
                entry = ExternalMediaCacheEntry(
                    media_ref=media.ref,
                    media_kind=media.media_kind,
                    external_id=media.external_id,
                )
                self._apply_metadata(entry, metadata)
                session.add(entry)
                try:
                    await session.commit()
                    return self._cache_to_record(entry)
                except IntegrityError:
                    await session.rollback()
                    entry = await session.get(ExternalMediaCacheEntry, media.ref)
                    if entry is None:
                        raise
            self._apply_metadata(entry, metadata)
            await session.commit()
            return self._cache_to_record(entry)

    async def summaries_for(self, media_refs: Iterable[str]) -> dict[str, MediaSummary]:
        """Resolve display data for a batch of media references."""

        local_ids: set[str] = set()
        external: dict[str, ExternalMedia] = {}
        for media_ref in media_refs:
            reference = classify(media_ref)
            if isinstance(reference, LocalMedia):
                local_ids.add(reference.key)
            else:
                external[reference.ref] = reference

        summaries: dict[str, MediaSummary] = {}
        if not (local_ids or external):
            return summaries

        async with guarded_session(self._session_factory, "media summaries") as session:
            if local_ids:
                result = await session.execute(
                    select(MediaItem).where(MediaItem.id.in_(local_ids))
                )
                for item in result.scalars():
                    summaries[item.id] = self._to_record(item).summary()
            if external:
                result = await session.execute(
                    select(ExternalMediaCacheEntry).where(
                        ExternalMediaCacheEntry.media_ref.in_(external.keys())
                    )
                )
                for entry in result.scalars():
                    summaries[entry.media_ref] = self._cache_to_record(entry).summary()

        for media_ref, reference in external.items():
            summaries.setdefault(
                media_ref,
                MediaSummary(
                    media_ref=media_ref,
                    media_kind=reference.media_kind,
                    title=f"TMDb {reference.external_id}",
                    external_id=reference.external_id,
                    local=False,
                ),
            )
        return summaries

    @staticmethod
    def _apply_metadata(
        entry: ExternalMediaCacheEntry, metadata: ExternalMediaMetadata
    ) -> None:
        entry.title = metadata.title
        entry.overview = metadata.overview
        entry.poster_path = metadata.poster_path
        entry.backdrop_path = metadata.backdrop_path
        entry.year = metadata.year
        entry.fetched_at = utcnow()

    @staticmethod
    async def _load_external(
        session: AsyncSession, media_kind: str, external_id: int
    ) -> MediaItem | None:
        result = await session.execute(
            select(MediaItem).where(
                MediaItem.external_id == external_id,
                MediaItem.media_kind == media_kind,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _to_record(item: MediaItem) -> MediaItemRecord:
        return MediaItemRecord(
            id=item.id,
            external_id=item.external_id,
            media_kind=item.media_kind,  # type: ignore[arg-type]
            title=item.title,
            overview=item.overview,
            poster_path=item.poster_path,
            backdrop_path=item.backdrop_path,
            release_date=item.release_date,
            genres=list(item.genres or []),
            popularity=item.popularity,
            aggregate=AggregateRating(
                average=float(item.rating_average or 0.0),
                review_count=int(item.rating_count or 0),
            ),
            created_at=item.created_at,
            updated_at=item.updated_at,
        )

    @staticmethod
    def _cache_to_record(entry: ExternalMediaCacheEntry) -> ExternalCacheRecord:
        return ExternalCacheRecord(
            media_ref=entry.media_ref,
            media_kind=entry.media_kind,
            external_id=entry.external_id,
            metadata=ExternalMediaMetadata(
                title=entry.title,
                overview=entry.overview,
                poster_path=entry.poster_path,
                backdrop_path=entry.backdrop_path,
                year=entry.year,
            ),
            fetched_at=entry.fetched_at,
        )
