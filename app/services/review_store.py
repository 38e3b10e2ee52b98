"""Persistence for reviews.

Uniqueness of ``(author_id, profile_id, media_ref)`` is enforced by the
``reviews`` table's unique index; :meth:`ReviewStore.create` converts the
constraint violation into :class:`DuplicateReview`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Sequence

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql import Select

from ..database import guarded_session
from ..db_models import MediaItem, Profile, Review
from ..errors import DuplicateReview, ReviewNotFound
from ..media_identity import EXTERNAL_PREFIX, MediaKind
from ..models import (
    DEFAULT_PROFILE_AVATAR,
    MediaSummary,
    ProfileSummary,
    ReviewPage,
    ReviewRecord,
    ReviewSort,
)
from ..utils import utcnow
from .media_store import MediaStore

logger = logging.getLogger(__name__)

PATCHABLE_FIELDS = frozenset({"rating", "content", "is_public", "spoiler"})

_SORT_ORDERS: dict[str, tuple[Any, ...]] = {
    "recent": (Review.created_at.desc(), Review.id.desc()),
    "rating-high": (Review.rating.desc(), Review.created_at.desc()),
    "rating-low": (Review.rating.asc(), Review.created_at.desc()),
    "likes": (Review.like_count.desc(), Review.created_at.desc()),
}


@dataclass(slots=True)
class NewReview:
    author_id: str
    profile_id: str
    media_ref: str
    rating: float
    content: str
    is_public: bool = True
    spoiler: bool = False


@dataclass(frozen=True, slots=True)
class Visibility:
    """Which reviews a listing may expose.

    Public reviews are always visible; ``viewer_id`` additionally exposes that
    viewer's private reviews and ``include_all`` exposes every review.
    """

    viewer_id: str | None = None
    include_all: bool = False


@dataclass(frozen=True, slots=True)
class PageRequest:
    page: int = 1
    limit: int = 10

    @property
    def offset(self) -> int:
        return (max(self.page, 1) - 1) * self.limit


class ReviewStore:
    """Stores reviews and exposes the rating feed used for aggregation."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        media_store: MediaStore | None = None,
    ):
        self._session_factory = session_factory
        self._media_store = media_store

    async def create(self, review: NewReview) -> ReviewRecord:
        now = utcnow()
        async with guarded_session(self._session_factory, "review create") as session:
            row = Review(
                author_id=review.author_id,
                profile_id=review.profile_id,
                media_ref=review.media_ref,
                rating=float(review.rating),
                content=review.content,
                is_public=review.is_public,
                spoiler=review.spoiler,
                like_count=0,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateReview() from exc
            return self._to_record(row)

    async def find_by_id(self, review_id: str, *, decorate: bool = False) -> ReviewRecord:
        async with guarded_session(self._session_factory, "review lookup") as session:
            row = await session.get(Review, review_id)
            if row is None:
                raise ReviewNotFound()
            record = self._to_record(row)
        if decorate:
            await self._decorate([record])
        return record

    async def find_by_media(
        self,
        media_ref: str,
        *,
        visibility: Visibility = Visibility(),
        sort: ReviewSort = "recent",
        page: PageRequest = PageRequest(),
        author_id: str | None = None,
    ) -> ReviewPage:
        conditions: list[Any] = [Review.media_ref == media_ref]
        if not visibility.include_all:
            conditions.append(self._visibility_clause(visibility.viewer_id))
        if author_id:
            conditions.append(Review.author_id == author_id)
        order_by = _SORT_ORDERS.get(sort)
        if order_by is None:
            raise ValueError(f"Unsupported review sort: {sort}")
        return await self._paginate(conditions, order_by, page)

    async def find_by_author(
        self,
        author_id: str,
        *,
        visibility: Visibility = Visibility(),
        profile_id: str | None = None,
        media_kind: MediaKind | None = None,
        page: PageRequest = PageRequest(),
    ) -> ReviewPage:
        conditions: list[Any] = [Review.author_id == author_id]
        if not visibility.include_all and visibility.viewer_id != author_id:
            conditions.append(Review.is_public.is_(True))
        if profile_id:
            conditions.append(Review.profile_id == profile_id)
        if media_kind:
            local_ids = select(MediaItem.id).where(MediaItem.media_kind == media_kind)
            conditions.append(
                or_(
                    Review.media_ref.in_(local_ids),
                    Review.media_ref.startswith(f"{EXTERNAL_PREFIX}:{media_kind}:"),
                )
            )
        return await self._paginate(conditions, _SORT_ORDERS["recent"], page)

    async def update(self, review_id: str, patch: dict[str, Any]) -> ReviewRecord:
        unknown = set(patch) - PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be changed: {', '.join(sorted(unknown))}")
        async with guarded_session(self._session_factory, "review update") as session:
            row = await session.get(Review, review_id)
            if row is None:
                raise ReviewNotFound()
            for key, value in patch.items():
                setattr(row, key, float(value) if key == "rating" else value)
            row.updated_at = utcnow()
            await session.commit()
            return self._to_record(row)

    async def delete(self, review_id: str) -> ReviewRecord:
        """Remove a review and return its final state."""

        async with guarded_session(self._session_factory, "review delete") as session:
            row = await session.get(Review, review_id)
            if row is None:
                raise ReviewNotFound()
            record = self._to_record(row)
            await session.delete(row)
            await session.commit()
            return record

    async def increment_likes(self, review_id: str) -> int:
        async with guarded_session(self._session_factory, "review like") as session:
            result = await session.execute(
                update(Review)
                .where(Review.id == review_id)
                .values(like_count=Review.like_count + 1)
            )
            if not result.rowcount:
                await session.rollback()
                raise ReviewNotFound()
            likes = await session.scalar(
                select(Review.like_count).where(Review.id == review_id)
            )
            await session.commit()
            return int(likes or 0)

    async def ratings_for(self, media_ref: str) -> list[float]:
        """Return every rating above zero recorded for ``media_ref``."""

        async with guarded_session(self._session_factory, "rating feed") as session:
            return await self.select_ratings(session, media_ref)

    @staticmethod
    async def select_ratings(session: AsyncSession, media_ref: str) -> list[float]:
        """Read the non-zero ratings of ``media_ref`` inside ``session``."""

        result = await session.execute(
            select(Review.rating).where(Review.media_ref == media_ref, Review.rating > 0)
        )
        return [float(row[0]) for row in result.all()]

    async def ratings_by_media(self) -> dict[str, list[float]]:
        """Group the non-zero ratings of every reviewed media reference."""

        async with guarded_session(self._session_factory, "rating summaries") as session:
            result = await session.execute(
                select(Review.media_ref, Review.rating).where(Review.rating > 0)
            )
            grouped: dict[str, list[float]] = {}
            for media_ref, rating in result.all():
                grouped.setdefault(media_ref, []).append(float(rating))
        return grouped

    async def _paginate(
        self,
        conditions: Sequence[Any],
        order_by: Sequence[Any],
        page: PageRequest,
    ) -> ReviewPage:
        criteria = and_(*conditions)
        stmt: Select[Any] = (
            select(Review)
            .where(criteria)
            .order_by(*order_by)
            .offset(page.offset)
            .limit(page.limit)
        )
        async with guarded_session(self._session_factory, "review listing") as session:
            result = await session.execute(stmt)
            records = [self._to_record(row) for row in result.scalars()]
            total = await session.scalar(
                select(func.count()).select_from(Review).where(criteria)
            )
        await self._decorate(records)
        return ReviewPage(
            items=records,
            page=max(page.page, 1),
            limit=page.limit,
            total=int(total or 0),
        )

    async def _decorate(self, records: list[ReviewRecord]) -> None:
        """Attach profile display data and media summaries to ``records``."""

        if not records:
            return
        profile_ids = {record.profile_id for record in records}
        async with guarded_session(self._session_factory, "profile lookup") as session:
            result = await session.execute(
                select(Profile).where(Profile.id.in_(profile_ids))
            )
            profiles = {profile.id: profile for profile in result.scalars()}

        media: dict[str, MediaSummary] = {}
        if self._media_store is not None:
            media = await self._media_store.summaries_for(
                {record.media_ref for record in records}
            )

        for record in records:
            profile = profiles.get(record.profile_id)
            if profile is not None:
                record.profile = ProfileSummary(
                    id=profile.id,
                    name=profile.name,
                    avatar=profile.avatar or DEFAULT_PROFILE_AVATAR,
                )
            else:
                record.profile = ProfileSummary(id=None)
            record.media = media.get(record.media_ref)

    @staticmethod
    def _visibility_clause(viewer_id: str | None) -> Any:
        if viewer_id:
            return or_(Review.is_public.is_(True), Review.author_id == viewer_id)
        return Review.is_public.is_(True)

    @staticmethod
    def _to_record(row: Review) -> ReviewRecord:
        return ReviewRecord(
            id=row.id,
            author_id=row.author_id,
            profile_id=row.profile_id,
            media_ref=row.media_ref,
            rating=float(row.rating),
            content=row.content,
            is_public=bool(row.is_public),
            spoiler=bool(row.spoiler),
            like_count=int(row.like_count or 0),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )
