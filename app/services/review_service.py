"""Orchestration of review mutations and the aggregate refresh they trigger."""

from __future__ import annotations

import logging
import math
from typing import Any, Mapping

from ..config import Settings
from ..errors import (
    AggregationFailed,
    Forbidden,
    InvalidContent,
    InvalidRating,
    MediaNotFound,
    PrivateReview,
    ReviewValidationError,
    StorageUnavailable,
)
from ..media_identity import ExternalMedia, LocalMedia, MediaKind, classify
from ..models import (
    AggregateRating,
    ExternalMediaMetadata,
    MediaItemRecord,
    MediaReviewListing,
    MediaUpsertRequest,
    Requester,
    ReviewDeletion,
    ReviewMutationResult,
    ReviewPage,
    ReviewPatch,
    ReviewRecord,
    ReviewSort,
    TopRatedEntry,
)
from .media_store import MediaStore
from .rating_aggregator import RatingAggregator
from .review_store import NewReview, PageRequest, ReviewStore, Visibility
from .tmdb import TMDBClient

logger = logging.getLogger(__name__)

MAX_RATING = 5.0


class ReviewService:
    """Entry point for every review operation.

    Each mutation commits its review write first and only then recomputes the
    aggregate for the affected media. A failed recompute never undoes the
    write; it is reported through the result's ``warnings``.
    """

    def __init__(
        self,
        settings: Settings,
        review_store: ReviewStore,
        media_store: MediaStore,
        aggregator: RatingAggregator,
        catalog_client: TMDBClient | None = None,
    ):
        self._settings = settings
        self._reviews = review_store
        self._media = media_store
        self._aggregator = aggregator
        self._catalog = catalog_client

    async def create_review(
        self,
        requester: Requester,
        profile_id: str,
        media_ref: str,
        rating: Any = 0,
        content: Any = None,
        *,
        is_public: bool = True,
        spoiler: bool = False,
        metadata: ExternalMediaMetadata | None = None,
    ) -> ReviewMutationResult:
        cleaned_content = self._clean_content(content)
        cleaned_rating = self._clean_rating(rating)
        if not isinstance(profile_id, str) or not profile_id.strip():
            raise ReviewValidationError("A profile is required to write a review")

        reference = classify(media_ref)
        if isinstance(reference, LocalMedia):
            if await self._media.find_by_local_id(reference.key) is None:
                raise MediaNotFound()

        review = await self._reviews.create(
            NewReview(
                author_id=requester.account_id,
                profile_id=profile_id.strip(),
                media_ref=reference.ref,
                rating=cleaned_rating,
                content=cleaned_content,
                is_public=bool(is_public),
                spoiler=bool(spoiler),
            )
        )
        logger.info(
            "Review %s created by %s/%s for %s",
            review.id,
            review.author_id,
            review.profile_id,
            review.media_ref,
        )

        if isinstance(reference, ExternalMedia):
            await self._ensure_external_cache(reference, metadata)

        warnings: list[str] = []
        aggregate = await self._refresh_aggregate(review.media_ref, warnings)
        return ReviewMutationResult(review=review, aggregate=aggregate, warnings=warnings)

    async def get_review(
        self, review_id: str, requester: Requester | None = None
    ) -> ReviewRecord:
        review = await self._reviews.find_by_id(review_id, decorate=True)
        if not review.is_public and not self._can_see_private(review, requester):
            raise PrivateReview()
        return review

    async def update_review(
        self,
        review_id: str,
        requester: Requester,
        patch: ReviewPatch | Mapping[str, Any],
    ) -> ReviewMutationResult:
        existing = await self._reviews.find_by_id(review_id)
        if existing.author_id != requester.account_id:
            raise Forbidden("You can only update your own reviews")

        if isinstance(patch, ReviewPatch):
            changes = patch.changes()
        else:
            changes = ReviewPatch.model_validate(dict(patch)).changes()
        if "content" in changes:
            changes["content"] = self._clean_content(changes["content"])
        if "rating" in changes:
            changes["rating"] = self._clean_rating(changes["rating"])

        review = await self._reviews.update(review_id, changes)
        logger.info("Review %s updated by %s", review.id, requester.account_id)

        # Recompute even when the rating is untouched; it is idempotent.
        warnings: list[str] = []
        aggregate = await self._refresh_aggregate(review.media_ref, warnings)
        return ReviewMutationResult(review=review, aggregate=aggregate, warnings=warnings)

    async def delete_review(self, review_id: str, requester: Requester) -> ReviewDeletion:
        existing = await self._reviews.find_by_id(review_id)
        if existing.author_id != requester.account_id and not requester.is_admin:
            raise Forbidden("You can only delete your own reviews")

        media_ref = existing.media_ref
        await self._reviews.delete(review_id)
        logger.info("Review %s deleted by %s", review_id, requester.account_id)

        warnings: list[str] = []
        aggregate = await self._refresh_aggregate(media_ref, warnings)
        return ReviewDeletion(
            review_id=review_id,
            media_ref=media_ref,
            aggregate=aggregate,
            warnings=warnings,
        )

    async def like_review(self, review_id: str) -> int:
        return await self._reviews.increment_likes(review_id)

    async def list_media_reviews(
        self,
        media_ref: str,
        requester: Requester | None = None,
        *,
        sort: ReviewSort = "recent",
        page: int = 1,
        limit: int | None = None,
        include_non_public: bool = False,
        author_id: str | None = None,
    ) -> MediaReviewListing:
        reference = classify(media_ref)
        if isinstance(reference, LocalMedia):
            media = await self._media.find_by_local_id(reference.key)
            if media is None:
                raise MediaNotFound()
            aggregate = media.aggregate
        else:
            aggregate = await self._aggregator.aggregate_for(reference.ref)

        visibility = Visibility(
            viewer_id=requester.account_id if requester else None,
            include_all=bool(requester and requester.is_admin and include_non_public),
        )
        reviews = await self._reviews.find_by_media(
            reference.ref,
            visibility=visibility,
            sort=sort,
            page=self._page_request(page, limit),
            author_id=author_id,
        )
        return MediaReviewListing(media_ref=reference.ref, page=reviews, aggregate=aggregate)

    async def list_author_reviews(
        self,
        author_id: str,
        requester: Requester | None = None,
        *,
        profile_id: str | None = None,
        media_kind: MediaKind | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> ReviewPage:
        visibility = Visibility(
            viewer_id=requester.account_id if requester else None,
            include_all=bool(requester and requester.is_admin),
        )
        return await self._reviews.find_by_author(
            author_id,
            visibility=visibility,
            profile_id=profile_id,
            media_kind=media_kind,
            page=self._page_request(page, limit),
        )

    async def top_rated(
        self, limit: int = 10, media_kind: MediaKind | None = None
    ) -> list[TopRatedEntry]:
        bounded = min(max(limit, 1), self._settings.review_page_limit)
        return await self._aggregator.top_rated(bounded, media_kind)

    async def rebuild_aggregates(self) -> int:
        return await self._aggregator.recompute_all()

    async def save_media(
        self, requester: Requester, payload: MediaUpsertRequest
    ) -> MediaItemRecord:
        """Manual catalog entry; administrators only."""

        if not requester.is_admin:
            raise Forbidden("Only administrators can manage catalog entries")
        return await self._media.upsert_media(payload)

    async def get_media(self, media_id: str) -> MediaItemRecord:
        reference = classify(media_id)
        if not isinstance(reference, LocalMedia):
            raise MediaNotFound("External media has no local catalog entry")
        media = await self._media.find_by_local_id(reference.key)
        if media is None:
            raise MediaNotFound()
        return media

    async def _refresh_aggregate(
        self, media_ref: str, warnings: list[str]
    ) -> AggregateRating | None:
        try:
            return await self._aggregator.recompute(media_ref)
        except AggregationFailed as exc:
            logger.warning(
                "Aggregate for %s is stale after a committed write: %s",
                exc.media_ref,
                exc.message,
            )
            warnings.append(f"{AggregationFailed.default_message}: {exc.message}")
            return None

    async def _ensure_external_cache(
        self, reference: ExternalMedia, metadata: ExternalMediaMetadata | None
    ) -> None:
        """Fill a missing or stale cache entry; never fails the caller."""

        try:
            if metadata is None:
                entry = await self._media.get_external_cache(reference.ref)
                if entry is not None and entry.is_fresh(
                    self._settings.external_cache_ttl_seconds
                ):
                    return
                if self._catalog is not None:
                    metadata = await self._catalog.fetch_media(
                        reference.media_kind, reference.external_id
                    )
            if metadata is None:
                return
            await self._media.save_external_cache(reference, metadata)
        except StorageUnavailable as exc:
            logger.warning(
                "Could not cache metadata for %s: %s", reference.ref, exc.message
            )
        except Exception as exc:
            # The review is already committed; the cache is best effort.
            logger.exception("Caching metadata for %s failed: %s", reference.ref, exc)

    def _page_request(self, page: int, limit: int | None) -> PageRequest:
        size = self._settings.review_page_size if limit is None else limit
        size = min(max(size, 1), self._settings.review_page_limit)
        return PageRequest(page=max(page, 1), limit=size)

    def _clean_content(self, content: Any) -> str:
        if not isinstance(content, str):
            raise InvalidContent()
        text = content.strip()
        if not text:
            raise InvalidContent()
        max_length = self._settings.review_max_length
        if len(text) > max_length:
            raise InvalidContent(
                f"Review content must be at most {max_length} characters"
            )
        return text

    @staticmethod
    def _clean_rating(value: Any) -> float:
        if value is None:
            return 0.0
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidRating()
        rating = float(value)
        if not math.isfinite(rating) or rating < 0 or rating > MAX_RATING:
            raise InvalidRating()
        return rating

    @staticmethod
    def _can_see_private(review: ReviewRecord, requester: Requester | None) -> bool:
        if requester is None:
            return False
        return requester.is_admin or requester.account_id == review.author_id
