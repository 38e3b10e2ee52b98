"""Records and request payloads exchanged with the review core."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .errors import InvalidMediaReference
from .media_identity import MAX_EXTERNAL_ID, MediaKind, normalize_kind
from .utils import total_pages

ReviewSort = Literal["recent", "rating-high", "rating-low", "likes"]

DEFAULT_PROFILE_NAME = "Unknown User"
DEFAULT_PROFILE_AVATAR = "/default-avatar.png"


@dataclass(frozen=True, slots=True)
class Requester:
    """Identity of the caller as supplied by the auth collaborator."""

    account_id: str
    role: str = "user"
    is_admin: bool = False

    @classmethod
    def from_identity(
        cls, account_id: str, role: str | None, admin_roles: Iterable[str]
    ) -> "Requester":
        normalized = (role or "user").strip().lower() or "user"
        return cls(
            account_id=account_id,
            role=normalized,
            is_admin=normalized in set(admin_roles),
        )


@dataclass(frozen=True, slots=True)
class AggregateRating:
    """Average of the non-zero ratings for a media reference and their count."""

    average: float = 0.0
    review_count: int = 0

    def to_payload(self) -> dict[str, Any]:
        return {"averageRating": self.average, "totalReviews": self.review_count}


@dataclass(slots=True)
class ProfileSummary:
    id: str | None
    name: str = DEFAULT_PROFILE_NAME
    avatar: str = DEFAULT_PROFILE_AVATAR

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"name": self.name, "avatar": self.avatar}
        if self.id:
            payload["id"] = self.id
        return payload


@dataclass(slots=True)
class MediaSummary:
    """Display data for a media reference, local or external."""

    media_ref: str
    media_kind: MediaKind
    title: str
    external_id: int | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None
    local: bool = True

    def to_payload(self) -> dict[str, Any]:
        return {
            "mediaRef": self.media_ref,
            "type": self.media_kind,
            "title": self.title,
            "externalId": self.external_id,
            "posterPath": self.poster_path,
            "backdropPath": self.backdrop_path,
            "local": self.local,
        }


@dataclass(slots=True)
class MediaItemRecord:
    """Snapshot of a stored media item."""

    id: str
    external_id: int
    media_kind: MediaKind
    title: str
    overview: str | None
    poster_path: str | None
    backdrop_path: str | None
    release_date: str | None
    genres: list[str]
    popularity: float | None
    aggregate: AggregateRating
    created_at: datetime
    updated_at: datetime

    def summary(self) -> MediaSummary:
        return MediaSummary(
            media_ref=self.id,
            media_kind=self.media_kind,
            title=self.title,
            external_id=self.external_id,
            poster_path=self.poster_path,
            backdrop_path=self.backdrop_path,
            local=True,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "externalId": self.external_id,
            "type": self.media_kind,
            "title": self.title,
            "overview": self.overview,
            "posterPath": self.poster_path,
            "backdropPath": self.backdrop_path,
            "releaseDate": self.release_date,
            "genres": list(self.genres),
            "popularity": self.popularity,
            "userRating": {
                "average": self.aggregate.average,
                "count": self.aggregate.review_count,
            },
        }


@dataclass(slots=True)
class ReviewRecord:
    """Snapshot of a stored review, optionally decorated for display."""

    id: str
    author_id: str
    profile_id: str
    media_ref: str
    rating: float
    content: str
    is_public: bool
    spoiler: bool
    like_count: int
    created_at: datetime
    updated_at: datetime
    profile: ProfileSummary | None = None
    media: MediaSummary | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "userId": self.author_id,
            "profileId": self.profile_id,
            "mediaRef": self.media_ref,
            "rating": self.rating,
            "content": self.content,
            "isPublic": self.is_public,
            "spoiler": self.spoiler,
            "likes": self.like_count,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
        if self.profile is not None:
            payload["profile"] = self.profile.to_payload()
        if self.media is not None:
            payload["media"] = self.media.to_payload()
        return payload


@dataclass(slots=True)
class ReviewPage:
    items: list[ReviewRecord]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return total_pages(self.total, self.limit)

    def to_payload(self) -> dict[str, Any]:
        return {
            "results": [review.to_payload() for review in self.items],
            "page": self.page,
            "limit": self.limit,
            "totalPages": self.total_pages,
            "totalResults": self.total,
        }


@dataclass(slots=True)
class MediaReviewListing:
    """A page of reviews for one media reference plus its current aggregate."""

    media_ref: str
    page: ReviewPage
    aggregate: AggregateRating

    def to_payload(self) -> dict[str, Any]:
        return {
            "mediaRef": self.media_ref,
            "page": self.page.page,
            "totalPages": self.page.total_pages,
            "totalReviews": self.page.total,
            "averageRating": self.aggregate.average,
            "ratingCount": self.aggregate.review_count,
            "reviews": [review.to_payload() for review in self.page.items],
        }


@dataclass(slots=True)
class ReviewMutationResult:
    review: ReviewRecord
    aggregate: AggregateRating | None
    warnings: list[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"review": self.review.to_payload()}
        if self.aggregate is not None:
            payload.update(self.aggregate.to_payload())
        payload["warnings"] = list(self.warnings)
        return payload


@dataclass(slots=True)
class ReviewDeletion:
    review_id: str
    media_ref: str
    aggregate: AggregateRating | None
    warnings: list[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "message": "Review deleted successfully",
            "reviewId": self.review_id,
            "mediaRef": self.media_ref,
        }
        if self.aggregate is not None:
            payload.update(self.aggregate.to_payload())
        payload["warnings"] = list(self.warnings)
        return payload


@dataclass(slots=True)
class TopRatedEntry:
    media_ref: str
    aggregate: AggregateRating
    media: MediaSummary | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"mediaRef": self.media_ref}
        if self.media is not None:
            payload.update(
                {
                    "type": self.media.media_kind,
                    "title": self.media.title,
                    "externalId": self.media.external_id,
                    "posterPath": self.media.poster_path,
                    "backdropPath": self.media.backdrop_path,
                }
            )
        payload.update(self.aggregate.to_payload())
        return payload


class ExternalMediaMetadata(BaseModel):
    """Display metadata for an externally sourced media item."""

    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(validation_alias=AliasChoices("title", "name"))
    overview: str | None = None
    poster_path: str | None = Field(
        default=None, validation_alias=AliasChoices("poster_path", "posterPath")
    )
    backdrop_path: str | None = Field(
        default=None, validation_alias=AliasChoices("backdrop_path", "backdropPath")
    )
    year: int | None = None


class ReviewCreateRequest(BaseModel):
    """Body accepted when creating a review."""

    model_config = ConfigDict(populate_by_name=True)

    media_ref: str = Field(
        validation_alias=AliasChoices("mediaId", "mediaRef", "media_ref")
    )
    profile_id: str = Field(validation_alias=AliasChoices("profileId", "profile_id"))
    rating: float = 0
    content: str
    is_public: bool = Field(
        default=True, validation_alias=AliasChoices("isPublic", "is_public")
    )
    spoiler: bool = False
    media: ExternalMediaMetadata | None = Field(
        default=None, validation_alias=AliasChoices("media", "mediaData")
    )

    @field_validator("rating", mode="before")
    @classmethod
    def _default_rating(cls, value: object) -> object:
        if value is None or value == "":
            return 0
        return value


class ReviewPatch(BaseModel):
    """Fields a review author may change after creation."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    rating: float | None = None
    content: str | None = None
    is_public: bool | None = Field(
        default=None, validation_alias=AliasChoices("isPublic", "is_public")
    )
    spoiler: bool | None = None

    def changes(self) -> dict[str, Any]:
        """Return only the fields the caller supplied a value for."""

        return self.model_dump(exclude_none=True)


class MediaUpsertRequest(BaseModel):
    """Catalog data for creating or refreshing a local media item."""

    model_config = ConfigDict(populate_by_name=True)

    external_id: int = Field(
        gt=0,
        le=MAX_EXTERNAL_ID,
        validation_alias=AliasChoices("externalId", "tmdbId", "external_id"),
    )
    media_kind: MediaKind = Field(
        validation_alias=AliasChoices("type", "mediaKind", "media_kind")
    )
    title: str = Field(min_length=1, max_length=255)
    overview: str | None = None
    poster_path: str | None = Field(
        default=None, validation_alias=AliasChoices("posterPath", "poster_path")
    )
    backdrop_path: str | None = Field(
        default=None, validation_alias=AliasChoices("backdropPath", "backdrop_path")
    )
    release_date: str | None = Field(
        default=None, validation_alias=AliasChoices("releaseDate", "release_date")
    )
    genres: list[str] = Field(default_factory=list)
    popularity: float | None = None

    @field_validator("media_kind", mode="before")
    @classmethod
    def _normalize_kind(cls, value: object) -> object:
        if isinstance(value, str):
            try:
                return normalize_kind(value)
            except InvalidMediaReference:
                return value
        return value
