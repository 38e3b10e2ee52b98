"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base
from .utils import utcnow

REVIEW_UNIQUE_INDEX = "uq_review_author_profile_media"
LEGACY_REVIEW_UNIQUE_INDEX = "uq_review_author_media"


def _new_id() -> str:
    return uuid4().hex


class MediaItem(Base):
    """A movie or series persisted in the local catalog."""

    __tablename__ = "media_items"
    __table_args__ = (
        UniqueConstraint("external_id", "media_kind", name="uq_media_external"),
        Index("ix_media_kind_rating", "media_kind", "rating_average"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    external_id: Mapped[int] = mapped_column(Integer)
    media_kind: Mapped[str] = mapped_column(String(16))
    title: Mapped[str] = mapped_column(String(255))
    overview: Mapped[str | None] = mapped_column(Text, nullable=True)
    poster_path: Mapped[str | None] = mapped_column(String(512), nullable=True)
    backdrop_path: Mapped[str | None] = mapped_column(String(512), nullable=True)
    release_date: Mapped[str | None] = mapped_column(String(20), nullable=True)
    genres: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    popularity: Mapped[float | None] = mapped_column(Float, nullable=True)
    rating_average: Mapped[float] = mapped_column(Float, default=0.0)
    rating_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )


class Profile(Base):
    """A sub-identity inside an account; reviews are authored per profile."""

    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    account_id: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[str] = mapped_column(String(120))
    avatar: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Review(Base):
    """A profile's review of a local or external media item."""

    __tablename__ = "reviews"
    __table_args__ = (
        UniqueConstraint(
            "author_id", "profile_id", "media_ref", name=REVIEW_UNIQUE_INDEX
        ),
        Index("ix_review_media_recent", "media_ref", "created_at"),
        Index("ix_review_media_rating", "media_ref", "rating"),
        Index("ix_review_author_recent", "author_id", "created_at"),
        Index("ix_review_public", "is_public"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    author_id: Mapped[str] = mapped_column(String(64))
    profile_id: Mapped[str] = mapped_column(String(64))
    media_ref: Mapped[str] = mapped_column(String(64))
    rating: Mapped[float] = mapped_column(Float, default=0.0)
    content: Mapped[str] = mapped_column(Text)
    is_public: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    spoiler: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    like_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )


class ExternalMediaCacheEntry(Base):
    """Display metadata for media referenced only by an external key."""

    __tablename__ = "external_media_cache"

    media_ref: Mapped[str] = mapped_column(String(64), primary_key=True)
    media_kind: Mapped[str] = mapped_column(String(16))
    external_id: Mapped[int] = mapped_column(Integer)
    title: Mapped[str] = mapped_column(String(255))
    overview: Mapped[str | None] = mapped_column(Text, nullable=True)
    poster_path: Mapped[str | None] = mapped_column(String(512), nullable=True)
    backdrop_path: Mapped[str | None] = mapped_column(String(512), nullable=True)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    extra: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    fetched_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
