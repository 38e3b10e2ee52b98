"""Typed failures raised by the review subsystem."""

from __future__ import annotations


class ReviewError(Exception):
    """Base class for every failure the review core reports to callers."""

    default_message = "Review operation failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidMediaReference(ReviewError):
    default_message = "Media reference is empty or malformed"


class ReviewValidationError(ReviewError):
    """Review input rejected before any store access."""


class InvalidContent(ReviewValidationError):
    default_message = "Review content is required"


class InvalidRating(ReviewValidationError):
    default_message = "Rating must be a number between 0 and 5"


class MediaNotFound(ReviewError):
    default_message = "Media not found"


class ReviewNotFound(ReviewError):
    default_message = "Review not found"


class DuplicateReview(ReviewError):
    default_message = (
        "You have already reviewed this media with this profile. "
        "Please update your existing review instead."
    )


class Forbidden(ReviewError):
    default_message = "You can only modify your own reviews"


class PrivateReview(Forbidden):
    default_message = "This review is private"


class StorageUnavailable(ReviewError):
    default_message = "Review storage is unavailable"


class AggregationFailed(ReviewError):
    """Recompute could not finish after a committed review mutation."""

    default_message = "Rating aggregate could not be refreshed"

    def __init__(self, media_ref: str, message: str | None = None):
        self.media_ref = media_ref
        super().__init__(message)
