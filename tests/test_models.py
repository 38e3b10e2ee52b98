from datetime import datetime

import pytest
from pydantic import ValidationError

from app.models import (
    AggregateRating,
    MediaUpsertRequest,
    ProfileSummary,
    ReviewCreateRequest,
    ReviewPage,
    ReviewPatch,
    ReviewRecord,
)


def _record(**overrides):
    values = {
        "id": "r1",
        "author_id": "alice",
        "profile_id": "p1",
        "media_ref": "external:movie:550",
        "rating": 4.0,
        "content": "Great",
        "is_public": True,
        "spoiler": False,
        "like_count": 2,
        "created_at": datetime(2024, 1, 1, 12, 0),
        "updated_at": datetime(2024, 1, 2, 12, 0),
    }
    values.update(overrides)
    return ReviewRecord(**values)


def test_review_payload_uses_public_field_names():
    payload = _record(profile=ProfileSummary(id=None)).to_payload()

    assert payload["userId"] == "alice"
    assert payload["likes"] == 2
    assert payload["createdAt"] == "2024-01-01T12:00:00"
    assert payload["profile"] == {"name": "Unknown User", "avatar": "/default-avatar.png"}
    assert "media" not in payload


def test_review_page_payload_counts_pages():
    page = ReviewPage(items=[_record()], page=2, limit=1, total=3)

    payload = page.to_payload()
    assert payload["totalPages"] == 3
    assert payload["totalResults"] == 3
    assert len(payload["results"]) == 1


def test_aggregate_payload():
    assert AggregateRating(3.5, 2).to_payload() == {"averageRating": 3.5, "totalReviews": 2}


def test_create_request_accepts_legacy_aliases():
    request = ReviewCreateRequest.model_validate(
        {
            "mediaId": "tv-1399",
            "profileId": "p1",
            "rating": None,
            "content": "Dragons",
            "mediaData": {"name": "Game of Thrones", "posterPath": "/got.jpg"},
        }
    )

    assert request.rating == 0
    assert request.is_public is True
    assert request.media is not None
    assert request.media.title == "Game of Thrones"
    assert request.media.poster_path == "/got.jpg"


def test_patch_rejects_immutable_fields_and_drops_missing():
    with pytest.raises(ValidationError):
        ReviewPatch.model_validate({"mediaRef": "external:movie:1"})

    assert ReviewPatch.model_validate({"isPublic": False}).changes() == {"is_public": False}


def test_media_upsert_normalises_kind():
    request = MediaUpsertRequest.model_validate(
        {"tmdbId": 1399, "type": "TV", "title": "Game of Thrones"}
    )
    assert request.media_kind == "series"

    with pytest.raises(ValidationError):
        MediaUpsertRequest.model_validate({"tmdbId": 1, "type": "anime", "title": "X"})


def test_media_upsert_rejects_identifiers_beyond_storage_range():
    with pytest.raises(ValidationError):
        MediaUpsertRequest.model_validate(
            {"tmdbId": 99999999999999999999, "type": "movie", "title": "Too big"}
        )
