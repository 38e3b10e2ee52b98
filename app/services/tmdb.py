"""Utilities for resolving metadata from The Movie Database (TMDB)."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..config import Settings
from ..media_identity import MediaKind
from ..models import ExternalMediaMetadata

logger = logging.getLogger(__name__)

POSTER_BASE_URL = "https://image.tmdb.org/t/p/w500"
BACKDROP_BASE_URL = "https://image.tmdb.org/t/p/w780"


class TMDBClient:
    """Client fetching display metadata for externally referenced media."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        if not settings.tmdb_api_key:
            raise ValueError("TMDB API key is required when initialising TMDBClient")
        self._settings = settings
        self._client = http_client

    async def fetch_media(
        self, media_kind: MediaKind, external_id: int
    ) -> ExternalMediaMetadata | None:
        """Return title, overview and artwork for a TMDB movie or show."""

        endpoint = f"/{'movie' if media_kind == 'movie' else 'tv'}/{external_id}"
        params = {"api_key": self._settings.tmdb_api_key, "language": "en-US"}
        try:
            response = await self._client.get(endpoint, params=params)
        except httpx.HTTPError as exc:
            logger.warning(
                "TMDB lookup for %s %s failed: %s", media_kind, external_id, exc
            )
            return None
        if response.status_code >= 400:
            logger.warning(
                "TMDB lookup for %s %s failed: %s",
                media_kind,
                external_id,
                response.text,
            )
            return None
        try:
            payload = response.json()
        except ValueError:
            logger.warning("TMDB returned invalid JSON for %s %s", media_kind, external_id)
            return None
        if not isinstance(payload, dict):
            return None

        title = payload.get("title") or payload.get("name")
        if not title:
            return None
        return ExternalMediaMetadata(
            title=str(title),
            overview=payload.get("overview") or None,
            poster_path=self._build_image_url(payload.get("poster_path"), POSTER_BASE_URL),
            backdrop_path=self._build_image_url(
                payload.get("backdrop_path"), BACKDROP_BASE_URL
            ),
            year=self._extract_year(payload, media_kind),
        )

    @staticmethod
    def _extract_year(result: dict[str, Any], media_kind: str) -> int | None:
        date_key = "release_date" if media_kind == "movie" else "first_air_date"
        date_value = result.get(date_key)
        if not isinstance(date_value, str) or len(date_value) < 4:
            return None
        try:
            return int(date_value[:4])
        except ValueError:
            return None

    @staticmethod
    def _build_image_url(path: str | None, base_url: str) -> str | None:
        if not path:
            return None
        if path.startswith("http"):
            return path
        return f"{base_url}{path}"
