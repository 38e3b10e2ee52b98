"""Tests for the TMDB metadata client."""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from app.config import Settings
from app.services.tmdb import TMDBClient


def build_settings(**overrides: Any) -> Settings:
    base = {"TMDB_API_KEY": "tmdb-key"}
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


@pytest.mark.anyio("asyncio")
async def test_fetch_media_builds_metadata_for_series() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200,
            json={
                "name": "Game of Thrones",
                "overview": "Seven noble families fight for control.",
                "poster_path": "/got.jpg",
                "backdrop_path": "https://cdn.example/got-wide.jpg",
                "first_air_date": "2011-04-17",
            },
        )

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(
        transport=transport, base_url="https://api.example.com"
    ) as http_client:
        client = TMDBClient(build_settings(), http_client)
        metadata = await client.fetch_media("series", 1399)

    assert metadata is not None
    assert metadata.title == "Game of Thrones"
    assert metadata.year == 2011
    assert metadata.poster_path == "https://image.tmdb.org/t/p/w500/got.jpg"
    assert metadata.backdrop_path == "https://cdn.example/got-wide.jpg"
    assert requests[0].url.path == "/tv/1399"
    assert requests[0].url.params["api_key"] == "tmdb-key"


@pytest.mark.anyio("asyncio")
async def test_fetch_media_returns_none_on_error_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"status_message": "not found"})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(
        transport=transport, base_url="https://api.example.com"
    ) as http_client:
        client = TMDBClient(build_settings(), http_client)
        assert await client.fetch_media("movie", 999999) is None


@pytest.mark.anyio("asyncio")
async def test_fetch_media_returns_none_on_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(
        transport=transport, base_url="https://api.example.com"
    ) as http_client:
        client = TMDBClient(build_settings(), http_client)
        assert await client.fetch_media("movie", 550) is None


def test_client_requires_api_key() -> None:
    with pytest.raises(ValueError):
        TMDBClient(Settings(_env_file=None), httpx.AsyncClient())
