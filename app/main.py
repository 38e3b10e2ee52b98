"""Entry point for the FastAPI-powered review service."""

from __future__ import annotations

import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from .config import settings
from .database import Database
from .errors import (
    DuplicateReview,
    Forbidden,
    InvalidMediaReference,
    MediaNotFound,
    ReviewError,
    ReviewNotFound,
    ReviewValidationError,
    StorageUnavailable,
)
from .media_identity import MediaKind, normalize_kind
from .models import (
    MediaUpsertRequest,
    Requester,
    ReviewCreateRequest,
    ReviewPatch,
    ReviewSort,
)
from .services.media_store import MediaStore
from .services.rating_aggregator import RatingAggregator
from .services.review_service import ReviewService
from .services.review_store import ReviewStore
from .services.tmdb import TMDBClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ERROR_STATUS_CODES: tuple[tuple[type[ReviewError], int], ...] = (
    (InvalidMediaReference, 400),
    (ReviewValidationError, 400),
    (MediaNotFound, 404),
    (ReviewNotFound, 404),
    (Forbidden, 403),
    (DuplicateReview, 409),
    (StorageUnavailable, 503),
)


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    database = Database(settings.database_url)
    await database.create_all()

    catalog_client: TMDBClient | None = None
    if settings.tmdb_api_key:
        tmdb_http_client = await exit_stack.enter_async_context(
            httpx.AsyncClient(
                base_url=str(settings.tmdb_api_url),
                timeout=httpx.Timeout(15.0, connect=5.0),
            )
        )
        catalog_client = TMDBClient(settings, tmdb_http_client)
    else:
        logger.info("TMDB_API_KEY not set; external media metadata will not be fetched")

    media_store = MediaStore(database.session_factory)
    review_store = ReviewStore(database.session_factory, media_store)
    aggregator = RatingAggregator(review_store, media_store)
    review_service = ReviewService(
        settings, review_store, media_store, aggregator, catalog_client
    )

    fastapi_app.state.review_service = review_service
    fastapi_app.state.database = database

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Media reviews with consistent aggregate ratings",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_review_service(app: FastAPI) -> ReviewService:
    service = getattr(app.state, "review_service", None)
    if not isinstance(service, ReviewService):
        raise RuntimeError("Review service not initialised")
    return service


def status_code_for(exc: ReviewError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 500


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.exception_handler(ReviewError)
    async def _review_error_handler(_: Request, exc: ReviewError) -> JSONResponse:
        return JSONResponse(
            {"message": exc.message, "error": type(exc).__name__},
            status_code=status_code_for(exc),
        )

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/reviews/top-rated")
    async def top_rated(
        limit: int = Query(default=10, ge=1),
        media_type: str | None = Query(default=None, alias="mediaType"),
    ) -> JSONResponse:
        service = get_review_service(fastapi_app)
        entries = await service.top_rated(limit, _parse_kind(media_type))
        return JSONResponse([entry.to_payload() for entry in entries])

    @fastapi_app.get("/reviews/media/{media_ref}")
    async def media_reviews(
        request: Request,
        media_ref: str,
        page: int = Query(default=1, ge=1),
        limit: int | None = Query(default=None, ge=1),
        sort: ReviewSort = Query(default="recent"),
        include_non_public: bool = Query(default=False, alias="includeNonPublic"),
        user_id: str | None = Query(default=None, alias="userId"),
    ) -> JSONResponse:
        service = get_review_service(fastapi_app)
        listing = await service.list_media_reviews(
            media_ref,
            _requester(request),
            sort=sort,
            page=page,
            limit=limit,
            include_non_public=include_non_public,
            author_id=user_id,
        )
        return JSONResponse(listing.to_payload())

    async def _author_reviews(
        request: Request,
        author_id: str,
        *,
        page: int,
        limit: int | None,
        media_type: str | None,
        profile_id: str | None,
    ) -> JSONResponse:
        service = get_review_service(fastapi_app)
        reviews = await service.list_author_reviews(
            author_id,
            _requester(request),
            profile_id=profile_id,
            media_kind=_parse_kind(media_type),
            page=page,
            limit=limit,
        )
        return JSONResponse(reviews.to_payload())

    @fastapi_app.get("/reviews/my-reviews")
    async def my_reviews(
        request: Request,
        page: int = Query(default=1, ge=1),
        limit: int | None = Query(default=None, ge=1),
        media_type: str | None = Query(default=None, alias="mediaType"),
        profile_id: str | None = Query(default=None, alias="profileId"),
    ) -> JSONResponse:
        requester = _require_requester(request)
        return await _author_reviews(
            request,
            requester.account_id,
            page=page,
            limit=limit,
            media_type=media_type,
            profile_id=profile_id,
        )

    @fastapi_app.get("/reviews/user/{user_id}")
    async def user_reviews(
        request: Request,
        user_id: str,
        page: int = Query(default=1, ge=1),
        limit: int | None = Query(default=None, ge=1),
        media_type: str | None = Query(default=None, alias="mediaType"),
        profile_id: str | None = Query(default=None, alias="profileId"),
    ) -> JSONResponse:
        return await _author_reviews(
            request,
            user_id,
            page=page,
            limit=limit,
            media_type=media_type,
            profile_id=profile_id,
        )

    @fastapi_app.get("/reviews/{review_id}")
    async def get_review(request: Request, review_id: str) -> JSONResponse:
        service = get_review_service(fastapi_app)
        review = await service.get_review(review_id, _requester(request))
        return JSONResponse(review.to_payload())

    @fastapi_app.post("/reviews")
    async def create_review(request: Request) -> JSONResponse:
        requester = _require_requester(request)
        service = get_review_service(fastapi_app)
        body = await _parse_body(request, ReviewCreateRequest)
        result = await service.create_review(
            requester,
            body.profile_id,
            body.media_ref,
            body.rating,
            body.content,
            is_public=body.is_public,
            spoiler=body.spoiler,
            metadata=body.media,
        )
        return JSONResponse(result.to_payload(), status_code=201)

    @fastapi_app.put("/reviews/{review_id}")
    async def update_review(request: Request, review_id: str) -> JSONResponse:
        requester = _require_requester(request)
        service = get_review_service(fastapi_app)
        patch = await _parse_body(request, ReviewPatch)
        result = await service.update_review(review_id, requester, patch)
        return JSONResponse(result.to_payload())

    @fastapi_app.delete("/reviews/{review_id}")
    async def delete_review(request: Request, review_id: str) -> JSONResponse:
        requester = _require_requester(request)
        service = get_review_service(fastapi_app)
        result = await service.delete_review(review_id, requester)
        return JSONResponse(result.to_payload())

    @fastapi_app.post("/reviews/{review_id}/like")
    async def like_review(request: Request, review_id: str) -> dict[str, int]:
        _require_requester(request)
        service = get_review_service(fastapi_app)
        return {"likes": await service.like_review(review_id)}

    @fastapi_app.post("/media")
    async def save_media(request: Request) -> JSONResponse:
        requester = _require_requester(request)
        service = get_review_service(fastapi_app)
        body = await _parse_body(request, MediaUpsertRequest)
        media = await service.save_media(requester, body)
        return JSONResponse(media.to_payload(), status_code=201)

    @fastapi_app.get("/media/{media_id}")
    async def get_media(media_id: str) -> JSONResponse:
        service = get_review_service(fastapi_app)
        media = await service.get_media(media_id)
        return JSONResponse(media.to_payload())


def _requester(request: Request) -> Requester | None:
    """Return the caller identity forwarded by the auth gateway, if any."""

    account_id = (request.headers.get("x-user-id") or "").strip()
    if not account_id:
        return None
    return Requester.from_identity(
        account_id, request.headers.get("x-user-role"), settings.admin_roles
    )


def _require_requester(request: Request) -> Requester:
    requester = _requester(request)
    if requester is None:
        raise HTTPException(status_code=401, detail="Not authorized, no identity found")
    return requester


def _parse_kind(value: str | None) -> MediaKind | None:
    if value is None or not value.strip():
        return None
    return normalize_kind(value)


async def _parse_body(request: Request, model: type[BaseModel]) -> Any:
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(
            status_code=400, detail=json.loads(exc.json(include_url=False))
        ) from exc


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
