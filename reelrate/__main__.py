"""Command line entry point for ``python -m reelrate``.

Without arguments the API server is started. ``rebuild-aggregates`` rewrites
the stored rating of every local media item from its reviews and exits.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Sequence

import uvicorn

from app.config import settings
from app.database import Database
from app.services.media_store import MediaStore
from app.services.rating_aggregator import RatingAggregator
from app.services.review_store import ReviewStore

logger = logging.getLogger("reelrate")


async def rebuild_aggregates(database_url: str) -> int:
    database = Database(database_url)
    try:
        await database.create_all()
        media_store = MediaStore(database.session_factory)
        review_store = ReviewStore(database.session_factory, media_store)
        return await RatingAggregator(review_store, media_store).recompute_all()
    finally:
        await database.dispose()


def main(argv: Sequence[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="reelrate")
    parser.add_argument(
        "command",
        nargs="?",
        choices=("serve", "rebuild-aggregates"),
        default="serve",
    )
    args = parser.parse_args(argv)

    if args.command == "rebuild-aggregates":
        logging.basicConfig(level=logging.INFO)
        written = asyncio.run(rebuild_aggregates(settings.database_url))
        logger.info("Stored aggregates refreshed for %d media items", written)
        return

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    main()
