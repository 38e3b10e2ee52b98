"""ReelRate: media reviews with consistent aggregate ratings."""

from __future__ import annotations

from app.main import app, create_app
from app.services.review_service import ReviewService

__version__ = "1.0.0"

__all__ = ["ReviewService", "__version__", "app", "create_app"]
