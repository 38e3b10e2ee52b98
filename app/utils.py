"""Utility helpers for the ReelRate service."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

ONE_DECIMAL = Decimal("0.1")


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime for storage."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def round_rating(value: float) -> float:
    """Round half-up to one decimal place using the exact float value."""

    return float(Decimal(value).quantize(ONE_DECIMAL, rounding=ROUND_HALF_UP))


def mean(values: Iterable[float]) -> float | None:
    """Return the arithmetic mean, or ``None`` for an empty sequence."""

    collected = [float(value) for value in values]
    if not collected:
        return None
    return math.fsum(collected) / len(collected)


def total_pages(total: int, limit: int) -> int:
    if limit <= 0:
        return 0
    return math.ceil(total / limit)
