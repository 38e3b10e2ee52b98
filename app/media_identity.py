"""Classification of the media references attached to reviews.

A review points either at a media item persisted in the local catalog (a hex
identifier) or at an item known only to the external catalog provider. The
second kind is canonicalised as ``external:<kind>:<id>``; the older
``<kind>-<id>`` and ``tmdb-<kind>-<id>`` spellings are accepted on input.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal, Union

from .errors import InvalidMediaReference

MediaKind = Literal["movie", "series"]

EXTERNAL_PREFIX = "external"

_KIND_ALIASES: dict[str, MediaKind] = {
    "movie": "movie",
    "series": "series",
    "tv": "series",
}
_LOCAL_ID_RE = re.compile(r"^(?:[0-9a-f]{24}|[0-9a-f]{32})$")
_CANONICAL_EXTERNAL_RE = re.compile(r"^external:([a-z]+):([0-9]{1,19})$")
_DASHED_EXTERNAL_RE = re.compile(r"^(?:tmdb-)?([a-z]+)-([0-9]{1,19})$")

# Largest identifier a signed 64-bit integer column can hold.
MAX_EXTERNAL_ID = 2**63 - 1


@dataclass(frozen=True, slots=True)
class LocalMedia:
    """Reference to a media item stored in the local catalog."""

    key: str

    @property
    def ref(self) -> str:
        return self.key


@dataclass(frozen=True, slots=True)
class ExternalMedia:
    """Reference to a media item known only to the catalog provider."""

    media_kind: MediaKind
    external_id: int

    @property
    def ref(self) -> str:
        return external_ref(self.media_kind, self.external_id)


MediaReference = Union[LocalMedia, ExternalMedia]


def normalize_kind(value: str) -> MediaKind:
    """Return the canonical media kind for ``value`` (``tv`` maps to ``series``)."""

    kind = _KIND_ALIASES.get((value or "").strip().lower())
    if kind is None:
        raise InvalidMediaReference(f"Unsupported media kind: {value!r}")
    return kind


def check_external_id(external_id: int) -> int:
    """Return ``external_id`` if it is a positive integer the stores can hold."""

    if isinstance(external_id, bool) or not 0 < int(external_id) <= MAX_EXTERNAL_ID:
        raise InvalidMediaReference(
            f"External identifiers must be integers between 1 and {MAX_EXTERNAL_ID}"
        )
    return int(external_id)


def external_ref(media_kind: str, external_id: int) -> str:
    kind = normalize_kind(media_kind)
    return f"{EXTERNAL_PREFIX}:{kind}:{check_external_id(external_id)}"


def classify(raw: str) -> MediaReference:
    """Parse a raw media reference into a local or external variant."""

    if not isinstance(raw, str):
        raise InvalidMediaReference()
    value = raw.strip().lower()
    if not value:
        raise InvalidMediaReference()

    if _LOCAL_ID_RE.match(value):
        return LocalMedia(key=value)

    match = _CANONICAL_EXTERNAL_RE.match(value) or _DASHED_EXTERNAL_RE.match(value)
    if match is None:
        raise InvalidMediaReference(f"Malformed media reference: {raw!r}")

    kind = normalize_kind(match.group(1))
    external_id = check_external_id(int(match.group(2)))
    return ExternalMedia(media_kind=kind, external_id=external_id)


def canonical(raw: str) -> str:
    """Return the canonical ``mediaRef`` string for ``raw``."""

    return classify(raw).ref


def is_external(media_ref: str) -> bool:
    return isinstance(media_ref, str) and media_ref.startswith(f"{EXTERNAL_PREFIX}:")
