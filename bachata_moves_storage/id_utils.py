"""ID generation and parsing utilities for the library store.

Centralizes the ID format knowledge so callers never need to
construct or parse entity IDs directly.

Entity IDs: {epoch_millis}-{7 base36 chars}

IDs sort by creation time when compared as strings of equal length,
which keeps insertion order stable for entities created in the same run.
"""

from __future__ import annotations

import secrets
import time
from datetime import UTC, datetime

_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
_RANDOM_LENGTH = 7


def generate_id() -> str:
    """Generate a new time-sortable entity ID."""
    millis = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(_RANDOM_LENGTH))
    return f"{millis}-{suffix}"


def parse_id_timestamp(entity_id: str) -> datetime:
    """Extract the creation time encoded in an entity ID.

    Raises ValueError on malformed input.
    """
    try:
        prefix, suffix = entity_id.split("-", 1)
        if not suffix:
            raise ValueError
        return datetime.fromtimestamp(int(prefix) / 1000, tz=UTC)
    except (ValueError, OverflowError):
        raise ValueError(f"Malformed entity ID: {entity_id}") from None


def utc_now_iso() -> str:
    """Current UTC time as an ISO 8601 string with millisecond precision."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


EPOCH_ISO = "1970-01-01T00:00:00.000Z"
