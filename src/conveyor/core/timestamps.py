"""
ULID generation and timestamp utilities (stdlib-only).

Timestamps are stored as fixed-width ISO-8601 UTC strings so that SQL string
comparison orders them chronologically; ``to_iso8601`` always emits
microseconds and a ``+00:00`` offset.
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def generate_ulid() -> str:
    """
    Generate a ULID-like identifier.

    Format: 26 characters, base32 encoded, time-sortable.
    """
    timestamp_ms = int(time.time() * 1000)
    timestamp_chars = _encode_base32(timestamp_ms, 10)
    random_part = "".join(random.choices(_ENCODING, k=16))
    return timestamp_chars + random_part


def new_id(prefix: str) -> str:
    """Prefixed ULID, e.g. ``job_01J...``."""
    return f"{prefix}_{generate_ulid()}"


def to_iso8601(dt: datetime | None) -> str | None:
    """Convert datetime to a fixed-width UTC ISO 8601 string."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def from_iso8601(s: str | None) -> datetime | None:
    """Parse ISO 8601 string to an aware datetime (naive input is UTC)."""
    if s is None:
        return None
    dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def add_ms(dt: datetime, milliseconds: int | float) -> datetime:
    return dt + timedelta(milliseconds=milliseconds)


def parse_timestamp(value: object) -> datetime | None:
    """Interpret an entity field as a point in time.

    Accepts datetimes, ISO-8601 strings, epoch milliseconds and epoch
    seconds (numbers below 10^11 are taken as seconds). Returns ``None``
    when the value cannot be read as a timestamp.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)):
        seconds = value / 1000 if abs(value) >= 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return parse_timestamp(float(text)) if _is_number(text) else from_iso8601(text)
        except ValueError:
            return None
    return None


def _is_number(text: str) -> bool:
    try:
        float(text)
    except ValueError:
        return False
    return True


# ULID base32 alphabet (Crockford's)
_ENCODING = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_ENCODING_LEN = len(_ENCODING)


def _encode_base32(value: int, length: int) -> str:
    """Encode integer as base32 string of given length."""
    result = []
    for _ in range(length):
        result.append(_ENCODING[value % _ENCODING_LEN])
        value //= _ENCODING_LEN
    return "".join(reversed(result))


__all__ = [
    "Clock",
    "utc_now",
    "generate_ulid",
    "new_id",
    "to_iso8601",
    "from_iso8601",
    "add_ms",
    "parse_timestamp",
]
