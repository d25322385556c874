"""Time-related helpers.

Timestamps are always produced as aware UTC ``datetime`` instances; elapsed
durations are measured with the monotonic performance counter so that wall
clock adjustments never produce negative latencies.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return the current UTC time as an aware ``datetime`` instance."""

    return datetime.now(timezone.utc)


def utc_now_isoformat() -> str:
    """Return the current UTC time in ISO 8601 format ending with ``Z``."""

    return utc_now().isoformat().replace("+00:00", "Z")


def monotonic_ms() -> float:
    """Return a monotonic timestamp in milliseconds."""

    return time.perf_counter() * 1000.0


def elapsed_ms(started_ms: float) -> float:
    """Return milliseconds elapsed since *started_ms* (from :func:`monotonic_ms`)."""

    return max(0.0, monotonic_ms() - started_ms)
