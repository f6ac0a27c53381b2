# PATH: core/time.py
"""
Time utilities for Observatory.

Wall-clock timestamps for events, monotonic time for backoff windows.
"""

import time
from datetime import datetime, timezone
from typing import Callable


# Injectable clocks, so pools and trackers can be driven by tests
MonotonicClock = Callable[[], float]
WallClock = Callable[[], datetime]


def now_utc() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def now_iso() -> str:
    """Get current UTC datetime as ISO string."""
    return now_utc().isoformat()


def now_ms() -> int:
    """Get current Unix timestamp in milliseconds."""
    return int(time.time() * 1000)


def monotonic() -> float:
    """Monotonic seconds, unaffected by wall clock changes."""
    return time.monotonic()


def backoff_delay(
    failures: int,
    base_seconds: float,
    exponent_cap: int,
    max_seconds: float,
) -> float:
    """
    Exponential backoff window.

    base * 2^min(failures, cap), never longer than max_seconds.

    Args:
        failures: Consecutive failure count (>= 0)
        base_seconds: Base delay
        exponent_cap: Largest exponent applied
        max_seconds: Upper bound on the delay

    Returns:
        Delay in seconds
    """
    exponent = min(max(failures, 0), exponent_cap)
    return min(base_seconds * (2 ** exponent), max_seconds)


class FakeClock:
    """
    Manually advanced clock for deterministic tests.

    Callable like time.monotonic.
    """

    def __init__(self, start: float = 0.0):
        self._now = start

    def __call__(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += seconds
