"""
Time helpers: timezone-aware ``utcnow()``, data-version stamps, and the
``Deadline`` used to enforce one end-to-end budget per generation request.

``Deadline`` takes an injectable monotonic clock so tests can drive expiry
without sleeping.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], float]


def utcnow() -> datetime:
    """Return the current UTC datetime with timezone info.

    Prefer this over ``datetime.utcnow()`` (which returns naive datetimes).
    """
    return datetime.now(tz=timezone.utc)


def data_version_stamp(now: datetime | None = None) -> str:
    """Return an ISO-8601 UTC stamp (second precision) used as a data version."""
    now = now or utcnow()
    return now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class Deadline:
    """A wall-clock budget measured on a monotonic clock.

    Args:
        budget_ms: Total budget in milliseconds.
        clock:     Monotonic clock in seconds (default ``time.monotonic``).
    """

    def __init__(self, budget_ms: float, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self.budget_seconds = max(0.0, budget_ms / 1000.0)
        self.started_at = clock()

    @property
    def elapsed_seconds(self) -> float:
        return self._clock() - self.started_at

    @property
    def elapsed_ms(self) -> int:
        return int(round(self.elapsed_seconds * 1000))

    @property
    def remaining_seconds(self) -> float:
        return max(0.0, self.budget_seconds - self.elapsed_seconds)

    def expired(self) -> bool:
        return self.remaining_seconds <= 0.0

    def call_timeout(self, configured_seconds: float, fraction: float) -> float:
        """Per-call timeout strictly inside the remaining budget.

        Returns ``min(configured_seconds, remaining × fraction)``; 0.0 means
        there is no room left for the call.
        """
        return max(0.0, min(configured_seconds, self.remaining_seconds * fraction))
