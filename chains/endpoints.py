"""
chains/endpoints.py - Per-chain RPC endpoint pool with backoff.

Provides:
- Rotation across healthy endpoints (least recently selected first)
- Exponential backoff for failing endpoints
- Fallback to the endpoint whose backoff ends soonest
- Per-endpoint request statistics

Endpoints come from configuration and are never removed: a flaky
endpoint is tried less often, not dropped.
"""

from dataclasses import dataclass
from typing import Iterator, Optional, Sequence

from core.constants import (
    DEFAULT_BACKOFF_BASE_SECONDS,
    DEFAULT_BACKOFF_EXPONENT_CAP,
    DEFAULT_BACKOFF_MAX_SECONDS,
)
from core.format import redact_url
from core.logging import get_logger
from core.time import MonotonicClock, backoff_delay, monotonic

logger = get_logger(__name__)


@dataclass
class RpcEndpoint:
    """RPC endpoint URL plus mutable health metadata."""
    url: str
    index: int
    consecutive_failures: int = 0
    last_success_at: Optional[float] = None
    last_failure_at: Optional[float] = None
    backoff_until: Optional[float] = None
    last_selected_seq: int = 0

    # Counters
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    last_error: Optional[str] = None

    def in_backoff(self, now: float) -> bool:
        return self.backoff_until is not None and now < self.backoff_until

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests

    def to_dict(self, now: Optional[float] = None) -> dict:
        backoff_remaining = None
        if now is not None and self.in_backoff(now):
            backoff_remaining = round(self.backoff_until - now, 3)
        return {
            "url": redact_url(self.url),
            "consecutive_failures": self.consecutive_failures,
            "total_requests": self.total_requests,
            "success_rate": round(self.success_rate, 3),
            "backoff_remaining_s": backoff_remaining,
            "last_error": self.last_error,
        }


class EndpointPool:
    """
    Ordered pool of RPC endpoints for one chain.

    Selection is deterministic given the same health history:
    - Endpoints not in backoff are rotated, least recently selected first,
      ties broken by configuration order.
    - If every endpoint is backing off, the one whose backoff ends soonest
      is returned (ties by configuration order). Never blocks.
    """

    def __init__(
        self,
        urls: Sequence[str],
        base_delay: float = DEFAULT_BACKOFF_BASE_SECONDS,
        exponent_cap: int = DEFAULT_BACKOFF_EXPONENT_CAP,
        max_delay: float = DEFAULT_BACKOFF_MAX_SECONDS,
        clock: MonotonicClock = monotonic,
    ):
        if not urls:
            raise ValueError("EndpointPool requires at least one URL")

        self._endpoints = [RpcEndpoint(url=url, index=i) for i, url in enumerate(urls)]
        self.base_delay = base_delay
        self.exponent_cap = exponent_cap
        self.max_delay = max_delay
        self._clock = clock
        self._selection_seq = 0

    def __len__(self) -> int:
        return len(self._endpoints)

    def __iter__(self) -> Iterator[RpcEndpoint]:
        return iter(self._endpoints)

    @property
    def urls(self) -> list[str]:
        return [e.url for e in self._endpoints]

    def next_endpoint(self) -> RpcEndpoint:
        """
        Select the next endpoint to query.

        Returns:
            Chosen RpcEndpoint (marked as most recently selected)
        """
        now = self._clock()
        eligible = [e for e in self._endpoints if not e.in_backoff(now)]

        if eligible:
            chosen = min(eligible, key=lambda e: (e.last_selected_seq, e.index))
        else:
            chosen = min(self._endpoints, key=lambda e: (e.backoff_until, e.index))
            logger.debug(
                "All endpoints backing off, using soonest available",
                extra={"context": {
                    "endpoint": redact_url(chosen.url),
                    "backoff_remaining_s": round(chosen.backoff_until - now, 3),
                }},
            )

        self._selection_seq += 1
        chosen.last_selected_seq = self._selection_seq
        return chosen

    def record_success(self, endpoint: RpcEndpoint) -> None:
        """Clear failure count and backoff after a good response."""
        endpoint = self._own(endpoint)
        now = self._clock()

        if endpoint.consecutive_failures:
            logger.info(
                f"Endpoint recovered after {endpoint.consecutive_failures} failures",
                extra={"context": {"endpoint": redact_url(endpoint.url)}},
            )

        endpoint.total_requests += 1
        endpoint.successful_requests += 1
        endpoint.consecutive_failures = 0
        endpoint.backoff_until = None
        endpoint.last_success_at = now

    def record_failure(self, endpoint: RpcEndpoint, cause: Optional[str] = None) -> float:
        """
        Count a failure and push the endpoint into backoff.

        Returns:
            Backoff window in seconds
        """
        endpoint = self._own(endpoint)
        now = self._clock()

        endpoint.total_requests += 1
        endpoint.failed_requests += 1
        endpoint.consecutive_failures += 1
        endpoint.last_failure_at = now
        if cause:
            endpoint.last_error = cause

        delay = backoff_delay(
            endpoint.consecutive_failures,
            self.base_delay,
            self.exponent_cap,
            self.max_delay,
        )
        endpoint.backoff_until = now + delay

        logger.debug(
            f"Endpoint backing off for {delay:.1f}s",
            extra={"context": {
                "endpoint": redact_url(endpoint.url),
                "consecutive_failures": endpoint.consecutive_failures,
                "cause": cause,
            }},
        )
        return delay

    def healthy_count(self) -> int:
        """Number of endpoints not currently in backoff."""
        now = self._clock()
        return sum(1 for e in self._endpoints if not e.in_backoff(now))

    def stats_summary(self) -> list[dict]:
        """Get statistics summary for all endpoints."""
        now = self._clock()
        return [e.to_dict(now) for e in self._endpoints]

    def _own(self, endpoint: RpcEndpoint) -> RpcEndpoint:
        # Endpoints are never shared across pools
        if endpoint.index >= len(self._endpoints) or self._endpoints[endpoint.index] is not endpoint:
            raise ValueError(f"Endpoint {redact_url(endpoint.url)} does not belong to this pool")
        return endpoint
