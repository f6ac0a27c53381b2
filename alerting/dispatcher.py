"""
alerting/dispatcher.py - Deduplicating alert dispatcher.

Shared by every chain's poller:
- Deduplication map of open incidents keyed by (chain_id, reason),
  guarded by an asyncio.Lock
- RAISED for an already-open incident is suppressed
- RESOLVED with no open incident is suppressed
- Surviving events are queued and delivered by a single worker with
  bounded exponential backoff

Delivery failures are logged, never raised into pollers.
"""

import asyncio
from collections import Counter
from typing import Awaitable, Callable, Optional

from alerting.sinks import AlertSink
from core.constants import (
    DEFAULT_DISPATCH_BASE_DELAY_SECONDS,
    DEFAULT_DISPATCH_MAX_ATTEMPTS,
    DEFAULT_DISPATCH_MAX_DELAY_SECONDS,
    AlertKind,
    ErrorCode,
)
from core.exceptions import SinkDispatchError
from core.logging import get_logger, log_error
from core.models import AlertEvent
from core.time import backoff_delay

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class AlertDispatcher:
    """
    Deduplicates alert events and forwards them to a sink.

    Usage:
        dispatcher = AlertDispatcher(sink)
        dispatcher.start()
        await dispatcher.submit(event)
        ...
        await dispatcher.stop()
    """

    def __init__(
        self,
        sink: AlertSink,
        max_attempts: int = DEFAULT_DISPATCH_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_DISPATCH_BASE_DELAY_SECONDS,
        max_delay: float = DEFAULT_DISPATCH_MAX_DELAY_SECONDS,
        sleep: Sleep = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

        self.sink = sink
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

        self._open: dict[tuple[str, str], AlertEvent] = {}
        self._lock = asyncio.Lock()
        self._queue: asyncio.Queue[AlertEvent] = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self.stats: Counter = Counter()

    # =========================================================================
    # DEDUPLICATION
    # =========================================================================

    async def submit(self, event: AlertEvent) -> bool:
        """
        Deduplicate and enqueue an event.

        Returns:
            True if the event was queued for delivery, False if suppressed
        """
        key = event.incident_key

        async with self._lock:
            if event.kind == AlertKind.RAISED:
                if key in self._open:
                    self._suppress(event, "incident already open")
                    return False
                self._open[key] = event
            else:
                if key not in self._open:
                    self._suppress(event, "no open incident")
                    return False
                del self._open[key]

            self.stats["queued"] += 1
            self._queue.put_nowait(event)

        return True

    def _suppress(self, event: AlertEvent, why: str) -> None:
        self.stats["suppressed"] += 1
        logger.debug(
            f"Suppressed {event.kind.value}: {why}",
            extra={"context": {"chain_id": event.chain_id, "reason": event.reason}},
        )

    def open_incidents(self, chain_id: Optional[str] = None) -> list[str]:
        """Reasons of currently open incidents, optionally for one chain."""
        return [
            reason for (chain, reason) in self._open
            if chain_id is None or chain == chain_id
        ]

    @property
    def pending(self) -> int:
        """Events queued but not yet delivered."""
        return self._queue.qsize()

    # =========================================================================
    # DELIVERY
    # =========================================================================

    def start(self) -> None:
        """Start the delivery worker (idempotent)."""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="alert-dispatcher")

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.deliver(event)
            except asyncio.CancelledError:
                raise
            except Exception:
                # A sink bug must not kill delivery for every other chain
                self.stats["failed"] += 1
                logger.exception(
                    "Unexpected error delivering alert",
                    extra={"context": {"chain_id": event.chain_id, "reason": event.reason}},
                )
            finally:
                self._queue.task_done()

    async def deliver(self, event: AlertEvent) -> bool:
        """
        Send one event to the sink with bounded retries.

        Returns:
            True if delivered, False if every attempt failed
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                await self.sink.notify(event)
            except SinkDispatchError as e:
                if attempt == self.max_attempts:
                    self.stats["failed"] += 1
                    log_error(
                        logger,
                        ErrorCode.SINK_DISPATCH_FAILED.value,
                        f"Giving up on alert after {attempt} attempts: {e.message}",
                        chain_id=event.chain_id,
                        kind=event.kind.value,
                        reason=event.reason,
                    )
                    return False

                delay = backoff_delay(attempt - 1, self.base_delay, 30, self.max_delay)
                logger.warning(
                    f"Alert delivery failed, retrying in {delay:.1f}s",
                    extra={"context": {
                        "chain_id": event.chain_id,
                        "attempt": attempt,
                        "error": e.message,
                    }},
                )
                await self._sleep(delay)
                continue

            self.stats["delivered"] += 1
            logger.info(
                f"Alert {event.kind.value} delivered",
                extra={"context": {"chain_id": event.chain_id, "reason": event.reason}},
            )
            return True

        return False

    async def stop(self, timeout: float = 5.0) -> None:
        """
        Drain queued events (up to timeout), stop the worker, close the sink.
        """
        if self._worker is not None:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    f"Dropping {self._queue.qsize()} undelivered alerts on shutdown",
                    extra={"context": {"pending": self._queue.qsize()}},
                )

            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        await self.sink.close()
