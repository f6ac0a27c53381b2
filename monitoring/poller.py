"""
monitoring/poller.py - Fixed-interval poll loop for one chain.

Each cycle:
1. Pick an endpoint from the pool
2. Query it once (bounded by the query timeout)
3. Record the outcome in the pool
4. Feed the tracker
5. Submit alert-worthy transitions to the dispatcher

A failed cycle still completes on schedule and is not retried.
Cadence is independent of every other chain.
"""

import asyncio
from typing import Awaitable, Optional, Protocol

from chains.endpoints import EndpointPool, RpcEndpoint
from chains.providers import CometRPCClient
from config.settings import ChainConfig, MonitorSettings
from core.constants import SigningStatus
from core.format import format_height, redact_url, short_address
from core.logging import get_logger
from core.models import (
    AlertEvent,
    PollMalformed,
    PollResult,
    PollSuccess,
    PollUnreachable,
    TrackerVerdict,
)
from core.time import WallClock, now_utc
from monitoring.tracker import SigningStateTracker


class AlertSubmitter(Protocol):
    def submit(self, event: AlertEvent) -> Awaitable[bool]:
        ...


class ChainPoller:
    """
    Poll loop for one chain.

    All state (pool, tracker) is confined to this poller's task.
    """

    def __init__(
        self,
        chain: ChainConfig,
        settings: MonitorSettings,
        pool: EndpointPool,
        client: CometRPCClient,
        tracker: SigningStateTracker,
        dispatcher: AlertSubmitter,
        clock: WallClock = now_utc,
    ):
        self.chain = chain
        self.settings = settings
        self.pool = pool
        self.client = client
        self.tracker = tracker
        self.dispatcher = dispatcher
        self._clock = clock

        self.cycles = 0
        self.highest_height = 0
        self.last_result: Optional[PollResult] = None
        self.logger = get_logger("observatory.poller", chain_id=chain.id)

    async def run(self, stop: asyncio.Event) -> None:
        """
        Run cycles until stop is set.

        Stop is observed at the top of each cycle, while a query is in
        flight and during the inter-cycle wait.
        """
        loop = asyncio.get_running_loop()
        interval = self.settings.poll_interval_seconds

        self.logger.info(
            f"[{self.chain.id}] monitoring signatures from {short_address(self.chain.validator_addr)}",
            extra={"context": {
                "validator": self.chain.validator_addr,
                "endpoints": len(self.pool),
                "interval_s": interval,
                "signing_source": self.client.signing_source.name,
            }},
        )

        while not stop.is_set():
            started = loop.time()
            await self.run_cycle(stop)

            if self.settings.status_log_every and self.cycles % self.settings.status_log_every == 0:
                self.log_status()

            remaining = max(interval - (loop.time() - started), 0.0)
            try:
                await asyncio.wait_for(stop.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                pass

    async def run_cycle(self, stop: Optional[asyncio.Event] = None) -> Optional[PollResult]:
        """
        Run exactly one poll cycle.

        With a stop event the query is abandoned as soon as stop is set;
        the cycle then records nothing and returns None.
        """
        self.cycles += 1

        endpoint = self.pool.next_endpoint()
        if stop is None:
            result = await self.client.query(endpoint, self.settings.query_timeout_seconds)
        else:
            result = await self._query_until_stopped(endpoint, stop)
            if result is None:
                return None
        self.last_result = result

        self._record(endpoint, result)
        verdict = self.tracker.observe(result)
        self._log_verdict(result, verdict)

        for decision in verdict.alerts:
            event = AlertEvent(
                chain_id=self.chain.id,
                kind=decision.kind,
                reason=decision.reason,
                occurred_at=self._clock(),
                details=self._event_details(result, verdict),
            )
            await self.dispatcher.submit(event)

        return result

    async def _query_until_stopped(
        self, endpoint: RpcEndpoint, stop: asyncio.Event
    ) -> Optional[PollResult]:
        query = asyncio.create_task(
            self.client.query(endpoint, self.settings.query_timeout_seconds)
        )
        stopped = asyncio.create_task(stop.wait())
        try:
            done, _ = await asyncio.wait({query, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopped.cancel()
            if not query.done():
                query.cancel()

        if query in done:
            return query.result()

        await asyncio.gather(query, return_exceptions=True)
        self.logger.info(
            f"[{self.chain.id}] shutdown during query, result discarded",
            extra={"context": {"endpoint": redact_url(endpoint.url), "cycle": self.cycles}},
        )
        return None

    def _record(self, endpoint: RpcEndpoint, result: PollResult) -> None:
        if isinstance(result, PollSuccess):
            if result.catching_up:
                # Reachable, but rotate off a syncing node
                self.pool.record_failure(endpoint, "node is catching up")
            else:
                self.pool.record_success(endpoint)
        elif isinstance(result, PollUnreachable):
            self.pool.record_failure(endpoint, result.cause)
        elif isinstance(result, PollMalformed):
            self.pool.record_failure(endpoint, result.cause)

    def _log_verdict(self, result: PollResult, verdict: TrackerVerdict) -> None:
        ctx = {"endpoint": redact_url(result.endpoint), "cycle": self.cycles}

        if isinstance(result, PollUnreachable):
            self.logger.warning(
                f"[{self.chain.id}] RPC endpoint unreachable: {result.cause}",
                extra={"context": ctx},
            )
        elif isinstance(result, PollMalformed):
            self.logger.warning(
                f"[{self.chain.id}] malformed RPC response: {result.cause}",
                extra={"context": ctx},
            )
        elif isinstance(result, PollSuccess):
            ctx.update(height=result.latest_height, latency_ms=result.latency_ms)

            if result.latest_height < self.highest_height:
                self.logger.warning(
                    f"[{self.chain.id}] endpoint is behind: height "
                    f"{format_height(result.latest_height)} < {format_height(self.highest_height)}",
                    extra={"context": ctx},
                )
            self.highest_height = max(self.highest_height, result.latest_height)

            if result.catching_up:
                self.logger.info(
                    f"[{self.chain.id}] node is catching up, ignoring signing data",
                    extra={"context": ctx},
                )
            elif not result.validator_signing and verdict.current.status == SigningStatus.MISSED:
                self.logger.warning(
                    f"[{self.chain.id}] validator missed block {format_height(result.latest_height)} "
                    f"({verdict.current.consecutive_misses} consecutive)",
                    extra={"context": ctx},
                )
            else:
                self.logger.debug(
                    f"[{self.chain.id}] height {format_height(result.latest_height)} "
                    f"signing={result.validator_signing}",
                    extra={"context": ctx},
                )

        if verdict.transitioned:
            self.logger.info(
                f"[{self.chain.id}] signing state {verdict.previous} -> {verdict.current}",
                extra={"context": ctx},
            )

    def _event_details(self, result: PollResult, verdict: TrackerVerdict) -> dict:
        details = {
            "validator": self.chain.validator_addr,
            "state": str(verdict.current),
            "endpoint": redact_url(result.endpoint),
        }
        if isinstance(result, PollSuccess):
            details["height"] = result.latest_height
        else:
            details["cause"] = result.cause
        if verdict.current.status == SigningStatus.MISSED:
            details["consecutive_misses"] = verdict.current.consecutive_misses
        return details

    def snapshot(self) -> dict:
        """Current state of this poller."""
        return {
            "chain_id": self.chain.id,
            "cycles": self.cycles,
            "state": self.tracker.state.to_dict(),
            "highest_height": self.highest_height,
            "healthy_endpoints": self.pool.healthy_count(),
            "endpoints": self.pool.stats_summary(),
        }

    def log_status(self) -> None:
        """Periodic progress summary."""
        self.logger.info(
            f"[{self.chain.id}] status: {self.tracker.state} at height "
            f"{format_height(self.highest_height)} "
            f"({self.pool.healthy_count()}/{len(self.pool)} endpoints healthy)",
            extra={"context": {"cycles": self.cycles}},
        )
