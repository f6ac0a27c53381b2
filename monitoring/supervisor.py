"""
monitoring/supervisor.py - Runs and supervises one poller per chain.

- One asyncio task per configured chain, no shared state between them
- A poller that dies from an unexpected exception is restarted with a
  fresh tracker (state UNKNOWN); endpoint health is kept
- Shutdown is cooperative: the stop event is observed by every poller,
  in-flight queries finish or hit their timeout, then stragglers are
  cancelled and the dispatcher is drained
"""

import asyncio
from collections import Counter
from typing import Callable, Optional

from alerting.dispatcher import AlertDispatcher
from chains.endpoints import EndpointPool
from chains.providers import CometRPCClient
from chains.signing import build_signing_source
from config.settings import ChainConfig, MonitorSettings, ObservatoryConfig
from core.logging import get_logger
from monitoring.poller import ChainPoller
from monitoring.tracker import SigningStateTracker

logger = get_logger(__name__)

ClientFactory = Callable[[ChainConfig, MonitorSettings], CometRPCClient]


def default_client_factory(chain: ChainConfig, settings: MonitorSettings) -> CometRPCClient:
    """Create the RPC client for a chain."""
    return CometRPCClient(
        chain_id=chain.id,
        validator_addr=chain.validator_addr,
        signing_source=build_signing_source(settings.signing_source),
        timeout_seconds=settings.query_timeout_seconds,
    )


class ChainSupervisor:
    """
    Scheduler and supervisor for all chain pollers.

    Usage:
        supervisor = ChainSupervisor(config, dispatcher)
        await supervisor.run()          # until request_shutdown()
    """

    def __init__(
        self,
        config: ObservatoryConfig,
        dispatcher: AlertDispatcher,
        client_factory: ClientFactory = default_client_factory,
    ):
        self.config = config
        self.dispatcher = dispatcher
        self._client_factory = client_factory

        self._stop = asyncio.Event()
        self._tasks: dict[str, asyncio.Task] = {}
        self._pollers: dict[str, ChainPoller] = {}
        self._pools: dict[str, EndpointPool] = {}
        self._clients: dict[str, CometRPCClient] = {}
        self.restarts: Counter = Counter()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def request_shutdown(self) -> None:
        """Ask every poller to stop after its current cycle."""
        if not self._stop.is_set():
            logger.info("Shutdown requested")
            self._stop.set()

    def build_poller(self, chain: ChainConfig) -> ChainPoller:
        """
        Create a poller with a fresh tracker.

        The pool and RPC client are reused across restarts; incidents
        still open in the dispatcher are handed to the new tracker.
        """
        settings = self.config.settings_for(chain)
        backoff = settings.backoff

        pool = self._pools.get(chain.id)
        if pool is None:
            pool = EndpointPool(
                chain.rpc_urls,
                base_delay=backoff.base_seconds,
                exponent_cap=backoff.exponent_cap,
                max_delay=backoff.max_seconds,
            )
            self._pools[chain.id] = pool

        client = self._clients.get(chain.id)
        if client is None:
            client = self._client_factory(chain, settings)
            self._clients[chain.id] = client

        tracker = SigningStateTracker(
            endpoint_urls=pool.urls,
            miss_threshold=settings.miss_threshold,
            open_incidents=self.dispatcher.open_incidents(chain.id),
        )

        poller = ChainPoller(
            chain=chain,
            settings=settings,
            pool=pool,
            client=client,
            tracker=tracker,
            dispatcher=self.dispatcher,
        )
        self._pollers[chain.id] = poller
        return poller

    async def supervise(self, chain: ChainConfig) -> None:
        """Run a chain's poller, restarting it after unexpected faults."""
        settings = self.config.settings_for(chain)

        while not self._stop.is_set():
            poller = self.build_poller(chain)
            try:
                await poller.run(self._stop)
                return
            except asyncio.CancelledError:
                raise
            except Exception:
                self.restarts[chain.id] += 1
                logger.exception(
                    f"[{chain.id}] poller crashed, restarting in {settings.restart_delay_seconds}s",
                    extra={"context": {
                        "chain_id": chain.id,
                        "restarts": self.restarts[chain.id],
                    }},
                )

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=settings.restart_delay_seconds)
            except asyncio.TimeoutError:
                pass

    def start(self) -> None:
        """Start the dispatcher worker and one task per chain."""
        self.dispatcher.start()

        for chain in self.config.chains:
            if chain.id in self._tasks:
                continue
            self._tasks[chain.id] = asyncio.create_task(
                self.supervise(chain), name=f"poller:{chain.id}"
            )

        logger.info(
            f"Started {len(self._tasks)} chain pollers",
            extra={"context": {"chains": self.config.chain_ids}},
        )

    async def run(self) -> None:
        """Start everything and block until shutdown completes."""
        self.start()
        await self._stop.wait()
        await self.shutdown()

    async def shutdown(self) -> None:
        """
        Stop pollers, drain alerts, close clients.

        Waits at most one query timeout plus the grace period for
        in-flight cycles before cancelling.
        """
        self.request_shutdown()

        tasks = list(self._tasks.values())
        if tasks:
            deadline = max(
                self.config.settings_for(c).query_timeout_seconds for c in self.config.chains
            ) + self.config.monitor.shutdown_grace_seconds

            done, pending = await asyncio.wait(tasks, timeout=deadline)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning(
                    f"Cancelled {len(pending)} pollers that did not stop in {deadline:.1f}s"
                )
                await asyncio.gather(*pending, return_exceptions=True)

            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    logger.error(
                        f"Poller task {task.get_name()} ended with error: {task.exception()!r}"
                    )

        self._tasks.clear()

        await self.dispatcher.stop()

        for client in self._clients.values():
            await client.close()
        self._clients.clear()

        logger.info("Observatory stopped", extra={"context": self.snapshot()})

    def snapshot(self) -> dict:
        """Per-chain state, restart counts and endpoint stats."""
        return {
            "chains": {
                chain_id: {**poller.snapshot(), "restarts": self.restarts[chain_id]}
                for chain_id, poller in self._pollers.items()
            },
            "open_incidents": self.dispatcher.open_incidents(),
            "alerts": dict(self.dispatcher.stats),
        }

    def poller(self, chain_id: str) -> Optional[ChainPoller]:
        return self._pollers.get(chain_id)
