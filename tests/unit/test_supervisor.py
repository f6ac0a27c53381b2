# PATH: tests/unit/test_supervisor.py
"""
Unit tests for ChainSupervisor: per-chain tasks, crash restart, shutdown.
"""

import asyncio

import pytest

from alerting.dispatcher import AlertDispatcher
from config.settings import ChainConfig, MonitorSettings, ObservatoryConfig
from core.constants import AlertKind, SigningStatus
from monitoring.supervisor import ChainSupervisor

from conftest import OTHER_VALIDATOR, VALIDATOR, RecordingSink, ScriptedClient


def make_config(interval=0.01, restart_delay=0.0, chains=None):
    chains = chains or (
        ChainConfig(id="cosmoshub-4", validator_addr=VALIDATOR, rpc_urls=("https://rpc-a.example.com",)),
        ChainConfig(id="agoric-3", validator_addr=OTHER_VALIDATOR, rpc_urls=("https://rpc-b.example.com",)),
    )
    monitor = MonitorSettings(
        poll_interval_seconds=interval,
        query_timeout_seconds=0.5,
        restart_delay_seconds=restart_delay,
        shutdown_grace_seconds=0.5,
        status_log_every=0,
    )
    return ObservatoryConfig(chains=tuple(chains), monitor=monitor)


class CrashingClient(ScriptedClient):
    """Raises a bug-style exception on selected cycles."""

    def __init__(self, script, crash_on=(1,)):
        super().__init__(script)
        self.crash_on = set(crash_on)
        self.calls = 0

    async def query(self, endpoint, timeout=None):
        self.calls += 1
        if self.calls in self.crash_on:
            raise RuntimeError("unexpected bug")
        return await super().query(endpoint, timeout)


async def wait_until(predicate, timeout=2.0):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.005)
    await asyncio.wait_for(poll(), timeout=timeout)


class TestSupervisor:

    @pytest.mark.asyncio
    async def test_one_poller_per_chain(self):
        clients = {}

        def factory(chain, settings):
            clients[chain.id] = ScriptedClient(["sign"] * 1000)
            return clients[chain.id]

        supervisor = ChainSupervisor(make_config(), AlertDispatcher(RecordingSink()), factory)
        supervisor.start()

        await wait_until(lambda: all(c.queried for c in clients.values()) and len(clients) == 2)
        await supervisor.shutdown()

        assert set(clients) == {"cosmoshub-4", "agoric-3"}
        assert all(c.closed for c in clients.values())
        assert supervisor.poller("cosmoshub-4").tracker.state.status == SigningStatus.SIGNING

    @pytest.mark.asyncio
    async def test_crash_restarts_with_fresh_tracker(self):
        chain = ChainConfig(id="noble-1", validator_addr=VALIDATOR, rpc_urls=("https://rpc.example.com",))
        client = CrashingClient(["sign", "miss"] + ["sign"] * 1000, crash_on=(3,))

        supervisor = ChainSupervisor(
            make_config(chains=[chain]), AlertDispatcher(RecordingSink()), lambda c, s: client
        )
        supervisor.start()

        await wait_until(lambda: supervisor.restarts["noble-1"] == 1 and client.calls >= 5)
        await supervisor.shutdown()

        assert supervisor.restarts["noble-1"] == 1
        # Restarted poller starts a new cycle count
        assert supervisor.poller("noble-1").cycles < client.calls

    @pytest.mark.asyncio
    async def test_crash_in_one_chain_does_not_affect_others(self):
        healthy = ScriptedClient(["sign"] * 1000)
        crashing = CrashingClient(["sign"] * 1000, crash_on=range(1, 1000))

        def factory(chain, settings):
            return crashing if chain.id == "agoric-3" else healthy

        supervisor = ChainSupervisor(make_config(), AlertDispatcher(RecordingSink()), factory)
        supervisor.start()

        await wait_until(lambda: len(healthy.queried) >= 5 and supervisor.restarts["agoric-3"] >= 2)
        await supervisor.shutdown()

        assert supervisor.restarts["cosmoshub-4"] == 0

    @pytest.mark.asyncio
    async def test_restart_resolves_incident_raised_before_crash(self):
        """Fresh tracker still resolves the incident the old one raised."""
        chain = ChainConfig(id="stride-1", validator_addr=VALIDATOR, rpc_urls=("https://rpc.example.com",))
        client = CrashingClient(["sign", "miss", "miss", "miss"] + ["sign"] * 1000, crash_on=(5,))
        sink = RecordingSink()

        supervisor = ChainSupervisor(make_config(chains=[chain]), AlertDispatcher(sink), lambda c, s: client)
        supervisor.start()

        await wait_until(lambda: len(sink.events) >= 2)
        await supervisor.shutdown()

        assert [e.kind for e in sink.events] == [AlertKind.RAISED, AlertKind.RESOLVED]
        assert supervisor.dispatcher.open_incidents() == []

    @pytest.mark.asyncio
    async def test_run_returns_after_shutdown_request(self):
        supervisor = ChainSupervisor(
            make_config(interval=60.0),
            AlertDispatcher(RecordingSink()),
            lambda c, s: ScriptedClient([]),
        )

        async def request_soon():
            await asyncio.sleep(0.05)
            supervisor.request_shutdown()

        await asyncio.wait_for(asyncio.gather(supervisor.run(), request_soon()), timeout=3.0)

        assert supervisor.stopping
        snap = supervisor.snapshot()
        assert set(snap["chains"]) == {"cosmoshub-4", "agoric-3"}
        assert snap["chains"]["cosmoshub-4"]["cycles"] == 1

    @pytest.mark.asyncio
    async def test_shutdown_cancels_stuck_poller(self):
        class StuckClient(ScriptedClient):
            async def query(self, endpoint, timeout=None):
                await asyncio.sleep(3600)

        chain = ChainConfig(id="neutron-1", validator_addr=VALIDATOR, rpc_urls=("https://rpc.example.com",))
        config = make_config(chains=[chain])
        supervisor = ChainSupervisor(config, AlertDispatcher(RecordingSink()), lambda c, s: StuckClient([]))
        supervisor.start()
        await asyncio.sleep(0.01)

        # the poller drops its hung query as soon as stop is set
        await asyncio.wait_for(supervisor.shutdown(), timeout=3.0)
        assert supervisor.restarts["neutron-1"] == 0

    def test_default_client_factory_uses_settings(self):
        from chains.providers import CometRPCClient
        from chains.signing import ValidatorSetSource
        from core.constants import SigningSourceType
        from monitoring.supervisor import default_client_factory

        chain = ChainConfig(id="osmosis-1", validator_addr=VALIDATOR, rpc_urls=("https://rpc.example.com",))
        settings = MonitorSettings(query_timeout_seconds=2.0, signing_source=SigningSourceType.VALIDATOR_SET)
        client = default_client_factory(chain, settings)

        assert isinstance(client, CometRPCClient)
        assert client.chain_id == "osmosis-1"
        assert client.timeout_seconds == 2.0
        assert isinstance(client.signing_source, ValidatorSetSource)
