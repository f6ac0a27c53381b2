# PATH: tests/conftest.py
"""
Pytest configuration and fixtures for Observatory tests.
"""

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from core.constants import AlertKind  # noqa: E402
from core.models import AlertEvent, PollMalformed, PollSuccess, PollUnreachable  # noqa: E402


VALIDATOR = "95E060D07713070FE9822F6C50BD76BCCBF9F17A"
OTHER_VALIDATOR = "D1CE9A9EF19196DA9BCEA8484791DC6BA28178B0"
FIXED_NOW = datetime(2026, 1, 4, 12, 0, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )


class ScriptedClient:
    """
    Stand-in for CometRPCClient that replays scripted outcomes.

    Each script entry is "sign", "miss", "catchup", "down" or "bad",
    applied to whichever endpoint the poller selected.
    """

    class _Source:
        name = "scripted"

    def __init__(self, script):
        self.script = list(script)
        self.queried: list[str] = []
        self.height = 1000
        self.signing_source = self._Source()
        self.closed = False

    async def query(self, endpoint, timeout=None):
        self.queried.append(endpoint.url)
        step = self.script.pop(0) if self.script else "sign"
        self.height += 1

        if step == "sign":
            return PollSuccess(endpoint.url, self.height, validator_signing=True)
        if step == "miss":
            return PollSuccess(endpoint.url, self.height, validator_signing=False)
        if step == "catchup":
            return PollSuccess(endpoint.url, self.height, validator_signing=False, catching_up=True)
        if step == "down":
            return PollUnreachable(endpoint.url, "connection refused")
        if step == "bad":
            return PollMalformed(endpoint.url, "unexpected schema")
        raise ValueError(f"Unknown script step: {step}")

    async def close(self):
        self.closed = True


class RecordingSink:
    """Alert sink that records every event it receives."""

    def __init__(self, failures: int = 0):
        self.events: list[AlertEvent] = []
        self.failures = failures
        self.calls = 0
        self.closed = False

    async def notify(self, event):
        from core.exceptions import SinkDispatchError

        self.calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise SinkDispatchError("sink unavailable")
        self.events.append(event)

    async def close(self):
        self.closed = True


@pytest.fixture
def validator_addr():
    return VALIDATOR


@pytest.fixture
def scripted_client():
    return ScriptedClient


@pytest.fixture
def recording_sink():
    return RecordingSink()


@pytest.fixture
def make_event():
    """Factory for AlertEvent."""
    def _make(chain_id="cosmoshub-4", kind=AlertKind.RAISED, reason="validator missed 3 consecutive blocks"):
        return AlertEvent(chain_id=chain_id, kind=kind, reason=reason, occurred_at=FIXED_NOW)
    return _make
