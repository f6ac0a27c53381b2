"""
monitoring/tracker.py - Signing state machine for one chain.

Turns a stream of poll results into a SigningState and decides which
transitions are alert-worthy.

Transitions:
    UNKNOWN            --signing-->        SIGNING
    SIGNING            --miss-->           MISSED(1)
    MISSED(n)          --miss-->           MISSED(n+1)   raise at n == threshold
    MISSED(n)          --signing-->        SIGNING       resolve if raised
    any                --all unreachable-> ALL_ENDPOINTS_DOWN(since)   raise
    ALL_ENDPOINTS_DOWN --success-->        SIGNING | MISSED(0)         resolve
    ALL_ENDPOINTS_DOWN --catching up-->    UNKNOWN                     resolve

Malformed results never change state. A catching-up node proves an
endpoint is reachable, but its signing flag is never used.
Misses seen while UNKNOWN are not counted: state must be established first.
"""

from typing import Iterable, Sequence

from core.constants import (
    DEFAULT_MISS_THRESHOLD,
    REASON_ALL_ENDPOINTS_DOWN,
    AlertKind,
    SigningStatus,
    missed_blocks_reason,
)
from core.models import (
    AlertDecision,
    PollMalformed,
    PollResult,
    PollSuccess,
    PollUnreachable,
    SigningState,
    TrackerVerdict,
)
from core.time import WallClock, now_utc


class SigningStateTracker:
    """
    Signing state tracker for one (chain, validator).

    Mutated only by its own poller task; no locking.
    """

    def __init__(
        self,
        endpoint_urls: Sequence[str],
        miss_threshold: int = DEFAULT_MISS_THRESHOLD,
        clock: WallClock = now_utc,
        open_incidents: Iterable[str] = (),
    ):
        """
        Args:
            endpoint_urls: Every endpoint in the chain's pool
            miss_threshold: Consecutive misses before raising
            clock: Source of timestamps for ALL_ENDPOINTS_DOWN(since)
            open_incidents: Reasons still open from a previous tracker
                (after a restart); they are resolved once signing is
                re-established
        """
        if miss_threshold < 1:
            raise ValueError(f"miss_threshold must be >= 1, got {miss_threshold}")
        if not endpoint_urls:
            raise ValueError("Tracker requires at least one endpoint")

        self.miss_threshold = miss_threshold
        self.missed_reason = missed_blocks_reason(miss_threshold)
        self._endpoints = frozenset(endpoint_urls)
        self._clock = clock
        self._state = SigningState.unknown()
        self._unreachable: set[str] = set()

        carried = set(open_incidents)
        self._missed_open = self.missed_reason in carried
        self._down_open = REASON_ALL_ENDPOINTS_DOWN in carried

    @property
    def state(self) -> SigningState:
        return self._state

    @property
    def open_incidents(self) -> list[str]:
        """Reasons raised by this tracker and not yet resolved."""
        reasons = []
        if self._missed_open:
            reasons.append(self.missed_reason)
        if self._down_open:
            reasons.append(REASON_ALL_ENDPOINTS_DOWN)
        return reasons

    def observe(self, result: PollResult) -> TrackerVerdict:
        """
        Feed one poll result.

        Returns:
            TrackerVerdict with previous/current state and alert decisions
        """
        previous = self._state

        if isinstance(result, PollUnreachable):
            alerts = self._observe_unreachable(result)
        elif isinstance(result, PollMalformed):
            # Node is up; just not useful this cycle
            self._unreachable.clear()
            alerts = []
        elif isinstance(result, PollSuccess):
            self._unreachable.clear()
            if result.catching_up:
                alerts = self._observe_catching_up()
            else:
                alerts = self._observe_success(result)
        else:
            raise TypeError(f"Unexpected poll result: {result!r}")

        return TrackerVerdict(previous=previous, current=self._state, alerts=alerts)

    def _observe_unreachable(self, result: PollUnreachable) -> list[AlertDecision]:
        self._unreachable.add(result.endpoint)

        if self._state.status == SigningStatus.ALL_ENDPOINTS_DOWN:
            return []
        if not self._endpoints <= self._unreachable:
            return []

        self._state = SigningState.all_endpoints_down(since=self._clock())

        if self._down_open:
            return []
        self._down_open = True
        return [AlertDecision(AlertKind.RAISED, REASON_ALL_ENDPOINTS_DOWN)]

    def _observe_catching_up(self) -> list[AlertDecision]:
        if self._state.status == SigningStatus.ALL_ENDPOINTS_DOWN:
            self._state = SigningState.unknown()

        if not self._down_open:
            return []
        self._down_open = False
        return [AlertDecision(AlertKind.RESOLVED, REASON_ALL_ENDPOINTS_DOWN)]

    def _observe_success(self, result: PollSuccess) -> list[AlertDecision]:
        alerts: list[AlertDecision] = []
        status = self._state.status

        if self._down_open:
            self._down_open = False
            alerts.append(AlertDecision(AlertKind.RESOLVED, REASON_ALL_ENDPOINTS_DOWN))

        if result.validator_signing:
            self._state = SigningState.signing()
            if self._missed_open:
                self._missed_open = False
                alerts.append(AlertDecision(AlertKind.RESOLVED, self.missed_reason))
            return alerts

        if status == SigningStatus.UNKNOWN:
            return alerts

        if status == SigningStatus.ALL_ENDPOINTS_DOWN:
            self._state = SigningState.missed(0)
            return alerts

        misses = self._state.consecutive_misses + 1
        self._state = SigningState.missed(misses)

        if misses >= self.miss_threshold and not self._missed_open:
            self._missed_open = True
            alerts.append(AlertDecision(AlertKind.RAISED, self.missed_reason))

        return alerts
