# PATH: core/models.py
"""
Core data models for Observatory.

POLL RESULT CONTRACT
====================
Every RPC attempt produces exactly one of:
  - PollSuccess: node answered; carries height, signing flag, catching_up
  - PollUnreachable: connection/timeout/gateway failure
  - PollMalformed: node answered but the response cannot be interpreted

Poll results are ephemeral: produced and consumed within one poll cycle.

SIGNING STATE CONTRACT
======================
  UNKNOWN -> SIGNING -> MISSED(n) -> SIGNING
  any -> ALL_ENDPOINTS_DOWN(since) -> SIGNING | MISSED(0) | UNKNOWN (catching up)

consecutive_misses is 0 for every status except MISSED.
since is set only for ALL_ENDPOINTS_DOWN.
====================
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from core.constants import AlertKind, SigningStatus


# =============================================================================
# POLL RESULTS
# =============================================================================

@dataclass(frozen=True)
class PollSuccess:
    """Node answered and the validator signing state could be determined."""
    endpoint: str
    latest_height: int
    validator_signing: bool
    catching_up: bool = False
    latency_ms: int = 0

    @property
    def reachable(self) -> bool:
        return True


@dataclass(frozen=True)
class PollUnreachable:
    """Node could not be reached (refused, DNS, timeout, 5xx)."""
    endpoint: str
    cause: str

    @property
    def reachable(self) -> bool:
        return False


@dataclass(frozen=True)
class PollMalformed:
    """Node answered but the response could not be interpreted."""
    endpoint: str
    cause: str

    @property
    def reachable(self) -> bool:
        return True


PollResult = Union[PollSuccess, PollUnreachable, PollMalformed]


# =============================================================================
# SIGNING STATE
# =============================================================================

@dataclass(frozen=True)
class SigningState:
    """Current signing state of one chain's validator."""
    status: SigningStatus = SigningStatus.UNKNOWN
    consecutive_misses: int = 0
    since: Optional[datetime] = None

    @classmethod
    def unknown(cls) -> "SigningState":
        return cls(SigningStatus.UNKNOWN)

    @classmethod
    def signing(cls) -> "SigningState":
        return cls(SigningStatus.SIGNING)

    @classmethod
    def missed(cls, consecutive_misses: int) -> "SigningState":
        if consecutive_misses < 0:
            raise ValueError(f"consecutive_misses must be >= 0, got {consecutive_misses}")
        return cls(SigningStatus.MISSED, consecutive_misses=consecutive_misses)

    @classmethod
    def all_endpoints_down(cls, since: datetime) -> "SigningState":
        return cls(SigningStatus.ALL_ENDPOINTS_DOWN, since=since)

    def __str__(self) -> str:
        if self.status == SigningStatus.MISSED:
            return f"MISSED({self.consecutive_misses})"
        if self.status == SigningStatus.ALL_ENDPOINTS_DOWN and self.since:
            return f"ALL_ENDPOINTS_DOWN(since={self.since.isoformat()})"
        return self.status.value

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "consecutive_misses": self.consecutive_misses,
            "since": self.since.isoformat() if self.since else None,
        }


# =============================================================================
# ALERTS
# =============================================================================

@dataclass(frozen=True)
class AlertDecision:
    """An alert-worthy transition decided by the tracker."""
    kind: AlertKind
    reason: str


@dataclass(frozen=True)
class TrackerVerdict:
    """Outcome of feeding one poll result to the tracker."""
    previous: SigningState
    current: SigningState
    alerts: List[AlertDecision] = field(default_factory=list)

    @property
    def transitioned(self) -> bool:
        return self.previous != self.current

    @property
    def alert_worthy(self) -> bool:
        return bool(self.alerts)


@dataclass(frozen=True)
class AlertEvent:
    """Alert or resolve event handed to the dispatcher."""
    chain_id: str
    kind: AlertKind
    reason: str
    occurred_at: datetime
    details: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def incident_key(self) -> tuple[str, str]:
        """Incidents are identified by chain and reason."""
        return (self.chain_id, self.reason)

    @property
    def title(self) -> str:
        prefix = "RESOLVED" if self.kind == AlertKind.RESOLVED else "ALERT"
        return f"[{prefix}] {self.chain_id}: {self.reason}"

    def to_dict(self) -> dict:
        return {
            "chain_id": self.chain_id,
            "kind": self.kind.value,
            "reason": self.reason,
            "occurred_at": self.occurred_at.isoformat(),
            "details": dict(self.details),
        }
