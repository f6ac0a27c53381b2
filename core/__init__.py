"""
core - Core utilities and models for Observatory.

This package contains:
- models.py: Data models (PollResult variants, SigningState, AlertEvent)
- constants.py: Enums, defaults and alert reasons
- exceptions.py: Typed exceptions with error codes
- time.py: Clocks and backoff math
- format.py: Log formatting helpers
- logging.py: Structured JSON logging
"""

from core.constants import (
    AlertKind,
    ErrorCode,
    SigningSourceType,
    SigningStatus,
    SinkType,
)
from core.exceptions import (
    ConfigError,
    EndpointUnreachableError,
    MalformedResponseError,
    ObservatoryError,
    RPCError,
    SinkDispatchError,
)
from core.logging import get_logger, setup_logging
from core.models import (
    AlertDecision,
    AlertEvent,
    PollMalformed,
    PollResult,
    PollSuccess,
    PollUnreachable,
    SigningState,
    TrackerVerdict,
)

__all__ = [
    # Constants
    "AlertKind",
    "ErrorCode",
    "SigningSourceType",
    "SigningStatus",
    "SinkType",
    # Exceptions
    "ConfigError",
    "EndpointUnreachableError",
    "MalformedResponseError",
    "ObservatoryError",
    "RPCError",
    "SinkDispatchError",
    # Models
    "AlertDecision",
    "AlertEvent",
    "PollMalformed",
    "PollResult",
    "PollSuccess",
    "PollUnreachable",
    "SigningState",
    "TrackerVerdict",
    # Logging
    "get_logger",
    "setup_logging",
]
