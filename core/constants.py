# PATH: core/constants.py
"""
Constants for Observatory.

Contains enums, defaults, and alert reason helpers shared by the
poller, tracker and dispatcher.
"""

from enum import Enum
from typing import Final


# =============================================================================
# POLLING DEFAULTS
# =============================================================================

DEFAULT_POLL_INTERVAL_SECONDS: Final[float] = 6.0
DEFAULT_QUERY_TIMEOUT_SECONDS: Final[float] = 3.0
DEFAULT_MISS_THRESHOLD: Final[int] = 3
DEFAULT_RESTART_DELAY_SECONDS: Final[float] = 5.0
DEFAULT_SHUTDOWN_GRACE_SECONDS: Final[float] = 2.0
DEFAULT_STATUS_LOG_EVERY: Final[int] = 50

# Endpoint backoff: base * 2^min(failures, cap), capped at max
DEFAULT_BACKOFF_BASE_SECONDS: Final[float] = 5.0
DEFAULT_BACKOFF_EXPONENT_CAP: Final[int] = 6
DEFAULT_BACKOFF_MAX_SECONDS: Final[float] = 300.0

# Alert delivery retries
DEFAULT_DISPATCH_MAX_ATTEMPTS: Final[int] = 5
DEFAULT_DISPATCH_BASE_DELAY_SECONDS: Final[float] = 1.0
DEFAULT_DISPATCH_MAX_DELAY_SECONDS: Final[float] = 30.0

# CometBFT caps per_page at 100
VALIDATORS_PER_PAGE: Final[int] = 100

# Validator consensus addresses are 20 bytes, hex encoded
VALIDATOR_ADDRESS_HEX_LENGTH: Final[int] = 40

# block_id_flag values in a CometBFT commit
BLOCK_ID_FLAG_ABSENT: Final[int] = 1
BLOCK_ID_FLAG_COMMIT: Final[int] = 2
BLOCK_ID_FLAG_NIL: Final[int] = 3


class SigningStatus(str, Enum):
    """Signing state machine statuses."""
    UNKNOWN = "UNKNOWN"
    SIGNING = "SIGNING"
    MISSED = "MISSED"
    ALL_ENDPOINTS_DOWN = "ALL_ENDPOINTS_DOWN"


class AlertKind(str, Enum):
    """Alert event kinds."""
    RAISED = "RAISED"
    RESOLVED = "RESOLVED"


class SigningSourceType(str, Enum):
    """How an endpoint decides whether the validator is signing."""
    AUTO = "auto"
    COMMIT = "commit"
    VALIDATOR_SET = "validator_set"


class SinkType(str, Enum):
    """Supported alert sinks."""
    LOG = "log"
    DATADOG = "datadog"


class ErrorCode(str, Enum):
    """
    Error codes carried by ObservatoryError.

    RPC_* codes are absorbed by the poller and turned into state.
    SINK_* codes are absorbed by the dispatcher.
    CONFIG_* codes are fatal at startup.
    """
    RPC_UNREACHABLE = "RPC_UNREACHABLE"
    RPC_TIMEOUT = "RPC_TIMEOUT"
    RPC_MALFORMED_RESPONSE = "RPC_MALFORMED_RESPONSE"
    RPC_CHAIN_MISMATCH = "RPC_CHAIN_MISMATCH"

    SINK_DISPATCH_FAILED = "SINK_DISPATCH_FAILED"

    CONFIG_INVALID = "CONFIG_INVALID"
    CONFIG_NOT_FOUND = "CONFIG_NOT_FOUND"

    UNKNOWN = "UNKNOWN"


# =============================================================================
# ALERT REASONS
# =============================================================================

REASON_ALL_ENDPOINTS_DOWN: Final[str] = "all RPC endpoints unreachable"


def missed_blocks_reason(threshold: int) -> str:
    """
    Reason string for the missed-blocks incident.

    Keyed on the threshold, not the running count, so raise and resolve
    share the same dedup key.
    """
    return f"validator missed {threshold} consecutive blocks"
