# PATH: core/exceptions.py
"""
Typed exceptions for Observatory.

Failures from outside the process (RPC nodes, alert sinks) are classified
with an ErrorCode so callers can turn them into state instead of crashing.
"""

from typing import Optional

from core.constants import ErrorCode


class ObservatoryError(Exception):
    """Base exception for Observatory."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def __str__(self):
        return f"[{self.code.value}] {self.message}"


class RPCError(ObservatoryError):
    """Base class for failures talking to an RPC endpoint."""
    pass


class EndpointUnreachableError(RPCError):
    """Connection refused, DNS failure, timeout or gateway error."""

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        code: ErrorCode = ErrorCode.RPC_UNREACHABLE,
    ):
        super().__init__(message, code, details)


class MalformedResponseError(RPCError):
    """Node answered but the response cannot be interpreted."""

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        code: ErrorCode = ErrorCode.RPC_MALFORMED_RESPONSE,
    ):
        super().__init__(message, code, details)


class SinkDispatchError(ObservatoryError):
    """Alert sink rejected or could not receive an event."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, ErrorCode.SINK_DISPATCH_FAILED, details)


class ConfigError(ObservatoryError):
    """Configuration is missing or invalid. Fatal at startup."""

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        code: ErrorCode = ErrorCode.CONFIG_INVALID,
    ):
        super().__init__(message, code, details)
