"""
config/settings.py - Observatory configuration models.

Global monitor settings with per-chain overrides, in the same shape as
the YAML file (see config/observatory.yaml).
"""

from dataclasses import dataclass, field, replace
from typing import Any, Optional

from core.constants import (
    DEFAULT_BACKOFF_BASE_SECONDS,
    DEFAULT_BACKOFF_EXPONENT_CAP,
    DEFAULT_BACKOFF_MAX_SECONDS,
    DEFAULT_DISPATCH_BASE_DELAY_SECONDS,
    DEFAULT_DISPATCH_MAX_ATTEMPTS,
    DEFAULT_DISPATCH_MAX_DELAY_SECONDS,
    DEFAULT_MISS_THRESHOLD,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_QUERY_TIMEOUT_SECONDS,
    DEFAULT_RESTART_DELAY_SECONDS,
    DEFAULT_SHUTDOWN_GRACE_SECONDS,
    DEFAULT_STATUS_LOG_EVERY,
    SigningSourceType,
    SinkType,
)


@dataclass(frozen=True)
class BackoffSettings:
    """Endpoint backoff configuration."""
    base_seconds: float = DEFAULT_BACKOFF_BASE_SECONDS
    exponent_cap: int = DEFAULT_BACKOFF_EXPONENT_CAP
    max_seconds: float = DEFAULT_BACKOFF_MAX_SECONDS


@dataclass(frozen=True)
class MonitorSettings:
    """Polling configuration shared by every chain unless overridden."""
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    query_timeout_seconds: float = DEFAULT_QUERY_TIMEOUT_SECONDS
    miss_threshold: int = DEFAULT_MISS_THRESHOLD
    signing_source: SigningSourceType = SigningSourceType.AUTO
    restart_delay_seconds: float = DEFAULT_RESTART_DELAY_SECONDS
    shutdown_grace_seconds: float = DEFAULT_SHUTDOWN_GRACE_SECONDS
    status_log_every: int = DEFAULT_STATUS_LOG_EVERY
    backoff: BackoffSettings = field(default_factory=BackoffSettings)


@dataclass(frozen=True)
class DatadogSettings:
    """Datadog events API credentials and routing."""
    api_key: str
    site: str = "datadoghq.com"
    notify_handle: str = "@pagerduty"
    tags: dict[str, str] = field(default_factory=dict)

    @property
    def events_url(self) -> str:
        return f"https://api.{self.site}/api/v1/events"


@dataclass(frozen=True)
class AlertingSettings:
    """Alert sink selection and delivery retries."""
    sink: SinkType = SinkType.LOG
    max_attempts: int = DEFAULT_DISPATCH_MAX_ATTEMPTS
    base_delay_seconds: float = DEFAULT_DISPATCH_BASE_DELAY_SECONDS
    max_delay_seconds: float = DEFAULT_DISPATCH_MAX_DELAY_SECONDS
    datadog: Optional[DatadogSettings] = None


@dataclass(frozen=True)
class LoggingSettings:
    """Logging setup passed to core.logging.setup_logging."""
    level: str = "INFO"
    json: bool = True
    file: Optional[str] = None


@dataclass(frozen=True)
class ChainConfig:
    """One monitored chain. Immutable after load."""
    id: str
    validator_addr: str
    rpc_urls: tuple[str, ...]
    overrides: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True)
class ObservatoryConfig:
    """Top-level configuration."""
    chains: tuple[ChainConfig, ...]
    monitor: MonitorSettings = field(default_factory=MonitorSettings)
    alerting: AlertingSettings = field(default_factory=AlertingSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    def settings_for(self, chain: ChainConfig) -> MonitorSettings:
        """Get monitor settings for a specific chain (with overrides applied)."""
        if not chain.overrides:
            return self.monitor
        return replace(self.monitor, **chain.overrides)

    @property
    def chain_ids(self) -> list[str]:
        return [chain.id for chain in self.chains]
