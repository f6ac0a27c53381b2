"""
alerting/sinks.py - Alert sink backends.

A sink receives deduplicated alert events from the dispatcher:
- LogAlertSink: writes events to the structured log
- DatadogEventSink: posts to the Datadog events API; the notify handle
  in the text (e.g. @pagerduty) makes Datadog forward it to paging

Sinks raise SinkDispatchError on failure; the dispatcher retries.
"""

import socket
from typing import Optional, Protocol

import httpx

from config.settings import AlertingSettings, DatadogSettings
from core.constants import AlertKind, SinkType
from core.exceptions import ConfigError, SinkDispatchError
from core.logging import get_logger, log_alert
from core.models import AlertEvent

logger = get_logger(__name__)


class AlertSink(Protocol):
    """External alerting capability consumed by the dispatcher."""

    async def notify(self, event: AlertEvent) -> None:
        ...

    async def close(self) -> None:
        ...


class LogAlertSink:
    """Writes alert events to the log. No credentials needed."""

    def __init__(self):
        self.sent: int = 0

    async def notify(self, event: AlertEvent) -> None:
        log_alert(
            logger,
            chain_id=event.chain_id,
            kind=event.kind.value,
            reason=event.reason,
            occurred_at=event.occurred_at.isoformat(),
            **event.details,
        )
        self.sent += 1

    async def close(self) -> None:
        return None


class DatadogEventSink:
    """
    Datadog events API sink.

    Raised events are posted as errors, resolved events as successes,
    grouped by an aggregation key per (chain, reason).
    """

    def __init__(
        self,
        settings: DatadogSettings,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        hostname: Optional[str] = None,
    ):
        self.settings = settings
        self.timeout_seconds = timeout_seconds
        self.hostname = hostname or socket.gethostname()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds),
                transport=self._transport,
            )
        return self._client

    def build_payload(self, event: AlertEvent) -> dict:
        """Build the Datadog event body for an alert event."""
        raised = event.kind == AlertKind.RAISED
        tags = [f"{k}:{v}" for k, v in sorted(self.settings.tags.items())]
        tags.append(f"chain:{event.chain_id}")

        lines = [f"{self.settings.notify_handle} {event.title}"]
        for key, value in sorted(event.details.items()):
            lines.append(f"{key}: {value}")

        return {
            "title": event.title,
            "text": "\n".join(lines),
            "alert_type": "error" if raised else "success",
            "priority": "normal",
            "aggregation_key": f"observatory:{event.chain_id}:{event.reason}",
            "date_happened": int(event.occurred_at.timestamp()),
            "host": self.hostname,
            "source_type_name": "observatory",
            "tags": tags,
        }

    async def notify(self, event: AlertEvent) -> None:
        client = await self._get_client()

        try:
            resp = await client.post(
                self.settings.events_url,
                json=self.build_payload(event),
                headers={"DD-API-KEY": self.settings.api_key},
            )
        except httpx.HTTPError as e:
            raise SinkDispatchError(
                f"Datadog request failed: {type(e).__name__}: {e}",
                details={"chain_id": event.chain_id},
            ) from e

        if resp.status_code >= 300:
            raise SinkDispatchError(
                f"Datadog returned HTTP {resp.status_code}",
                details={"chain_id": event.chain_id, "body": resp.text[:200]},
            )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None


def build_sink(settings: AlertingSettings) -> AlertSink:
    """Create the configured alert sink."""
    if settings.sink == SinkType.LOG:
        return LogAlertSink()

    if settings.sink == SinkType.DATADOG:
        if settings.datadog is None or not settings.datadog.api_key:
            raise ConfigError("Datadog sink requires an API key")
        return DatadogEventSink(settings.datadog)

    raise ConfigError(f"Unsupported alert sink: {settings.sink}")
