"""
alerting/ - Alert delivery.

Modules:
- dispatcher: Deduplicating dispatcher shared by all chains
- sinks: Alert sink backends (log, Datadog events API)
"""

from alerting.dispatcher import AlertDispatcher
from alerting.sinks import AlertSink, DatadogEventSink, LogAlertSink, build_sink

__all__ = [
    "AlertDispatcher",
    "AlertSink",
    "DatadogEventSink",
    "LogAlertSink",
    "build_sink",
]
