"""Telemetry sinks for command outcome events."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol

import logfire
import structlog

logger = structlog.get_logger(__name__)


class TelemetrySink(Protocol):
    def record(self, event_name: str, properties: Mapping[str, str], measurements: Mapping[str, float]) -> None: ...


class NullTelemetrySink:
    """Sink used when telemetry is disabled in the configuration."""

    def record(self, event_name: str, properties: Mapping[str, str], measurements: Mapping[str, float]) -> None:
        return None


class LogfireTelemetrySink:
    """Sends one logfire event per command invocation."""

    def record(self, event_name: str, properties: Mapping[str, str], measurements: Mapping[str, float]) -> None:
        logfire.info(
            "telemetry {event_name}",
            event_name=event_name,
            properties=dict(properties),
            measurements=dict(measurements),
        )


def emit(sink: TelemetrySink, event_name: str, properties: Mapping[str, str], measurements: Mapping[str, float]) -> None:
    """Fire-and-forget delivery; a failing sink never fails the invocation."""
    try:
        sink.record(event_name, properties, measurements)
    except Exception as exc:
        logger.warning("telemetry-send-failed", event=event_name, error=str(exc))
        return
    logger.debug("telemetry-sent", telemetry_event=event_name, **properties)


__all__ = ["LogfireTelemetrySink", "NullTelemetrySink", "TelemetrySink", "emit"]
