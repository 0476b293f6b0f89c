"""Best-effort audit side channel for lifecycle notifications."""

from __future__ import annotations

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class AuditSink(Protocol):
    """Receiver of lifecycle notifications (event bus, UI stream, metrics)."""

    def publish(self, event: str, payload: dict[str, Any]) -> None:
        """Deliver one notification; may raise."""


class LoggingAuditSink:
    """Writes notifications to the application log."""

    def publish(self, event: str, payload: dict[str, Any]) -> None:
        logger.info("Audit %s: %s", event, payload)


class BestEffortAudit:
    """Fans out to sinks and never lets a sink failure reach the caller."""

    def __init__(self, sinks: list[AuditSink] | None = None) -> None:
        self.sinks: list[AuditSink] = list(sinks) if sinks is not None else []

    def publish(self, event: str, payload: dict[str, Any]) -> bool:
        """Return ``True`` only when every sink accepted the notification."""

        delivered = True
        for sink in self.sinks:
            try:
                sink.publish(event, payload)
            except Exception:  # noqa: BLE001
                logger.exception("Audit sink %s failed for %s", type(sink).__name__, event)
                delivered = False
        return delivered
