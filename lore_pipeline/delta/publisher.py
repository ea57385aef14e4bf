"""Admin alert publishers for moderation-required deltas."""

import logging
from typing import List, Protocol

logger = logging.getLogger(__name__)


class AlertPublisher(Protocol):
    def publish_alert(self, payload: dict) -> None: ...


class LoggingAlertPublisher:
    """Fallback publisher used when no alert bus is wired in."""

    def publish_alert(self, payload: dict) -> None:
        logger.warning(
            "admin.alert synthetic dispatch reason=%s entity=%s",
            payload.get("reason"),
            payload.get("data", {}).get("entity_id"),
        )


class BufferedAlertPublisher:
    """Collects alerts in memory, e.g. for an offline QA report."""

    def __init__(self):
        self.alerts: List[dict] = []

    def publish_alert(self, payload: dict) -> None:
        self.alerts.append(payload)
