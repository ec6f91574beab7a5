from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from mca_connectors.linear import LinearClient
from mca_engine.models import HealthSnapshot
from mca_engine.store import SnapshotStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Alert:
    overall: str
    failed: list[str]
    snapshot: HealthSnapshot

    @property
    def summary(self) -> str:
        failed = ", ".join(self.failed) or "none"
        return f"Connector health {self.overall}; failed connectors: {failed}"


@runtime_checkable
class AlertSink(Protocol):
    async def send(self, alert: Alert) -> None:
        ...


class LoggingAlertSink:
    async def send(self, alert: Alert) -> None:
        logger.warning("ALERT: %s", alert.summary)


class LinearIssueAlertSink:
    """Files a Linear issue in the calibrated default team for every failed-connector alert."""

    def __init__(self, client: LinearClient, store: SnapshotStore) -> None:
        self.client = client
        self.store = store

    async def send(self, alert: Alert) -> None:
        if not alert.failed:
            return
        snapshot = await self.store.load()
        status = snapshot.authenticated("linear") if snapshot else None
        team_id = (status.team or {}).get("id") if status else None
        if not team_id:
            logger.warning("No calibrated Linear team; cannot file alert issue")
            return

        lines = [f"Health check at {alert.snapshot.timestamp} reported `{alert.overall}`.", ""]
        for name in alert.failed:
            health = alert.snapshot.connectors[name]
            lines.append(f"- **{name}**: {health.error or 'failed'} ({health.latency_ms} ms)")

        issue = await self.client.create_issue(
            team_id,
            f"Connector health degraded: {', '.join(alert.failed)}",
            "\n".join(lines),
        )
        logger.info("Filed Linear issue %s for connector alert", issue.get("identifier") or issue.get("id"))
