from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping, Optional

from mca_config.settings import AwarenessConfig, load_config
from mca_connectors.base import ConnectorClient
from mca_connectors.linear import LinearClient
from mca_connectors.registry import build_clients
from mca_engine.alerts import AlertSink, LinearIssueAlertSink, LoggingAlertSink
from mca_engine.calibrator import Calibrator
from mca_engine.enforcer import EnforcementPipeline
from mca_engine.health import HealthMonitor
from mca_engine.lookup import ConnectorLookup
from mca_engine.scheduler import PeriodicSchedule
from mca_engine.store import SnapshotStore

logger = logging.getLogger(__name__)


@dataclass
class Engine:
    config: AwarenessConfig
    clients: dict[str, ConnectorClient]
    store: SnapshotStore
    calibrator: Calibrator
    enforcer: EnforcementPipeline
    monitor: HealthMonitor
    verifier: PeriodicSchedule

    async def ensure_calibrated(self) -> bool:
        """Calibrate when configured to on start, or when the stored snapshot is stale. Returns True if it ran."""
        cal = self.config.calibration
        if cal.auto_run_on_start or await self.store.needs_refresh(cal.cache_ttl_hours):
            await self.calibrator.calibrate()
            return True
        return False


def _alert_sinks(config: AwarenessConfig, clients: Mapping[str, ConnectorClient], store: SnapshotStore) -> list[AlertSink]:
    sinks: list[AlertSink] = []
    if config.health.alert_on_failure:
        sinks.append(LoggingAlertSink())
    linear = clients.get("linear")
    if config.health.create_linear_issues and isinstance(linear, LinearClient):
        sinks.append(LinearIssueAlertSink(linear, store))
    return sinks


def build_engine(
    config: Optional[AwarenessConfig] = None,
    *,
    clients: Optional[Mapping[str, ConnectorClient]] = None,
    store: Optional[SnapshotStore] = None,
) -> Engine:
    """
    Wire every component from process configuration.
    Credentials are checked here, before any probe can run.
    """
    config = config or load_config()
    clients = dict(clients) if clients is not None else build_clients(config)
    store = store or SnapshotStore.from_config(config)

    calibrator = Calibrator(clients, store, probe_timeout=config.calibration.probe_timeout_seconds)
    enforcer = EnforcementPipeline(
        store,
        lookup=ConnectorLookup(clients),
        config=config.enforcement,
        clients=clients,
    )
    monitor = HealthMonitor(
        calibrator,
        store,
        interval_minutes=config.health.check_interval_minutes,
        latency_warning_ms=config.health.latency_warning_ms,
        alert_sinks=_alert_sinks(config, clients, store),
    )
    verifier = PeriodicSchedule(
        config.calibration.verify_interval_hours * 3600.0,
        calibrator.verify,
        name="calibration-verify",
    )
    logger.debug("Engine built for connectors: %s", ", ".join(clients))
    return Engine(config, clients, store, calibrator, enforcer, monitor, verifier)
