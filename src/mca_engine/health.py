from __future__ import annotations

import asyncio
import datetime as _dt
import logging
from typing import Callable, Iterable, Optional

from mca_common.context import correlation
from mca_common.telemetry import log_event
from mca_engine.alerts import Alert, AlertSink, LoggingAlertSink
from mca_engine.calibrator import Calibrator, LivenessResult
from mca_engine.models import ConnectorHealth, HealthSnapshot, iso, utc_now
from mca_engine.scheduler import PeriodicSchedule, Sleep
from mca_engine.store import SnapshotStore

logger = logging.getLogger(__name__)


class HealthMonitor:
    """
    idle <-> monitoring. Each cycle pings every connector, aggregates a
    HealthSnapshot, alerts when not healthy and persists the snapshot.
    Alerts are delivered in the background; a failing sink never fails a cycle.
    """

    def __init__(
        self,
        calibrator: Calibrator,
        store: SnapshotStore,
        *,
        interval_minutes: float = 30,
        latency_warning_ms: int = 5000,
        alert_sinks: Optional[Iterable[AlertSink]] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], _dt.datetime] = utc_now,
    ) -> None:
        self.calibrator = calibrator
        self.store = store
        self.latency_warning_ms = latency_warning_ms
        self.alert_sinks = list(alert_sinks) if alert_sinks is not None else [LoggingAlertSink()]
        self._clock = clock
        self._schedule = PeriodicSchedule(interval_minutes * 60.0, self.run_check, sleep=sleep, name="health-monitor")
        self._pending_alerts: set[asyncio.Task] = set()

    @property
    def monitoring(self) -> bool:
        return self._schedule.active

    def start(self) -> bool:
        if self.monitoring:
            logger.info("Health monitoring already active")
            return False
        logger.info("Starting health monitoring every %.0fs", self._schedule.interval_s)
        return self._schedule.start()

    def stop(self) -> None:
        if self.monitoring:
            logger.info("Stopping health monitoring")
        self._schedule.stop()

    async def join(self) -> None:
        await self._schedule.join()

    async def status(self) -> Optional[HealthSnapshot]:
        return await self.store.load_health()

    async def run_check(self) -> HealthSnapshot:
        with correlation():
            results = await self.calibrator.check_all()
            connectors = {name: self._classify(r) for name, r in results.items()}
            health = HealthSnapshot.aggregate(connectors, at=self._clock())

            self._log_summary(health)
            if health.overall != "healthy":
                self._dispatch_alert(health)

            await self.store.save_health(health)
            log_event(
                "health",
                "cycle",
                {"overall": health.overall, "failed": health.failed_connectors()},
                ok=health.overall == "healthy",
            )
            return health

    def _classify(self, result: LivenessResult) -> ConnectorHealth:
        if not result.ok:
            return ConnectorHealth(
                status="failed",
                latency_ms=result.latency_ms,
                last_check=iso(result.checked_at),
                error=result.error or "liveness check failed",
            )
        status = "warning" if result.latency_ms > self.latency_warning_ms else "healthy"
        return ConnectorHealth(status=status, latency_ms=result.latency_ms, last_check=iso(result.checked_at))

    @staticmethod
    def _log_summary(health: HealthSnapshot) -> None:
        logger.info("Overall health: %s", health.overall.upper())
        for name, h in health.connectors.items():
            if h.error:
                logger.info("  %s: %s (%dms) error=%s", name, h.status, h.latency_ms, h.error)
            else:
                logger.info("  %s: %s (%dms)", name, h.status, h.latency_ms)

    # ---- alerting -------------------------------------------------------------

    def _dispatch_alert(self, health: HealthSnapshot) -> None:
        alert = Alert(overall=health.overall, failed=health.failed_connectors(), snapshot=health)
        for sink in self.alert_sinks:
            task = asyncio.create_task(self._deliver(sink, alert))
            self._pending_alerts.add(task)
            task.add_done_callback(self._pending_alerts.discard)

    @staticmethod
    async def _deliver(sink: AlertSink, alert: Alert) -> None:
        try:
            await sink.send(alert)
        except Exception:
            logger.exception("Alert delivery via %s failed", type(sink).__name__)

    async def drain_alerts(self) -> None:
        """Wait for background alert deliveries (used on shutdown and in tests)."""
        if self._pending_alerts:
            await asyncio.gather(*list(self._pending_alerts))
