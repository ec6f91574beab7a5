from __future__ import annotations

import asyncio
import datetime as _dt
import logging
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from mca_common.errors import ConnectorError
from mca_common.telemetry import log_event
from mca_connectors.base import ConnectorClient
from mca_engine.models import CalibrationSnapshot, ConnectorStatus, iso, utc_now
from mca_engine.store import SnapshotStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LivenessResult:
    connector: str
    ok: bool
    latency_ms: int
    checked_at: _dt.datetime
    error: Optional[str] = None


def _describe_failure(exc: BaseException, timeout: float) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return f"timed out after {timeout:g}s"
    if isinstance(exc, ConnectorError):
        # auth messages are kept verbatim for operators
        return str(exc) or type(exc).__name__
    return f"{type(exc).__name__}: {exc}"


class Calibrator:
    """
    Probes every configured connector concurrently and persists one snapshot.

    A probe failure is captured as a `failed` ConnectorStatus for that
    connector only; `calibrate()` itself only fails when persistence fails.
    """

    def __init__(
        self,
        clients: Mapping[str, ConnectorClient],
        store: SnapshotStore,
        *,
        probe_timeout: float = 15.0,
        clock: Callable[[], _dt.datetime] = utc_now,
    ) -> None:
        self.clients = dict(clients)
        self.store = store
        self.probe_timeout = probe_timeout
        self._clock = clock

    async def calibrate(self) -> CalibrationSnapshot:
        logger.info("Starting connector calibration (%s)", ", ".join(self.clients) or "no connectors")
        t0 = time.perf_counter()

        names = list(self.clients)
        statuses = await asyncio.gather(*(self._probe(name, self.clients[name]) for name in names))

        snapshot = CalibrationSnapshot(timestamp=iso(self._clock()), connectors=dict(zip(names, statuses)))
        await self.store.save(snapshot)

        failed = snapshot.failed_connectors()
        ms = int((time.perf_counter() - t0) * 1000)
        log_event("calibration", "calibrate", {"connectors": names, "failed": failed}, ok=not failed, ms=ms)
        if failed:
            logger.warning("Calibration finished with failures: %s", ", ".join(failed))
        else:
            logger.info("Calibration complete")
        return snapshot

    async def _probe(self, name: str, client: ConnectorClient) -> ConnectorStatus:
        try:
            facts = await asyncio.wait_for(self._identity_facts(client), timeout=self.probe_timeout)
            return ConnectorStatus(status="authenticated", last_verified=iso(self._clock()), **facts)
        except Exception as e:
            message = _describe_failure(e, self.probe_timeout)
            logger.warning("Calibration of %s failed: %s", name, message)
            return ConnectorStatus.failed(message, at=self._clock())

    @staticmethod
    async def _identity_facts(client: ConnectorClient) -> dict:
        identity = await client.get_identity()
        containers = await client.list_containers()
        return client.describe(identity, containers)

    # ---- lightweight verification ---------------------------------------

    async def check_liveness(self, name: str) -> LivenessResult:
        """Identity-only probe, timed. Shared by `verify()` and the Health Monitor."""
        client = self.clients[name]
        t0 = time.perf_counter()
        try:
            await asyncio.wait_for(client.ping_identity(), timeout=self.probe_timeout)
        except Exception as e:
            ms = int((time.perf_counter() - t0) * 1000)
            return LivenessResult(name, False, ms, self._clock(), _describe_failure(e, self.probe_timeout))
        ms = int((time.perf_counter() - t0) * 1000)
        return LivenessResult(name, True, ms, self._clock())

    async def check_all(self) -> dict[str, LivenessResult]:
        names = list(self.clients)
        results = await asyncio.gather(*(self.check_liveness(n) for n in names))
        return dict(zip(names, results))

    async def verify(self) -> bool:
        """True iff a snapshot exists and every connector still answers its identity call."""
        snapshot = await self.store.load()
        if snapshot is None:
            logger.warning("No calibration snapshot; skipping verification")
            return False

        results = await self.check_all()
        ok = all(r.ok for r in results.values())
        for r in results.values():
            if not r.ok:
                logger.warning("Verification of %s failed: %s", r.connector, r.error)
        logger.info("Verification %s", "passed" if ok else "failed")
        return ok
