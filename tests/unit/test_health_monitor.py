import asyncio
import datetime as _dt

import pytest

from mca_common.errors import PersistenceError, TransportError
from mca_engine.calibrator import Calibrator, LivenessResult
from mca_engine.health import HealthMonitor
from mca_engine.scheduler import PeriodicSchedule

from tests.helpers.clock import VirtualClock
from tests.helpers.fakes import FakeConnector, MemoryStore


class RecordingSink:
    def __init__(self):
        self.alerts = []

    async def send(self, alert):
        self.alerts.append(alert)


class BrokenSink:
    async def send(self, alert):
        raise RuntimeError("smtp down")


def _monitor(clients, *, store=None, sinks=None, clock=None, **kw):
    store = store or MemoryStore()
    cal = Calibrator({c.name: c for c in clients}, store)
    return HealthMonitor(
        cal,
        store,
        alert_sinks=sinks if sinks is not None else [],
        sleep=(clock or VirtualClock()).sleep,
        **kw,
    )


@pytest.mark.asyncio
async def test_schedule_ticks_once_per_interval_and_start_is_idempotent():
    clock = VirtualClock()
    ticks = []

    async def tick():
        ticks.append(clock.now)

    sched = PeriodicSchedule(60, tick, sleep=clock.sleep)
    assert sched.start() is True
    assert sched.start() is False

    await clock.advance(600)
    assert len(ticks) == 11
    assert ticks[0] == 0 and ticks[-1] == 600

    sched.stop()
    await sched.join()
    await clock.advance(600)
    assert len(ticks) == 11
    assert sched.active is False


@pytest.mark.asyncio
async def test_schedule_survives_a_failing_tick():
    clock = VirtualClock()
    calls = []

    async def tick():
        calls.append(1)
        raise RuntimeError("cycle broke")

    sched = PeriodicSchedule(10, tick, sleep=clock.sleep)
    sched.start()
    await clock.advance(20)
    sched.stop()
    await sched.join()
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_stop_during_running_tick_lets_it_finish():
    clock = VirtualClock()
    release = asyncio.Event()
    started, finished = [], []

    async def tick():
        started.append(clock.now)
        await release.wait()
        finished.append(clock.now)

    sched = PeriodicSchedule(60, tick, sleep=clock.sleep)
    sched.start()
    await clock.advance(0)
    assert started == [0] and finished == []

    sched.stop()
    release.set()
    await sched.join()
    assert finished == [0]

    await clock.advance(600)
    assert started == [0]
    assert sched.active is False


@pytest.mark.asyncio
async def test_restart_before_loop_exits_reuses_the_same_task():
    clock = VirtualClock()
    ticks = []

    async def tick():
        ticks.append(clock.now)

    sched = PeriodicSchedule(60, tick, sleep=clock.sleep)
    sched.start()
    await clock.advance(0)
    first = sched._task

    sched.stop()
    assert sched.start() is True
    assert sched._task is first
    assert sched.active is True

    await clock.advance(120)
    # the woken loop ticks once on resume, then keeps its interval
    assert ticks == [0, 0, 60, 120]

    sched.stop()
    await sched.join()
    assert sched._task is first


@pytest.mark.asyncio
async def test_monitor_start_twice_runs_one_loop():
    clock = VirtualClock()
    client = FakeConnector("asana")
    mon = _monitor([client], clock=clock, interval_minutes=1)

    assert mon.start() is True
    assert mon.start() is False
    assert mon.monitoring is True

    await clock.advance(600)
    assert client.calls.count("ping_identity") == 11

    mon.stop()
    await mon.join()
    assert mon.monitoring is False


@pytest.mark.asyncio
async def test_stop_prevents_further_cycles():
    clock = VirtualClock()
    client = FakeConnector("asana")
    mon = _monitor([client], clock=clock, interval_minutes=1)

    mon.start()
    await clock.advance(0)
    mon.stop()
    await mon.join()
    await clock.advance(3600)
    assert client.calls.count("ping_identity") == 1


@pytest.mark.asyncio
async def test_run_check_all_healthy_persists_and_does_not_alert():
    store = MemoryStore()
    sink = RecordingSink()
    mon = _monitor([FakeConnector("asana"), FakeConnector("github")], store=store, sinks=[sink])

    health = await mon.run_check()
    await mon.drain_alerts()

    assert health.overall == "healthy"
    assert list(health.connectors) == ["asana", "github"]
    assert store.health == [health]
    assert sink.alerts == []
    assert await mon.status() == health


@pytest.mark.asyncio
async def test_failed_connector_degrades_and_alerts():
    sink = RecordingSink()
    mon = _monitor(
        [FakeConnector("asana"), FakeConnector("linear", ping_fail=TransportError("502 Bad Gateway"))],
        sinks=[sink],
    )

    health = await mon.run_check()
    await mon.drain_alerts()

    assert health.overall == "degraded"
    assert health.connectors["linear"].status == "failed"
    assert health.connectors["linear"].error == "502 Bad Gateway"
    assert len(sink.alerts) == 1
    assert sink.alerts[0].failed == ["linear"]
    assert "linear" in sink.alerts[0].summary


@pytest.mark.asyncio
async def test_failing_sink_does_not_fail_the_cycle():
    store = MemoryStore()
    ok_sink = RecordingSink()
    mon = _monitor(
        [FakeConnector("notion", ping_fail=TransportError("timeout"))],
        store=store,
        sinks=[BrokenSink(), ok_sink],
    )

    health = await mon.run_check()
    await mon.drain_alerts()

    assert health.overall == "degraded"
    assert store.health == [health]
    assert len(ok_sink.alerts) == 1


def test_classify_slow_connector_as_warning():
    mon = _monitor([], latency_warning_ms=100)
    at = _dt.datetime(2025, 1, 1, tzinfo=_dt.timezone.utc)
    slow = mon._classify(LivenessResult("asana", True, 250, at))
    fast = mon._classify(LivenessResult("asana", True, 20, at))
    down = mon._classify(LivenessResult("asana", False, 20, at, "nope"))

    assert slow.status == "warning"
    assert fast.status == "healthy"
    assert down.status == "failed" and down.error == "nope"


@pytest.mark.asyncio
async def test_persistence_failure_surfaces_from_run_check():
    mon = _monitor([FakeConnector("asana")], store=MemoryStore(fail_health=True))
    with pytest.raises(PersistenceError):
        await mon.run_check()


@pytest.mark.asyncio
async def test_status_is_none_before_first_cycle():
    mon = _monitor([FakeConnector("asana")])
    assert await mon.status() is None
