import datetime as _dt
import json

import pytest
import yaml

from mca_common.errors import PersistenceError
from mca_engine.models import ConnectorHealth, HealthSnapshot
from mca_engine.store import SnapshotStore, _export_yaml

from tests.helpers.fakes import FIXED_NOW


@pytest.mark.asyncio
async def test_load_without_snapshot_returns_none(store):
    assert await store.load() is None
    assert await store.load_health() is None
    assert await store.calibration_age_hours() is None
    assert await store.needs_refresh() is True


@pytest.mark.asyncio
async def test_save_then_load_roundtrip_and_yaml_export(store, calibrated_snapshot):
    await store.save(calibrated_snapshot)

    loaded = await store.load()
    assert loaded == calibrated_snapshot

    exported = yaml.safe_load(store.yaml_export_path.read_text(encoding="utf-8"))
    assert exported["timestamp"] == calibrated_snapshot.timestamp
    assert exported["connectors"]["asana"]["workspace"]["gid"] == "ws-123"


@pytest.mark.asyncio
async def test_save_replaces_previous_snapshot(store, calibrated_snapshot):
    await store.save(calibrated_snapshot)
    newer = calibrated_snapshot.model_copy(update={"timestamp": "2025-03-01T11:30:00Z"})
    await store.save(newer)

    data = json.loads(store.calibration_path.read_text(encoding="utf-8"))
    assert data["timestamp"] == "2025-03-01T11:30:00Z"


@pytest.mark.asyncio
async def test_yaml_export_failure_is_not_fatal(tmp_path, calibrated_snapshot, caplog):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    store = SnapshotStore(tmp_path / "cal.json", tmp_path / "health.json", blocker / "state.yaml")

    await store.save(calibrated_snapshot)

    assert (await store.load()) == calibrated_snapshot
    assert any("YAML export" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_primary_write_failure_raises_persistence_error(tmp_path, calibrated_snapshot):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    store = SnapshotStore(blocker / "cal.json", tmp_path / "health.json")

    with pytest.raises(PersistenceError):
        await store.save(calibrated_snapshot)


@pytest.mark.asyncio
async def test_corrupt_snapshot_raises_persistence_error(store):
    store.calibration_path.parent.mkdir(parents=True, exist_ok=True)
    store.calibration_path.write_text("{not json", encoding="utf-8")

    with pytest.raises(PersistenceError):
        await store.load()


@pytest.mark.asyncio
async def test_failed_status_without_error_is_rejected_on_load(store):
    store.calibration_path.parent.mkdir(parents=True, exist_ok=True)
    store.calibration_path.write_text(
        json.dumps({"timestamp": "2025-03-01T11:00:00Z", "connectors": {"asana": {"status": "failed", "last_verified": "x"}}}),
        encoding="utf-8",
    )
    with pytest.raises(PersistenceError):
        await store.load()


@pytest.mark.asyncio
async def test_age_and_refresh(store, calibrated_snapshot):
    # fixture snapshot is one hour older than the store clock
    await store.save(calibrated_snapshot)

    assert await store.calibration_age_hours() == pytest.approx(1.0)
    assert await store.needs_refresh(max_age_hours=24) is False
    assert await store.needs_refresh(max_age_hours=0.5) is True
    assert store.age_of(calibrated_snapshot) == FIXED_NOW - calibrated_snapshot.created_at()


@pytest.mark.asyncio
async def test_health_roundtrip(store):
    at = _dt.datetime(2025, 3, 1, tzinfo=_dt.timezone.utc)
    health = HealthSnapshot.aggregate(
        {"asana": ConnectorHealth(status="healthy", latency_ms=120, last_check="2025-03-01T00:00:00Z")},
        at=at,
    )
    await store.save_health(health)
    assert await store.load_health() == health


def test_export_yaml_writes_to_the_given_path(tmp_path):
    target = tmp_path / "nested" / "state.yaml"
    _export_yaml(target, {"timestamp": "2025-03-01T11:00:00Z", "connectors": {}})
    assert yaml.safe_load(target.read_text(encoding="utf-8")) == {"timestamp": "2025-03-01T11:00:00Z", "connectors": {}}


@pytest.mark.asyncio
async def test_save_without_yaml_path_skips_export(tmp_path, calibrated_snapshot):
    store = SnapshotStore(tmp_path / "cal.json", tmp_path / "health.json")
    await store.save(calibrated_snapshot)

    assert (await store.load()) == calibrated_snapshot
    assert sorted(p.name for p in tmp_path.iterdir()) == ["cal.json"]
