import datetime as _dt

import pytest
from pydantic import ValidationError

from mca_engine.models import (
    CalibrationSnapshot,
    ConnectorHealth,
    ConnectorStatus,
    EnforcementResult,
    HealthSnapshot,
    ToolCall,
    iso,
    overall_health,
    parse_iso,
)

AT = _dt.datetime(2025, 1, 2, 3, 4, 5, tzinfo=_dt.timezone.utc)


def test_iso_roundtrip_uses_z_suffix():
    s = iso(AT)
    assert s == "2025-01-02T03:04:05Z"
    assert parse_iso(s) == AT


def test_parse_iso_assumes_utc_for_naive_values():
    assert parse_iso("2025-01-02T03:04:05").tzinfo is not None


def test_failed_status_requires_error():
    with pytest.raises(ValidationError):
        ConnectorStatus(status="failed", last_verified=iso(AT))


def test_failed_status_cannot_carry_identity():
    with pytest.raises(ValidationError):
        ConnectorStatus(status="failed", error="nope", user={"name": "x"}, last_verified=iso(AT))


def test_authenticated_status_cannot_carry_error():
    with pytest.raises(ValidationError):
        ConnectorStatus(status="authenticated", error="boom", last_verified=iso(AT))


def test_failed_factory():
    st = ConnectorStatus.failed("Invalid token", at=AT)
    assert st.status == "failed"
    assert st.error == "Invalid token"
    assert st.last_verified == "2025-01-02T03:04:05Z"


def test_snapshot_helpers():
    snap = CalibrationSnapshot(
        timestamp=iso(AT),
        connectors={
            "asana": ConnectorStatus(status="authenticated", workspace={"gid": "1"}, last_verified=iso(AT)),
            "linear": ConnectorStatus.failed("bad key", at=AT),
        },
    )
    assert snap.created_at() == AT
    assert snap.authenticated("asana") is not None
    assert snap.authenticated("linear") is None
    assert snap.authenticated("github") is None
    assert snap.failed_connectors() == ["linear"]


def test_snapshot_is_immutable():
    snap = CalibrationSnapshot(timestamp=iso(AT))
    with pytest.raises(ValidationError):
        snap.timestamp = "other"


def _h(status):
    return ConnectorHealth(status=status, latency_ms=10, last_check=iso(AT), error="x" if status == "failed" else None)


@pytest.mark.parametrize(
    "statuses, expected",
    [
        (["healthy", "healthy"], "healthy"),
        (["healthy", "failed"], "degraded"),
        (["warning", "failed"], "degraded"),
        (["healthy", "warning"], "warning"),
        ([], "healthy"),
    ],
)
def test_overall_health(statuses, expected):
    connectors = {f"c{i}": _h(s) for i, s in enumerate(statuses)}
    assert overall_health(connectors) == expected


def test_health_aggregate():
    health = HealthSnapshot.aggregate({"asana": _h("healthy"), "github": _h("failed")}, at=AT)
    assert health.overall == "degraded"
    assert health.failed_connectors() == ["github"]
    assert health.timestamp == "2025-01-02T03:04:05Z"


def test_enforcement_payload_omits_unset_flags_but_keeps_none_params():
    call = ToolCall(tool="x", params={"a": None})
    payload = EnforcementResult(original=call, enhanced=call).as_payload()
    assert payload == {
        "original": {"tool": "x", "params": {"a": None}},
        "enhanced": {"tool": "x", "params": {"a": None}},
        "modifications": [],
    }
