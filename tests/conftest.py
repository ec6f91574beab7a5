"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import pytest

from mca_engine.models import CalibrationSnapshot, ConnectorStatus
from mca_engine.store import SnapshotStore

from tests.helpers.fakes import FIXED_NOW


@pytest.fixture(autouse=True)
def _isolated_telemetry(tmp_path, monkeypatch):
    """Every test writes telemetry into its own tmp dir, never into the repo."""
    monkeypatch.setenv("MCA_TELEMETRY_DIR", str(tmp_path / "telemetry"))
    yield


@pytest.fixture()
def store(tmp_path):
    return SnapshotStore(
        tmp_path / "data" / "calibration.json",
        tmp_path / "data" / "health.json",
        tmp_path / "calibration-state.yaml",
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture()
def calibrated_snapshot():
    """All four connectors authenticated, with the identifiers the enforcement rules inject."""
    at = "2025-03-01T11:00:00Z"
    return CalibrationSnapshot(
        timestamp=at,
        connectors={
            "asana": ConnectorStatus(
                status="authenticated",
                user={"name": "Ada", "email": "ada@example.com", "gid": "u1"},
                workspace={"name": "Acme", "gid": "ws-123", "is_organization": True},
                last_verified=at,
            ),
            "linear": ConnectorStatus(
                status="authenticated",
                user={"name": "Ada", "email": "ada@example.com", "id": "lu1", "admin": True},
                team={"name": "Core", "key": "COR", "id": "team-9"},
                last_verified=at,
            ),
            "github": ConnectorStatus(
                status="authenticated",
                user={"login": "ada", "email": None, "id": "42", "repos": 7},
                stats={"public_repos": 5, "private_repos": 2},
                last_verified=at,
            ),
            "notion": ConnectorStatus(
                status="authenticated",
                workspace={"name": "Acme Wiki", "id": "nws-1", "owner": "ada@example.com", "plan": "Basic"},
                bot={"id": "bot-1", "name": "Awareness"},
                last_verified=at,
            ),
        },
    )
