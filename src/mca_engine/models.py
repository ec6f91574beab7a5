from __future__ import annotations

import datetime as _dt
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

ConnectorState = Literal["authenticated", "failed", "pending"]
HealthState = Literal["healthy", "failed", "warning"]
OverallHealth = Literal["healthy", "degraded", "warning"]


def utc_now() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


def iso(ts: _dt.datetime) -> str:
    return ts.astimezone(_dt.timezone.utc).isoformat().replace("+00:00", "Z")


def parse_iso(value: str) -> _dt.datetime:
    dt = _dt.datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=_dt.timezone.utc)
    return dt


class ConnectorStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: ConnectorState
    user: Optional[Dict[str, Any]] = None
    workspace: Optional[Dict[str, Any]] = None
    team: Optional[Dict[str, Any]] = None
    stats: Optional[Dict[str, Any]] = None
    bot: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    last_verified: str

    @model_validator(mode="after")
    def _error_iff_failed(self) -> "ConnectorStatus":
        if self.status == "failed":
            if not self.error:
                raise ValueError("failed connector status requires an error")
            if any(getattr(self, f) is not None for f in ("user", "workspace", "team", "stats", "bot")):
                raise ValueError("failed connector status cannot carry identity fields")
        elif self.error is not None:
            raise ValueError(f"{self.status} connector status cannot carry an error")
        return self

    @classmethod
    def failed(cls, error: str, *, at: _dt.datetime) -> "ConnectorStatus":
        return cls(status="failed", error=error or "unknown error", last_verified=iso(at))


class CalibrationSnapshot(BaseModel):
    """One calibration run. Immutable; a new run replaces it wholesale."""

    model_config = ConfigDict(frozen=True)

    timestamp: str
    connectors: Dict[str, ConnectorStatus] = Field(default_factory=dict)

    def created_at(self) -> _dt.datetime:
        return parse_iso(self.timestamp)

    def authenticated(self, connector: str) -> Optional[ConnectorStatus]:
        status = self.connectors.get(connector)
        if status is not None and status.status == "authenticated":
            return status
        return None

    def failed_connectors(self) -> List[str]:
        return [name for name, s in self.connectors.items() if s.status == "failed"]


class ToolCall(BaseModel):
    tool: str
    params: Dict[str, Any] = Field(default_factory=dict)


class EnforcementResult(BaseModel):
    original: ToolCall
    enhanced: ToolCall
    modifications: List[str] = Field(default_factory=list)
    enforce_pagination: Optional[bool] = None
    chain_operations: Optional[List[ToolCall]] = None

    def as_payload(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "original": self.original.model_dump(),
            "enhanced": self.enhanced.model_dump(),
            "modifications": list(self.modifications),
        }
        if self.enforce_pagination is not None:
            out["enforce_pagination"] = self.enforce_pagination
        if self.chain_operations is not None:
            out["chain_operations"] = [c.model_dump() for c in self.chain_operations]
        return out


class ConnectorHealth(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: HealthState
    latency_ms: int
    last_check: str
    error: Optional[str] = None


class HealthSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: str
    overall: OverallHealth
    connectors: Dict[str, ConnectorHealth] = Field(default_factory=dict)

    @classmethod
    def aggregate(cls, connectors: Dict[str, ConnectorHealth], *, at: _dt.datetime) -> "HealthSnapshot":
        return cls(timestamp=iso(at), overall=overall_health(connectors), connectors=connectors)

    def failed_connectors(self) -> List[str]:
        return [name for name, h in self.connectors.items() if h.status == "failed"]


def overall_health(connectors: Dict[str, ConnectorHealth]) -> OverallHealth:
    statuses = [h.status for h in connectors.values()]
    if all(s == "healthy" for s in statuses):
        return "healthy"
    if any(s == "failed" for s in statuses):
        return "degraded"
    return "warning"
