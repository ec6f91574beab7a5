from __future__ import annotations

import json
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from mca_common.errors import ConfigurationError

# Declaration order; calibration and health results are assembled in this order.
KNOWN_CONNECTORS = ("asana", "linear", "github", "notion")

CREDENTIAL_ENV = {
    "asana": "ASANA_ACCESS_TOKEN",
    "linear": "LINEAR_API_KEY",
    "github": "GITHUB_TOKEN",
    "notion": "NOTION_TOKEN",
}


def _find_repo_root(start: Path) -> Optional[Path]:
    """
    Walk upward until we find pyproject.toml or .git.
    """
    start = start.resolve()
    for p in (start, *start.parents):
        if (p / "pyproject.toml").exists() or (p / ".git").exists():
            return p
    return None


@lru_cache(maxsize=1)
def repo_root() -> Path:
    """Best-effort repository root discovery.

    Order of precedence:
      1) MCA_REPO_ROOT (explicit override)
      2) walk upward from current working directory
      3) walk upward from this module file's directory
    """
    explicit = os.getenv("MCA_REPO_ROOT")
    if explicit:
        p = Path(explicit).expanduser().resolve()
        if not p.exists() or not p.is_dir():
            raise ConfigurationError(f"MCA_REPO_ROOT does not exist or is not a directory: {p}")
        return p

    root = _find_repo_root(Path.cwd())
    if root:
        return root

    here_dir = Path(__file__).resolve().parent
    root = _find_repo_root(here_dir)
    if root:
        return root

    return Path.cwd().resolve()


@lru_cache(maxsize=1)
def load_env_once() -> Optional[Path]:
    """
    Load dotenv exactly once. Precedence:
      1) MCA_ENV_FILE (explicit path)
      2) repo-root/.env
      3) repo-root/config/.env
    """
    explicit = os.getenv("MCA_ENV_FILE")
    candidates = []

    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.append(repo_root() / ".env")
    candidates.append(repo_root() / "config" / ".env")

    for p in candidates:
        p = p.resolve()
        if p.exists() and p.is_file():
            # Do NOT override already-set environment variables
            load_dotenv(dotenv_path=str(p), override=False)
            return p

    return None


def _env_path(name: str, default: Path) -> Path:
    p = os.getenv(name)
    if p:
        return Path(p).expanduser().resolve()
    return default.resolve()


def config_dir() -> Path:
    return _env_path("MCA_CONFIG_DIR", repo_root() / "config")


def config_path() -> Path:
    return _env_path("MCA_CONFIG_PATH", config_dir() / "awareness.json")


def data_dir() -> Path:
    return _env_path("MCA_DATA_DIR", repo_root() / "data")


def telemetry_dir() -> Path:
    return _env_path("MCA_TELEMETRY_DIR", repo_root() / "artifacts" / "telemetry")


# ---------------------------------------------------------------------------
# Process configuration
# ---------------------------------------------------------------------------


class CalibrationConfig(BaseModel):
    auto_run_on_start: bool = True
    verify_interval_hours: float = Field(default=24, gt=0)
    cache_ttl_hours: float = Field(default=24, gt=0)
    probe_timeout_seconds: float = Field(default=15, gt=0)


class EnforcementConfig(BaseModel):
    require_pagination_completion: bool = True
    auto_resolve_ids: bool = True
    max_chain_depth: int = Field(default=5, ge=1)
    max_pagination_pages: int = Field(default=100, ge=1)


class HealthConfig(BaseModel):
    check_interval_minutes: float = Field(default=30, gt=0)
    alert_on_failure: bool = True
    create_linear_issues: bool = False
    latency_warning_ms: int = Field(default=5000, gt=0)


class StorageConfig(BaseModel):
    calibration_path: Optional[Path] = None
    health_path: Optional[Path] = None
    yaml_export: Optional[Path] = None

    def resolved(self) -> "StorageConfig":
        return StorageConfig(
            calibration_path=self.calibration_path
            or _env_path("MCA_CALIBRATION_PATH", data_dir() / "calibration.json"),
            health_path=self.health_path or _env_path("MCA_HEALTH_PATH", data_dir() / "health.json"),
            yaml_export=self.yaml_export
            or _env_path("MCA_YAML_EXPORT_PATH", repo_root() / "calibration-state.yaml"),
        )


class AwarenessConfig(BaseModel):
    connectors: list[str] = Field(default_factory=lambda: list(KNOWN_CONNECTORS))
    calibration: CalibrationConfig = Field(default_factory=CalibrationConfig)
    enforcement: EnforcementConfig = Field(default_factory=EnforcementConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @field_validator("connectors")
    @classmethod
    def _known_connectors(cls, value: list[str]) -> list[str]:
        names = [str(v).strip().lower() for v in value if str(v).strip()]
        unknown = [n for n in names if n not in KNOWN_CONNECTORS]
        if unknown:
            raise ValueError(f"unknown connectors: {', '.join(unknown)}")
        # keep declaration order, drop duplicates
        return [c for c in KNOWN_CONNECTORS if c in names]


_ENV_OVERRIDES = {
    "MCA_CALIBRATE_ON_START": ("calibration", "auto_run_on_start"),
    "MCA_VERIFY_INTERVAL_HOURS": ("calibration", "verify_interval_hours"),
    "MCA_PROBE_TIMEOUT_SECONDS": ("calibration", "probe_timeout_seconds"),
    "MCA_REQUIRE_PAGINATION": ("enforcement", "require_pagination_completion"),
    "MCA_AUTO_RESOLVE_IDS": ("enforcement", "auto_resolve_ids"),
    "MCA_MAX_CHAIN_DEPTH": ("enforcement", "max_chain_depth"),
    "MCA_MAX_PAGINATION_PAGES": ("enforcement", "max_pagination_pages"),
    "MCA_HEALTH_INTERVAL_MINUTES": ("health", "check_interval_minutes"),
    "MCA_CREATE_LINEAR_ISSUES": ("health", "create_linear_issues"),
}


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return {}
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file must contain a JSON object: {path}")
    return data


def build_config(raw: dict[str, Any] | None = None, *, environ: dict[str, str] | None = None) -> AwarenessConfig:
    """Validate a raw config mapping, applying MCA_* environment overrides on top."""
    env = os.environ if environ is None else environ
    data: dict[str, Any] = json.loads(json.dumps(raw or {}))

    connectors = env.get("MCA_CONNECTORS")
    if connectors:
        data["connectors"] = [c for c in connectors.split(",") if c.strip()]

    for var, (section, key) in _ENV_OVERRIDES.items():
        value = env.get(var)
        if value is not None and value.strip() != "":
            data.setdefault(section, {})[key] = value.strip()

    try:
        return AwarenessConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


@lru_cache(maxsize=1)
def load_config() -> AwarenessConfig:
    """Read process configuration once; later changes on disk are not picked up."""
    return build_config(_read_config_file(config_path()))


def credential_for(connector: str, *, environ: dict[str, str] | None = None) -> Optional[str]:
    env = os.environ if environ is None else environ
    token = (env.get(CREDENTIAL_ENV[connector]) or "").strip()
    return token or None


def require_credentials(
    config: AwarenessConfig, *, environ: dict[str, str] | None = None
) -> dict[str, str]:
    """Return {connector: token} for every configured connector, or fail listing the missing ones."""
    creds: dict[str, str] = {}
    missing: list[str] = []
    for name in config.connectors:
        token = credential_for(name, environ=environ)
        if token:
            creds[name] = token
        else:
            missing.append(f"{name} ({CREDENTIAL_ENV[name]})")
    if missing:
        raise ConfigurationError(f"Missing credentials for: {', '.join(missing)}")
    return creds


def configure_logging() -> None:
    """
    Configure logging explicitly. No import-time side effects.
    Idempotent: if logging is already configured, do nothing.
    """
    root = logging.getLogger()
    if root.handlers:
        return

    level_name = os.getenv("MCA_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = os.getenv(
        "MCA_LOG_FORMAT",
        "%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logging.basicConfig(level=level, format=fmt)


def init_runtime(*, configure_logs: bool = True, load_env: bool = True) -> None:
    """
    Call this from entrypoints only (servers, CLI).
    """
    if load_env:
        load_env_once()
    if configure_logs:
        configure_logging()
