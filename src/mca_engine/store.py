from __future__ import annotations

import asyncio
import datetime as _dt
import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Optional, Type, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from mca_common.errors import PersistenceError
from mca_config.settings import AwarenessConfig
from mca_engine.models import CalibrationSnapshot, HealthSnapshot, utc_now

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _write_atomic(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        f.write(text)
    os.replace(tmp, path)


def _read_model(path: Path, model: Type[M]) -> Optional[M]:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as e:
        raise PersistenceError(f"Cannot read {path}: {e}") from e

    try:
        return model.model_validate(json.loads(text))
    except (json.JSONDecodeError, ValidationError) as e:
        raise PersistenceError(f"Corrupt snapshot at {path}: {e}") from e


def _export_yaml(path: Path, data: dict[str, Any]) -> None:
    text = yaml.safe_dump(data, indent=2, width=120, sort_keys=False, allow_unicode=True)
    _write_atomic(path, text)


class SnapshotStore:
    """
    Single current calibration snapshot + single current health snapshot.

    Last write wins, no history. The YAML export is a convenience copy of the
    calibration snapshot; failing to write it never fails `save`.
    Only one process is expected to write these files.
    """

    def __init__(
        self,
        calibration_path: Path,
        health_path: Path,
        yaml_export_path: Optional[Path] = None,
        *,
        clock: Callable[[], _dt.datetime] = utc_now,
    ) -> None:
        self.calibration_path = Path(calibration_path)
        self.health_path = Path(health_path)
        self.yaml_export_path = Path(yaml_export_path) if yaml_export_path else None
        self._clock = clock

    @classmethod
    def from_config(cls, config: AwarenessConfig) -> "SnapshotStore":
        storage = config.storage.resolved()
        return cls(storage.calibration_path, storage.health_path, storage.yaml_export)

    # ---- calibration ------------------------------------------------------

    async def save(self, snapshot: CalibrationSnapshot) -> None:
        data = snapshot.model_dump(mode="json")
        await self._persist(self.calibration_path, data)
        logger.info("Calibration snapshot saved to %s", self.calibration_path)

        if self.yaml_export_path is not None:
            try:
                await asyncio.to_thread(_export_yaml, self.yaml_export_path, data)
            except (OSError, yaml.YAMLError) as e:
                logger.error("YAML export to %s failed: %s", self.yaml_export_path, e)

    async def load(self) -> Optional[CalibrationSnapshot]:
        snapshot = await asyncio.to_thread(_read_model, self.calibration_path, CalibrationSnapshot)
        if snapshot is None:
            logger.info("No calibration snapshot at %s", self.calibration_path)
        return snapshot

    # ---- health -----------------------------------------------------------

    async def save_health(self, health: HealthSnapshot) -> None:
        await self._persist(self.health_path, health.model_dump(mode="json"))
        logger.debug("Health snapshot saved to %s", self.health_path)

    async def load_health(self) -> Optional[HealthSnapshot]:
        return await asyncio.to_thread(_read_model, self.health_path, HealthSnapshot)

    # ---- derived helpers --------------------------------------------------

    def age_of(self, snapshot: CalibrationSnapshot) -> _dt.timedelta:
        return self._clock() - snapshot.created_at()

    async def calibration_age_hours(self) -> Optional[float]:
        snapshot = await self.load()
        if snapshot is None:
            return None
        return self.age_of(snapshot).total_seconds() / 3600.0

    async def needs_refresh(self, max_age_hours: float = 24) -> bool:
        age = await self.calibration_age_hours()
        if age is None:
            return True
        return age > max_age_hours

    # ---- internals ----------------------------------------------------------

    async def _persist(self, path: Path, data: dict[str, Any]) -> None:
        text = json.dumps(data, indent=2, ensure_ascii=False)
        try:
            await asyncio.to_thread(_write_atomic, path, text)
        except OSError as e:
            logger.error("Failed to persist snapshot to %s: %s", path, e)
            raise PersistenceError(f"Cannot write {path}: {e}") from e
