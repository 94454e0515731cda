"""
WeightConfig registry.

Holds the single active WeightConfig behind a lock. Updates validate the
candidate first, bump the version, persist, and only then swap the reference,
so a rejected update leaves the previous config in force.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from sqlalchemy import select, update, insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from liftrank.core.database import get_db_session, ranking_weights
from liftrank.core.errors import TransientStoreError, ValidationError
from liftrank.core.metrics import weight_updates_total, weights_version
from liftrank.models.metrics import as_utc
from liftrank.models.ranking import PILLARS, WeightConfig

logger = logging.getLogger("liftrank.weights")

_ROW_ID = 1


class WeightConfigService:
    def __init__(self, engine: Optional[Engine] = None, *, persist: bool = False):
        self._engine = engine
        self._persist = persist
        self._lock = threading.Lock()
        self._current = WeightConfig(last_updated=datetime.now(timezone.utc))
        if persist:
            loaded = self._load()
            if loaded is not None:
                self._current = loaded
        weights_version.set(self._current.version)

    def current(self) -> WeightConfig:
        with self._lock:
            return self._current

    def update(self, new: Mapping[str, Any], *, now: Optional[datetime] = None) -> WeightConfig:
        """
        Replace the active weights.

        Raises:
            ValidationError: payload is not an object or is missing a pillar
            ConfigError: weights fail validation (previous config stays active)
            TransientStoreError: persistence failed (previous config stays active)
        """
        if not isinstance(new, Mapping):
            raise ValidationError("Weights must be an object")
        missing = [name for name in PILLARS if name not in new]
        if missing:
            raise ValidationError("Missing weights", details=[f"{name} is required" for name in missing])

        with self._lock:
            candidate = WeightConfig(
                strength=new["strength"],
                stamina=new["stamina"],
                consistency=new["consistency"],
                improvement=new["improvement"],
                version=self._current.version + 1,
                last_updated=as_utc(now) or datetime.now(timezone.utc),
            )
            candidate.validate()
            if self._persist:
                self._save(candidate)
            self._current = candidate

        weight_updates_total.inc()
        weights_version.set(candidate.version)
        logger.info(f"[weights] updated to version {candidate.version}")
        return candidate

    def _load(self) -> Optional[WeightConfig]:
        try:
            with get_db_session(self._engine) as session:
                row = session.execute(select(ranking_weights).where(ranking_weights.c.id == _ROW_ID)).first()
        except SQLAlchemyError as exc:
            logger.error(f"[weights] load failed: {exc}")
            raise TransientStoreError("Weight store unavailable")
        if row is None:
            return None
        data = row._mapping
        return WeightConfig(
            strength=float(data["strength"]),
            stamina=float(data["stamina"]),
            consistency=float(data["consistency"]),
            improvement=float(data["improvement"]),
            version=int(data["version"]),
            last_updated=as_utc(data["last_updated"]),
        )

    def _save(self, config: WeightConfig) -> None:
        values = {
            "strength": config.strength,
            "stamina": config.stamina,
            "consistency": config.consistency,
            "improvement": config.improvement,
            "version": config.version,
            "last_updated": config.last_updated,
        }
        try:
            with get_db_session(self._engine) as session:
                exists = session.execute(
                    select(ranking_weights.c.id).where(ranking_weights.c.id == _ROW_ID)
                ).first()
                if exists:
                    session.execute(update(ranking_weights).where(ranking_weights.c.id == _ROW_ID).values(**values))
                else:
                    session.execute(insert(ranking_weights).values(id=_ROW_ID, **values))
        except SQLAlchemyError as exc:
            logger.error(f"[weights] save failed: {exc}")
            raise TransientStoreError("Weight store unavailable")
