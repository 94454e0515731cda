"""
MetricStore: the only source of truth for scoring inputs.

Two interchangeable backends with the same contract:
- InMemoryMetricStore: default when no DATABASE_URL is configured
- SqlMetricStore: SQLAlchemy Core over the `user_metrics` table
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import insert, select, update, func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from liftrank.core.database import get_db_session, user_metrics
from liftrank.core.errors import TransientStoreError
from liftrank.models.metrics import MetricRecord, as_utc

logger = logging.getLogger("liftrank.metrics.store")


class MetricStore(ABC):
    @abstractmethod
    def get(self, user_id: str) -> Optional[MetricRecord]:
        ...

    @abstractmethod
    def apply_update(self, user_id: str, changes: Dict[str, Any], *, now: Optional[datetime] = None) -> MetricRecord:
        """Merge validated changes into the user's record, creating it on first write."""

    @abstractmethod
    def all_records(self) -> List[MetricRecord]:
        """Every record, ordered by user_id."""

    @abstractmethod
    def count(self) -> int:
        ...


class InMemoryMetricStore(MetricStore):
    def __init__(self):
        self._records: Dict[str, MetricRecord] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> Optional[MetricRecord]:
        with self._lock:
            return self._records.get(user_id)

    def apply_update(self, user_id: str, changes: Dict[str, Any], *, now: Optional[datetime] = None) -> MetricRecord:
        with self._lock:
            current = self._records.get(user_id) or MetricRecord(user_id=user_id)
            record = current.merged(changes, now=now)
            self._records[user_id] = record
            return record

    def all_records(self) -> List[MetricRecord]:
        with self._lock:
            return [self._records[user_id] for user_id in sorted(self._records)]

    def count(self) -> int:
        with self._lock:
            return len(self._records)


_COLUMNS = (
    "max_weight_lifted",
    "total_workouts",
    "workout_streak",
    "consistency_score",
    "improvement_rate",
    "total_calories_burned",
    "average_heart_rate",
    "flexibility_score",
    "endurance_score",
    "last_workout_date",
    "last_updated",
)


def _row_to_record(row) -> MetricRecord:
    data = row._mapping
    return MetricRecord(
        user_id=data["user_id"],
        max_weight_lifted=float(data["max_weight_lifted"] or 0.0),
        total_workouts=int(data["total_workouts"] or 0),
        workout_streak=int(data["workout_streak"] or 0),
        consistency_score=float(data["consistency_score"] or 0.0),
        improvement_rate=float(data["improvement_rate"] or 0.0),
        total_calories_burned=float(data["total_calories_burned"] or 0.0),
        average_heart_rate=float(data["average_heart_rate"] or 0.0),
        flexibility_score=float(data["flexibility_score"] or 0.0),
        endurance_score=float(data["endurance_score"] or 0.0),
        last_workout_date=as_utc(data["last_workout_date"]),
        last_updated=as_utc(data["last_updated"]),
    )


class SqlMetricStore(MetricStore):
    """
    Database-backed metric records.

    SQLAlchemy errors surface as TransientStoreError; callers may retry.
    """

    def __init__(self, engine: Optional[Engine] = None):
        self._engine = engine

    def get(self, user_id: str) -> Optional[MetricRecord]:
        try:
            with get_db_session(self._engine) as session:
                row = session.execute(
                    select(user_metrics).where(user_metrics.c.user_id == user_id)
                ).first()
        except SQLAlchemyError as exc:
            logger.error(f"[metrics] read failed for {user_id}: {exc}")
            raise TransientStoreError("Metric store unavailable")
        return _row_to_record(row) if row else None

    def apply_update(self, user_id: str, changes: Dict[str, Any], *, now: Optional[datetime] = None) -> MetricRecord:
        try:
            with get_db_session(self._engine) as session:
                row = session.execute(
                    select(user_metrics).where(user_metrics.c.user_id == user_id)
                ).first()
                current = _row_to_record(row) if row else MetricRecord(user_id=user_id)
                record = current.merged(changes, now=now)
                values = {column: getattr(record, column) for column in _COLUMNS}
                if row:
                    session.execute(
                        update(user_metrics).where(user_metrics.c.user_id == user_id).values(**values)
                    )
                else:
                    session.execute(insert(user_metrics).values(user_id=user_id, **values))
        except SQLAlchemyError as exc:
            logger.error(f"[metrics] write failed for {user_id}: {exc}")
            raise TransientStoreError("Metric store unavailable")
        return record

    def all_records(self) -> List[MetricRecord]:
        try:
            with get_db_session(self._engine) as session:
                rows = session.execute(select(user_metrics).order_by(user_metrics.c.user_id)).all()
        except SQLAlchemyError as exc:
            logger.error(f"[metrics] scan failed: {exc}")
            raise TransientStoreError("Metric store unavailable")
        return [_row_to_record(row) for row in rows]

    def count(self) -> int:
        try:
            with get_db_session(self._engine) as session:
                return int(session.execute(select(func.count()).select_from(user_metrics)).scalar() or 0)
        except SQLAlchemyError as exc:
            logger.error(f"[metrics] count failed: {exc}")
            raise TransientStoreError("Metric store unavailable")
