"""
Persistence for published leaderboard snapshots (one row per cohort).
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional

from sqlalchemy import delete, insert, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from liftrank.core.database import get_db_session, leaderboard_snapshots
from liftrank.core.errors import TransientStoreError
from liftrank.models.ranking import COHORT_TYPES, LeaderboardSnapshot

logger = logging.getLogger("liftrank.ranking.snapshots")


class SnapshotStore(ABC):
    @abstractmethod
    def save(self, snapshot: LeaderboardSnapshot) -> bool:
        """Persist `snapshot` unless the stored one has the same or a newer sequence. Returns True when stored."""
        ...

    @abstractmethod
    def load(self, cohort: str) -> Optional[LeaderboardSnapshot]:
        ...

    def load_all(self) -> Dict[str, LeaderboardSnapshot]:
        found = {}
        for cohort in COHORT_TYPES:
            snapshot = self.load(cohort)
            if snapshot is not None:
                found[cohort] = snapshot
        return found


class InMemorySnapshotStore(SnapshotStore):
    def __init__(self):
        self._snapshots: Dict[str, LeaderboardSnapshot] = {}
        self._lock = threading.Lock()

    def save(self, snapshot: LeaderboardSnapshot) -> bool:
        with self._lock:
            stored = self._snapshots.get(snapshot.type)
            if stored is not None and stored.sequence >= snapshot.sequence:
                return False
            self._snapshots[snapshot.type] = snapshot
            return True

    def load(self, cohort: str) -> Optional[LeaderboardSnapshot]:
        with self._lock:
            return self._snapshots.get(cohort)


class SqlSnapshotStore(SnapshotStore):
    """Stores the unrounded snapshot as JSON in `leaderboard_snapshots`."""

    def __init__(self, engine: Optional[Engine] = None):
        self._engine = engine

    def save(self, snapshot: LeaderboardSnapshot) -> bool:
        try:
            with get_db_session(self._engine) as session:
                stored = session.execute(
                    select(leaderboard_snapshots.c.sequence)
                    .where(leaderboard_snapshots.c.cohort == snapshot.type)
                    .with_for_update()
                ).scalar()
                if stored is not None and stored >= snapshot.sequence:
                    logger.info(
                        f"[snapshots] kept {snapshot.type} seq={stored}, refused older seq={snapshot.sequence}"
                    )
                    return False
                session.execute(
                    delete(leaderboard_snapshots).where(leaderboard_snapshots.c.cohort == snapshot.type)
                )
                session.execute(
                    insert(leaderboard_snapshots).values(
                        cohort=snapshot.type,
                        sequence=snapshot.sequence,
                        weights_version=snapshot.weights_version,
                        computed_at=snapshot.computed_at,
                        payload=snapshot.to_record(),
                    )
                )
        except SQLAlchemyError as exc:
            logger.error(f"[snapshots] save failed for {snapshot.type}: {exc}")
            raise TransientStoreError("Snapshot store unavailable")
        return True

    def load(self, cohort: str) -> Optional[LeaderboardSnapshot]:
        try:
            with get_db_session(self._engine) as session:
                row = session.execute(
                    select(leaderboard_snapshots.c.payload).where(leaderboard_snapshots.c.cohort == cohort)
                ).first()
        except SQLAlchemyError as exc:
            logger.error(f"[snapshots] load failed for {cohort}: {exc}")
            raise TransientStoreError("Snapshot store unavailable")
        if row is None:
            return None
        return LeaderboardSnapshot.from_record(row[0])
