"""
Ranking service: the read/write surface behind the HTTP API.

Owns the score cache, the dirty flag and the publish sequence. Metric writes
rescore the user immediately; re-ranking follows RANKING_UPDATE_POLICY:

- immediate: every accepted update triggers a full re-rank before the ack
- deferred: updates mark the leaderboards dirty; the background scheduler or
  the next recalculate_all re-ranks
"""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Optional

from sqlalchemy.engine import Engine

from liftrank.core.config import Settings, settings
from liftrank.core.errors import AppError, RecalculationTimeoutError, TransientStoreError, ValidationError
from liftrank.core.logging import log_event
from liftrank.core.metrics import metric_updates_total, recalculations_total
from liftrank.features.metrics.store import InMemoryMetricStore, MetricStore, SqlMetricStore
from liftrank.features.metrics.validators import validate_metric_update, validate_pagination, validate_user_id
from liftrank.features.profiles.service import ProfileDirectory, profile_directory
from liftrank.features.ranking.aggregator import RankingAggregator
from liftrank.features.ranking.snapshot_store import InMemorySnapshotStore, SqlSnapshotStore
from liftrank.features.ranking.tiers import TierClassifier
from liftrank.features.scoring.scoring_engine import ScoringEngine
from liftrank.features.weights.service import WeightConfigService
from liftrank.models.metrics import MetricRecord
from liftrank.models.ranking import (
    COHORT_TYPES,
    PILLARS,
    LeaderboardSnapshot,
    RankingEntry,
    ScoreBreakdown,
    Tier,
    WeightConfig,
)
from liftrank.realtime.hub import LeaderboardHub

logger = logging.getLogger("liftrank.ranking")

UPDATE_POLICIES = ("immediate", "deferred")


class WeightUpdate(NamedTuple):
    weights: WeightConfig
    recalculated: bool


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def check_cohort(cohort: Any) -> str:
    if cohort not in COHORT_TYPES:
        raise ValidationError(
            "Invalid leaderboard type",
            details=[f"type must be one of: {', '.join(COHORT_TYPES)}"],
        )
    return cohort


class RankingService:
    def __init__(
        self,
        *,
        metric_store: Optional[MetricStore] = None,
        hub: Optional[LeaderboardHub] = None,
        weights: Optional[WeightConfigService] = None,
        aggregator: Optional[RankingAggregator] = None,
        profiles: Optional[ProfileDirectory] = None,
        policy: str = "immediate",
        recalc_timeout: Optional[float] = 30.0,
        default_limit: int = 50,
        max_limit: int = 1000,
        clock: Callable[[], datetime] = _utcnow,
    ):
        policy = (policy or "").lower()
        if policy not in UPDATE_POLICIES:
            raise ValidationError(f"Unknown ranking update policy: {policy!r}")
        self.metric_store = metric_store or InMemoryMetricStore()
        self.hub = hub or LeaderboardHub()
        self.weights = weights or WeightConfigService()
        self.aggregator = aggregator or RankingAggregator()
        self.profiles = profiles if profiles is not None else ProfileDirectory()
        self.policy = policy
        self.recalc_timeout = recalc_timeout
        self.default_limit = default_limit
        self.max_limit = max_limit
        self.clock = clock

        self._lock = threading.Lock()
        self._scores: Dict[str, ScoreBreakdown] = {}
        self._dirty = False
        # Bumped by every metric write and weight change
        self._generation = 0
        self._sequence = 0
        self._inflight: Optional[asyncio.Future] = None
        self._inflight_generation = -1

    @classmethod
    def from_settings(cls, settings_obj: Optional[Settings] = None, *, engine: Optional[Engine] = None) -> "RankingService":
        """Build a service wired to SQL stores when a database is configured, else in-memory."""
        cfg = settings_obj or settings
        classifier = TierClassifier(cfg.TIER_THRESHOLDS)
        aggregator = RankingAggregator(
            classifier,
            weekly_window_days=cfg.WEEKLY_WINDOW_DAYS,
            monthly_window_days=cfg.MONTHLY_WINDOW_DAYS,
        )
        if engine is None and cfg.DATABASE_URL:
            from liftrank.core.database import init_engine

            engine = init_engine(cfg.DATABASE_URL)
        if engine is not None:
            from liftrank.core.database import create_all_tables

            create_all_tables(engine)
            metric_store: MetricStore = SqlMetricStore(engine)
            hub = LeaderboardHub(
                SqlSnapshotStore(engine),
                max_sockets_per_cohort=cfg.WS_MAX_SOCKETS_PER_COHORT,
                push_limit=cfg.WS_PUSH_LIMIT,
                refresh_seconds=cfg.SNAPSHOT_REFRESH_SECONDS,
            )
            weights = WeightConfigService(engine, persist=True)
        else:
            metric_store = InMemoryMetricStore()
            hub = LeaderboardHub(
                InMemorySnapshotStore(),
                max_sockets_per_cohort=cfg.WS_MAX_SOCKETS_PER_COHORT,
                push_limit=cfg.WS_PUSH_LIMIT,
            )
            weights = WeightConfigService()
        return cls(
            metric_store=metric_store,
            hub=hub,
            weights=weights,
            aggregator=aggregator,
            profiles=profile_directory,
            policy=cfg.RANKING_UPDATE_POLICY,
            recalc_timeout=cfg.RECALC_TIMEOUT_SECONDS,
            default_limit=cfg.LEADERBOARD_DEFAULT_LIMIT,
            max_limit=cfg.LEADERBOARD_MAX_LIMIT,
        )

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def restore(self) -> int:
        """Restore persisted snapshots and continue their sequence numbering."""
        restored = self.hub.restore()
        with self._lock:
            self._sequence = max(self._sequence, self.hub.current_sequence())
            if self.metric_store.count():
                # Metrics may have changed while the process was down
                self._dirty = True
        return restored

    @property
    def has_dirty(self) -> bool:
        with self._lock:
            return self._dirty

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_snapshot(self, cohort: str = "overall") -> Optional[LeaderboardSnapshot]:
        return self.hub.latest(check_cohort(cohort))

    def get_leaderboard(self, cohort: str = "overall", limit: Optional[int] = None, offset: int = 0) -> List[RankingEntry]:
        """Page of the cohort's current snapshot; empty when nothing was published yet."""
        check_cohort(cohort)
        limit, offset = validate_pagination(
            self.default_limit if limit is None else limit,
            offset,
            max_limit=self.max_limit,
        )
        snapshot = self.hub.latest(cohort)
        if snapshot is None:
            return []
        return list(snapshot.rankings[offset:offset + limit])

    def get_user_ranking(self, user_id: str, cohort: str = "overall") -> Optional[RankingEntry]:
        user_id = validate_user_id(user_id)
        snapshot = self.hub.latest(check_cohort(cohort))
        if snapshot is None:
            return None
        return snapshot.entry_for(user_id)

    def get_top_performers(self, category: str, limit: int = 10, cohort: str = "overall") -> List[RankingEntry]:
        """Entries of the cohort's current snapshot ordered by one pillar score, best first."""
        if category not in PILLARS:
            raise ValidationError(
                "Invalid category",
                details=[f"category must be one of: {', '.join(PILLARS)}"],
            )
        limit, _ = validate_pagination(limit, 0, max_limit=self.max_limit)
        snapshot = self.hub.latest(check_cohort(cohort))
        if snapshot is None:
            return []
        attr = f"{category}_score"
        ranked = sorted(snapshot.rankings, key=lambda entry: (-getattr(entry, attr), entry.current_rank))
        return ranked[:limit]

    def get_statistics(self, cohort: str = "overall") -> dict:
        snapshot = self.hub.latest(check_cohort(cohort))
        weights = self.weights.current()
        if snapshot is None:
            return {
                "type": cohort,
                "totalUsers": 0,
                "trackedUsers": self.metric_store.count(),
                "tierDistribution": {tier.value: 0 for tier in Tier},
                "averageScore": 0.0,
                "topScore": 0.0,
                "lastUpdated": None,
                "sequence": 0,
                "weightsVersion": weights.version,
            }
        scores = [entry.score for entry in snapshot.rankings]
        return {
            "type": cohort,
            "totalUsers": snapshot.total_users,
            "trackedUsers": self.metric_store.count(),
            "tierDistribution": snapshot.tier_distribution(),
            "averageScore": round(sum(scores) / len(scores), 2) if scores else 0.0,
            "topScore": round(max(scores), 2) if scores else 0.0,
            "lastUpdated": snapshot.computed_at.isoformat(),
            "sequence": snapshot.sequence,
            "weightsVersion": snapshot.weights_version,
        }

    def get_insights(self, user_id: str) -> dict:
        user_id = validate_user_id(user_id)
        record = self.metric_store.get(user_id)
        if record is None:
            return {"insights": [], "recommendations": [], "scoreBreakdown": None}
        weights = self.weights.current()
        breakdown = self._cached_score(record, weights)
        if breakdown is None:
            breakdown = ScoringEngine.score(record, weights)
        advice = ScoringEngine.insights(breakdown, weights)
        advice["scoreBreakdown"] = breakdown.to_dict()
        return advice

    def _cached_score(self, record: MetricRecord, weights: WeightConfig) -> Optional[ScoreBreakdown]:
        with self._lock:
            cached = self._scores.get(record.user_id)
        if cached is not None and cached.scored_from(record.score_inputs(), weights.version):
            return cached
        return None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def submit_metric_update(self, user_id: str, partial: Any) -> dict:
        """
        Validate and merge a partial metric update, rescore the user and
        (under the immediate policy) re-rank every cohort before returning.

        Raises:
            ValidationError: invalid user id or payload; the stored record is untouched
            TransientStoreError: the metric store failed
        """
        try:
            user_id = validate_user_id(user_id)
            changes = validate_metric_update(partial, now=self.clock())
        except ValidationError:
            metric_updates_total.inc(labels={"outcome": "rejected"})
            raise

        record = self.metric_store.apply_update(user_id, changes, now=self.clock())
        weights = self.weights.current()
        breakdown = ScoringEngine.score(record, weights)
        with self._lock:
            self._scores[user_id] = breakdown
            self._generation += 1
            self._dirty = True
        metric_updates_total.inc(labels={"outcome": "accepted"})
        log_event(
            "info",
            "metrics.updated",
            user_id=user_id,
            event_type="metrics.updated",
            extra={"fields": ",".join(sorted(changes)), "policy": self.policy},
        )

        reranked = False
        if self.policy == "immediate":
            await self.recalculate_all()
            reranked = True

        entry = self.get_user_ranking(user_id) if reranked else None
        return {
            "userId": user_id,
            "metrics": record.to_dict(),
            "score": breakdown.to_dict(),
            "policy": self.policy,
            "reranked": reranked,
            "ranking": entry.to_dict() if entry else None,
        }

    async def update_weights(self, new: Mapping[str, Any]) -> WeightUpdate:
        """
        Swap in new weights, drop every cached score and re-rank all cohorts.

        The swap stands even when the re-rank fails: the result then has
        recalculated=False and the leaderboards stay dirty until the next run.

        Raises:
            ValidationError / ConfigError: rejected; previous weights stay active
            TransientStoreError: the new weights could not be persisted
        """
        config = self.weights.update(new)
        with self._lock:
            self._scores.clear()
            self._generation += 1
            self._dirty = True
        log_event(
            "info",
            "weights.updated",
            event_type="weights.updated",
            extra={"version": config.version},
        )
        try:
            await self.recalculate_all()
        except TransientStoreError as exc:
            logger.warning(
                f"[ranking] weights v{config.version} active, re-rank deferred: {exc.code}: {exc.message}"
            )
            return WeightUpdate(config, False)
        return WeightUpdate(config, True)

    async def recalculate_all(self, timeout: Optional[float] = None) -> dict:
        """
        Re-rank every cohort and publish the new snapshots.

        Concurrent callers share the in-flight run when it already covers their
        writes; otherwise they wait for it and start a fresh one.

        Raises:
            ConfigError: active weights are invalid
            RecalculationTimeoutError: the run exceeded its time budget
            TransientStoreError: a store failed
        """
        while True:
            task = self._inflight
            if task is None or task.done():
                break
            if self._inflight_generation >= self._generation:
                return await asyncio.shield(task)
            try:
                await asyncio.shield(task)
            except AppError as exc:
                logger.debug(f"[ranking] superseded recalculation failed: {exc.message}")

        with self._lock:
            generation = self._generation
        task = asyncio.ensure_future(self._recalculate(timeout, generation))
        self._inflight = task
        self._inflight_generation = generation

        def _clear(done: asyncio.Future) -> None:
            if self._inflight is done:
                self._inflight = None
            if not done.cancelled():
                # Mark retrieved so a failed run never logs "exception was never retrieved"
                done.exception()

        task.add_done_callback(_clear)
        return await asyncio.shield(task)

    async def _recalculate(self, timeout: Optional[float], generation: int) -> dict:
        weights = self.weights.current()
        weights.validate()
        budget = self.recalc_timeout if timeout is None else timeout

        try:
            # Pick up snapshots published by other processes before numbering this run
            await self.hub.sync()
        except AppError as exc:
            self._mark_failed(exc.code)
            raise

        with self._lock:
            self._dirty = False
            self._sequence = max(self._sequence, self.hub.current_sequence()) + 1
            sequence = self._sequence
            scores = dict(self._scores)

        records = await asyncio.to_thread(self.metric_store.all_records)
        profiles = self.profiles.snapshot()
        now = self.clock()
        cancelled = threading.Event()

        def compute() -> List[LeaderboardSnapshot]:
            return [
                self.aggregator.recompute(
                    cohort,
                    records,
                    weights,
                    self.hub.latest(cohort),
                    profiles=profiles,
                    now=now,
                    sequence=sequence,
                    scores=scores,
                    cancel_check=cancelled.is_set,
                )
                for cohort in COHORT_TYPES
            ]

        try:
            if budget:
                snapshots = await asyncio.wait_for(asyncio.to_thread(compute), budget)
            else:
                snapshots = await asyncio.to_thread(compute)
        except asyncio.TimeoutError:
            cancelled.set()
            self._mark_failed("timeout")
            log_event("error", "ranking.recalculate.timeout", error_code="recalculation_timeout", extra={"timeout": budget})
            raise RecalculationTimeoutError(f"Recalculation exceeded {budget}s")
        except AppError as exc:
            self._mark_failed(exc.code)
            raise

        try:
            for snapshot in snapshots:
                await self.hub.publish(snapshot)
        except AppError as exc:
            self._mark_failed(exc.code)
            raise

        with self._lock:
            if self._generation == generation:
                self._scores = scores

        for snapshot in snapshots:
            recalculations_total.inc(labels={"cohort": snapshot.type, "outcome": "success"})
        log_event(
            "info",
            "ranking.recalculated",
            event_type="ranking.recalculated",
            extra={"processed": len(records), "sequence": sequence, "weights_version": weights.version},
        )
        return {
            "processedCount": len(records),
            "sequence": sequence,
            "weightsVersion": weights.version,
            "cohorts": {snapshot.type: snapshot.total_users for snapshot in snapshots},
        }

    def _mark_failed(self, outcome: str) -> None:
        with self._lock:
            self._dirty = True
        for cohort in COHORT_TYPES:
            recalculations_total.inc(labels={"cohort": cohort, "outcome": outcome})


# Process-wide service, created on first use
_service: Optional[RankingService] = None


def get_ranking_service() -> RankingService:
    """FastAPI dependency returning the process-wide RankingService."""
    global _service
    if _service is None:
        _service = RankingService.from_settings()
    return _service


def set_ranking_service(service: Optional[RankingService]) -> None:
    global _service
    _service = service
