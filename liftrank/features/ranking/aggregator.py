"""
Ranking Aggregator

Builds a full LeaderboardSnapshot for one cohort from MetricRecords:
cohort filter -> score -> sort -> rank -> tier -> rank deltas.

Pure with respect to its inputs: the same records, weights, previous snapshot,
clock and sequence always produce the same snapshot.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Mapping, MutableMapping, Optional, Tuple

from liftrank.core.errors import RecalculationTimeoutError, ValidationError
from liftrank.features.ranking.tiers import TierClassifier
from liftrank.features.scoring.scoring_engine import ScoringEngine
from liftrank.models.metrics import MetricRecord, as_utc
from liftrank.models.profile import DEFAULT_DISPLAY_NAME, UserProfile
from liftrank.models.ranking import (
    COHORT_TYPES,
    LeaderboardSnapshot,
    RankingEntry,
    ScoreBreakdown,
    WeightConfig,
)

logger = logging.getLogger("liftrank.ranking.aggregator")


class RankingAggregator:
    def __init__(
        self,
        classifier: Optional[TierClassifier] = None,
        *,
        weekly_window_days: int = 7,
        monthly_window_days: int = 30,
    ):
        if weekly_window_days < 1 or monthly_window_days < 1:
            raise ValidationError("Activity windows must be at least one day")
        self.classifier = classifier or TierClassifier()
        self.windows = {
            "overall": None,
            "weekly": timedelta(days=weekly_window_days),
            "monthly": timedelta(days=monthly_window_days),
        }

    def window_start(self, cohort: str, now: datetime) -> Optional[datetime]:
        if cohort not in COHORT_TYPES:
            raise ValidationError(f"Invalid leaderboard type: {cohort}")
        window = self.windows[cohort]
        return now - window if window is not None else None

    def members(self, cohort: str, records: Iterable[MetricRecord], now: datetime) -> List[MetricRecord]:
        """Records belonging to the cohort. Weekly/monthly need a workout inside the window."""
        start = self.window_start(cohort, now)
        if start is None:
            return list(records)
        selected = []
        for record in records:
            workout = as_utc(record.last_workout_date)
            if workout is not None and workout >= start:
                selected.append(record)
        return selected

    def recompute(
        self,
        cohort: str,
        records: Iterable[MetricRecord],
        weights: WeightConfig,
        previous: Optional[LeaderboardSnapshot] = None,
        *,
        profiles: Optional[Mapping[str, UserProfile]] = None,
        now: Optional[datetime] = None,
        sequence: int = 0,
        scores: Optional[MutableMapping[str, ScoreBreakdown]] = None,
        cancel_check: Optional[Callable[[], bool]] = None,
    ) -> LeaderboardSnapshot:
        """
        Compute a fresh snapshot for `cohort`.

        Args:
            cohort: overall / weekly / monthly
            records: All MetricRecords (filtered here)
            weights: Active WeightConfig; invalid weights abort the run
            previous: Last published snapshot of this cohort, for rank deltas
            profiles: Display data by user id
            now: Clock for activity windows and computed_at
            sequence: Computation number stamped on the snapshot
            scores: Breakdown cache; entries scored from the same inputs under
                the same weights_version are reused, fresh ones are written back
            cancel_check: Polled between users; True aborts the run

        Raises:
            ConfigError: weights are invalid
            ValidationError: unknown cohort
            RecalculationTimeoutError: cancel_check asked to stop
        """
        weights.validate()
        moment = as_utc(now) or datetime.now(timezone.utc)
        members = self.members(cohort, records, moment)
        profiles = profiles or {}

        scored: List[Tuple[MetricRecord, ScoreBreakdown]] = []
        for record in members:
            if cancel_check is not None and cancel_check():
                logger.warning(f"[ranking] {cohort} aggregation cancelled after {len(scored)} users")
                raise RecalculationTimeoutError(f"Recalculation of {cohort} leaderboard timed out")
            scored.append((record, self._score(record, weights, scores)))

        scored.sort(key=lambda item: (-item[1].total_score, item[0].user_id))

        previous_ranks = previous.rank_index() if previous is not None else {}
        total = len(scored)
        entries = []
        for index, (record, breakdown) in enumerate(scored):
            rank = index + 1
            previous_rank = previous_ranks.get(record.user_id)
            if previous_rank is None:
                delta, change = 0, "none"
            else:
                delta = previous_rank - rank
                change = "up" if delta > 0 else "down" if delta < 0 else "none"
            profile = profiles.get(record.user_id)
            entries.append(
                RankingEntry(
                    user_id=record.user_id,
                    display_name=profile.display_name if profile else DEFAULT_DISPLAY_NAME,
                    photo_url=profile.photo_url if profile else None,
                    score=breakdown.total_score,
                    tier=self.classifier.classify(rank, total),
                    current_rank=rank,
                    previous_rank=previous_rank,
                    rank_change=change,
                    rank_delta=delta,
                    total_users=total,
                    strength_score=breakdown.strength_score,
                    stamina_score=breakdown.stamina_score,
                    consistency_score=breakdown.consistency_score,
                    improvement_score=breakdown.improvement_score,
                )
            )

        return LeaderboardSnapshot(
            type=cohort,
            rankings=tuple(entries),
            computed_at=moment,
            sequence=sequence,
            weights_version=weights.version,
            window_start=self.window_start(cohort, moment),
        )

    @staticmethod
    def _score(
        record: MetricRecord,
        weights: WeightConfig,
        scores: Optional[MutableMapping[str, ScoreBreakdown]],
    ) -> ScoreBreakdown:
        if scores is not None:
            cached = scores.get(record.user_id)
            if cached is not None and cached.scored_from(record.score_inputs(), weights.version):
                return cached
        breakdown = ScoringEngine.score(record, weights)
        if scores is not None:
            scores[record.user_id] = breakdown
        return breakdown
