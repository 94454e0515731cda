"""
Ranking domain models.

Everything here is derived from MetricRecords plus the active WeightConfig.
Snapshots are immutable: a new aggregation run produces a new snapshot that
replaces the old one as a whole.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Literal, Optional, Tuple

from liftrank.core.errors import ConfigError


CohortType = Literal["overall", "weekly", "monthly"]
COHORT_TYPES: Tuple[str, ...] = ("overall", "weekly", "monthly")

RankChange = Literal["up", "down", "none"]

WEIGHT_SUM_TOLERANCE = 0.01
PILLARS: Tuple[str, ...] = ("strength", "stamina", "consistency", "improvement")


class Tier(str, Enum):
    DIAMOND = "Diamond"
    PLATINUM = "Platinum"
    GOLD = "Gold"
    SILVER = "Silver"
    BRONZE = "Bronze"


@dataclass(frozen=True)
class WeightConfig:
    """Global pillar weights. Versioned; every score records the version it used."""

    strength: float = 0.30
    stamina: float = 0.25
    consistency: float = 0.25
    improvement: float = 0.20
    version: int = 1
    last_updated: Optional[datetime] = None

    def validate(self) -> None:
        """Raise ConfigError unless all weights are finite, non-negative and sum to 1 ± 0.01."""
        errors = []
        for name in PILLARS:
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or not math.isfinite(value):
                errors.append(f"{name} weight must be a finite number")
            elif value < 0 or value > 1:
                errors.append(f"{name} weight must be between 0 and 1")
        if not errors:
            total = self.total()
            if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
                errors.append(f"Weights must sum to 1.0 (got {total:.4f})")
        if errors:
            raise ConfigError("Invalid ranking weights", details=errors)

    def total(self) -> float:
        return self.strength + self.stamina + self.consistency + self.improvement

    def to_dict(self) -> dict:
        return {
            "strength": self.strength,
            "stamina": self.stamina,
            "consistency": self.consistency,
            "improvement": self.improvement,
            "version": self.version,
            "lastUpdated": self.last_updated.isoformat() if self.last_updated else None,
        }


@dataclass(frozen=True)
class ScoreBreakdown:
    """
    Composite score for one user.

    Attributes:
        total_score: Sum of the four pillar scores, 0..100
        strength_score / stamina_score / consistency_score / improvement_score:
            Pillar averages multiplied by the pillar weight
        breakdown: Nine normalized 0..100 component values
        weights_version: WeightConfig.version used for this computation
        inputs: MetricRecord.score_inputs() of the record that was scored
    """

    total_score: float
    strength_score: float
    stamina_score: float
    consistency_score: float
    improvement_score: float
    breakdown: Dict[str, float] = field(default_factory=dict)
    weights_version: int = 0
    inputs: Tuple[float, ...] = ()

    def scored_from(self, inputs: Tuple[float, ...], weights_version: int) -> bool:
        return self.weights_version == weights_version and self.inputs == inputs

    def to_dict(self) -> dict:
        return {
            "totalScore": round(self.total_score, 2),
            "strengthScore": round(self.strength_score, 2),
            "staminaScore": round(self.stamina_score, 2),
            "consistencyScore": round(self.consistency_score, 2),
            "improvementScore": round(self.improvement_score, 2),
            "breakdown": {k: round(v, 2) for k, v in self.breakdown.items()},
            "weightsVersion": self.weights_version,
        }


@dataclass(frozen=True)
class RankingEntry:
    user_id: str
    display_name: str
    photo_url: Optional[str]
    score: float
    tier: Tier
    current_rank: int
    previous_rank: Optional[int]
    rank_change: RankChange
    rank_delta: int
    total_users: int
    strength_score: float = 0.0
    stamina_score: float = 0.0
    consistency_score: float = 0.0
    improvement_score: float = 0.0

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "displayName": self.display_name,
            "photoURL": self.photo_url,
            "score": round(self.score, 2),
            "tier": self.tier.value,
            "currentRank": self.current_rank,
            "previousRank": self.previous_rank,
            "rankChange": self.rank_change,
            "rankDelta": self.rank_delta,
            "totalUsers": self.total_users,
            "strengthScore": round(self.strength_score, 2),
            "staminaScore": round(self.stamina_score, 2),
            "consistencyScore": round(self.consistency_score, 2),
            "improvementScore": round(self.improvement_score, 2),
        }

    def to_record(self) -> dict:
        """Unrounded form used for persistence."""
        return {
            "userId": self.user_id,
            "displayName": self.display_name,
            "photoURL": self.photo_url,
            "score": self.score,
            "tier": self.tier.value,
            "currentRank": self.current_rank,
            "previousRank": self.previous_rank,
            "rankChange": self.rank_change,
            "rankDelta": self.rank_delta,
            "totalUsers": self.total_users,
            "strengthScore": self.strength_score,
            "staminaScore": self.stamina_score,
            "consistencyScore": self.consistency_score,
            "improvementScore": self.improvement_score,
        }

    @classmethod
    def from_record(cls, data: dict) -> "RankingEntry":
        return cls(
            user_id=data["userId"],
            display_name=data.get("displayName") or "Anonymous",
            photo_url=data.get("photoURL"),
            score=float(data.get("score", 0.0)),
            tier=Tier(data.get("tier", Tier.BRONZE.value)),
            current_rank=int(data["currentRank"]),
            previous_rank=data.get("previousRank"),
            rank_change=data.get("rankChange", "none"),
            rank_delta=int(data.get("rankDelta", 0)),
            total_users=int(data["totalUsers"]),
            strength_score=float(data.get("strengthScore", 0.0)),
            stamina_score=float(data.get("staminaScore", 0.0)),
            consistency_score=float(data.get("consistencyScore", 0.0)),
            improvement_score=float(data.get("improvementScore", 0.0)),
        )


@dataclass(frozen=True)
class LeaderboardSnapshot:
    """
    Fully computed leaderboard for one cohort.

    Attributes:
        type: Cohort name (overall / weekly / monthly)
        rankings: Entries ordered by current_rank
        computed_at: UTC time the aggregation ran
        sequence: Monotonic computation number; higher wins on publish
        weights_version: WeightConfig.version used for every score in the snapshot
        window_start: Start of the activity window (None for overall)
    """

    type: CohortType
    rankings: Tuple[RankingEntry, ...]
    computed_at: datetime
    sequence: int
    weights_version: int
    window_start: Optional[datetime] = None

    @property
    def total_users(self) -> int:
        return len(self.rankings)

    def entry_for(self, user_id: str) -> Optional[RankingEntry]:
        for entry in self.rankings:
            if entry.user_id == user_id:
                return entry
        return None

    def rank_index(self) -> Dict[str, int]:
        return {entry.user_id: entry.current_rank for entry in self.rankings}

    def tier_distribution(self) -> Dict[str, int]:
        counts = {tier.value: 0 for tier in Tier}
        for entry in self.rankings:
            counts[entry.tier.value] += 1
        return counts

    def to_dict(self, limit: Optional[int] = None) -> dict:
        """Wire form. `limit` keeps only the top entries; totalUsers still counts everyone."""
        rankings = self.rankings if limit is None else self.rankings[:limit]
        return {
            "type": self.type,
            "rankings": [entry.to_dict() for entry in rankings],
            "computedAt": self.computed_at.isoformat(),
            "sequence": self.sequence,
            "weightsVersion": self.weights_version,
            "windowStart": self.window_start.isoformat() if self.window_start else None,
            "totalUsers": self.total_users,
        }

    def to_record(self) -> dict:
        return {
            "type": self.type,
            "rankings": [entry.to_record() for entry in self.rankings],
            "computedAt": self.computed_at.isoformat(),
            "sequence": self.sequence,
            "weightsVersion": self.weights_version,
            "windowStart": self.window_start.isoformat() if self.window_start else None,
        }

    @classmethod
    def from_record(cls, data: dict) -> "LeaderboardSnapshot":
        window_start = data.get("windowStart")
        return cls(
            type=data["type"],
            rankings=tuple(RankingEntry.from_record(item) for item in data.get("rankings", [])),
            computed_at=_parse_utc(data["computedAt"]),
            sequence=int(data["sequence"]),
            weights_version=int(data.get("weightsVersion", 0)),
            window_start=_parse_utc(window_start) if window_start else None,
        )


def _parse_utc(raw: str) -> datetime:
    moment = datetime.fromisoformat(raw)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)
