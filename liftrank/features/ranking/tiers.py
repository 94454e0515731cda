"""
Percentile tier classification.

percentile = (total_users - rank) / total_users, the share of the cohort
ranked strictly below the user. Thresholds are checked top-down and the
first tier whose threshold is met (>=) wins; anything below the lowest
threshold is Bronze. A sole user is Diamond.

The percentile shown to users is percentile_rank: the share ranked at or
below the user, as a rounded 0..100 number (rank 1 of 100 -> 100).
"""

import math
from typing import Dict, List, Mapping, Optional, Tuple

from liftrank.core.config import DEFAULT_TIER_THRESHOLDS
from liftrank.core.errors import ConfigError, ValidationError
from liftrank.models.ranking import Tier


_ORDERED_TIERS: Tuple[Tier, ...] = (Tier.DIAMOND, Tier.PLATINUM, Tier.GOLD, Tier.SILVER)


class TierClassifier:
    def __init__(self, thresholds: Optional[Mapping[str, float]] = None):
        merged: Dict[str, float] = dict(DEFAULT_TIER_THRESHOLDS)
        if thresholds:
            merged.update(thresholds)
        self._thresholds: List[Tuple[Tier, float]] = self._validated(merged)

    @staticmethod
    def _validated(thresholds: Dict[str, float]) -> List[Tuple[Tier, float]]:
        errors = []
        ordered = []
        for tier in _ORDERED_TIERS:
            value = thresholds.get(tier.value)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or not math.isfinite(value):
                errors.append(f"{tier.value} threshold must be a finite number")
                continue
            if value < 0 or value > 1:
                errors.append(f"{tier.value} threshold must be between 0 and 1")
            ordered.append((tier, float(value)))
        unknown = set(thresholds) - {tier.value for tier in _ORDERED_TIERS}
        if unknown:
            errors.append(f"Unknown tiers: {', '.join(sorted(unknown))}")
        if not errors:
            values = [value for _, value in ordered]
            if any(higher < lower for higher, lower in zip(values, values[1:])):
                errors.append("Tier thresholds must be descending from Diamond to Silver")
        if errors:
            raise ConfigError("Invalid tier thresholds", details=errors)
        return ordered

    @property
    def thresholds(self) -> Dict[str, float]:
        return {tier.value: value for tier, value in self._thresholds}

    @staticmethod
    def percentile(rank: int, total_users: int) -> float:
        TierClassifier._check(rank, total_users)
        return (total_users - rank) / total_users

    @staticmethod
    def percentile_rank(rank: int, total_users: int) -> int:
        TierClassifier._check(rank, total_users)
        # Half rounds up
        return int(math.floor((total_users - rank + 1) / total_users * 100 + 0.5))

    def classify(self, rank: int, total_users: int) -> Tier:
        """
        Tier for a 1-based rank within a cohort of total_users.

        Raises:
            ValidationError: rank < 1, total_users < 1, or rank > total_users
        """
        self._check(rank, total_users)
        if total_users == 1:
            return Tier.DIAMOND
        share_below = (total_users - rank) / total_users
        for tier, threshold in self._thresholds:
            if share_below >= threshold:
                return tier
        return Tier.BRONZE

    @staticmethod
    def _check(rank, total_users) -> None:
        for name, value in (("rank", rank), ("total_users", total_users)):
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValidationError(f"{name} must be an integer")
        if total_users < 1:
            raise ValidationError("total_users must be at least 1")
        if rank < 1 or rank > total_users:
            raise ValidationError(f"rank must be between 1 and {total_users}")
