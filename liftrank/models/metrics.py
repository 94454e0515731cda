"""
Fitness metric domain model.

One MetricRecord per user, owned by the ingestion path (workout completion,
admin import). The ranking engine only reads it.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple


# camelCase wire name -> dataclass attribute
WIRE_FIELDS: Dict[str, str] = {
    "maxWeightLifted": "max_weight_lifted",
    "totalWorkouts": "total_workouts",
    "workoutStreak": "workout_streak",
    "consistencyScore": "consistency_score",
    "improvementRate": "improvement_rate",
    "totalCaloriesBurned": "total_calories_burned",
    "averageHeartRate": "average_heart_rate",
    "flexibilityScore": "flexibility_score",
    "enduranceScore": "endurance_score",
    "lastWorkoutDate": "last_workout_date",
}

SCORED_FIELDS: Tuple[str, ...] = tuple(attr for attr in WIRE_FIELDS.values() if attr != "last_workout_date")


def as_utc(moment: Optional[datetime]) -> Optional[datetime]:
    """Normalize to an aware UTC datetime (naive values are assumed UTC)."""
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


@dataclass(frozen=True)
class MetricRecord:
    user_id: str
    max_weight_lifted: float = 0.0
    total_workouts: int = 0
    workout_streak: int = 0
    consistency_score: float = 0.0  # 0..100, supplied by the workout tracker
    improvement_rate: float = 0.0  # percent
    total_calories_burned: float = 0.0
    average_heart_rate: float = 0.0
    flexibility_score: float = 0.0
    endurance_score: float = 0.0
    last_workout_date: Optional[datetime] = None
    last_updated: Optional[datetime] = None

    def score_inputs(self) -> Tuple[float, ...]:
        """The values a score is computed from; equal inputs give an equal score."""
        values = (getattr(self, attr) for attr in SCORED_FIELDS)
        return tuple(0.0 if value is None else float(value) for value in values)

    def merged(self, changes: Dict[str, Any], *, now: Optional[datetime] = None) -> "MetricRecord":
        """Return a copy with `changes` (snake_case attributes) applied."""
        known = {f.name for f in fields(self)} - {"user_id", "last_updated"}
        unknown = set(changes) - known
        if unknown:
            raise KeyError(f"Unknown metric fields: {', '.join(sorted(unknown))}")
        updates = dict(changes)
        if "last_workout_date" in updates:
            updates["last_workout_date"] = as_utc(updates["last_workout_date"])
        updates["last_updated"] = as_utc(now) or datetime.now(timezone.utc)
        return replace(self, **updates)

    def to_dict(self) -> dict:
        payload: Dict[str, Any] = {"userId": self.user_id}
        for wire, attr in WIRE_FIELDS.items():
            value = getattr(self, attr)
            payload[wire] = value.isoformat() if isinstance(value, datetime) else value
        payload["lastUpdated"] = self.last_updated.isoformat() if self.last_updated else None
        return payload
