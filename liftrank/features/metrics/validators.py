"""
Ingestion-side validation for metric updates, user ids and pagination.

Invalid input is rejected as a whole; nothing is written on failure.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from liftrank.core.errors import ValidationError
from liftrank.models.metrics import as_utc

USER_ID_MAX_LENGTH = 128
_USER_ID_RE = re.compile(r"^[a-zA-Z0-9_-]+$")


class MetricUpdate(BaseModel):
    """Partial MetricRecord as sent by the workout tracker (camelCase keys)."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    max_weight_lifted: Optional[float] = Field(None, alias="maxWeightLifted", ge=0, le=10_000, allow_inf_nan=False)
    total_workouts: Optional[int] = Field(None, alias="totalWorkouts", ge=0, le=100_000)
    workout_streak: Optional[int] = Field(None, alias="workoutStreak", ge=0, le=10_000)
    consistency_score: Optional[float] = Field(None, alias="consistencyScore", ge=0, le=100, allow_inf_nan=False)
    improvement_rate: Optional[float] = Field(None, alias="improvementRate", ge=0, le=1_000, allow_inf_nan=False)
    total_calories_burned: Optional[float] = Field(None, alias="totalCaloriesBurned", ge=0, le=10_000_000, allow_inf_nan=False)
    average_heart_rate: Optional[float] = Field(None, alias="averageHeartRate", ge=0, le=250, allow_inf_nan=False)
    flexibility_score: Optional[float] = Field(None, alias="flexibilityScore", ge=0, le=100, allow_inf_nan=False)
    endurance_score: Optional[float] = Field(None, alias="enduranceScore", ge=0, le=100, allow_inf_nan=False)
    last_workout_date: Optional[datetime] = Field(None, alias="lastWorkoutDate")

    @field_validator("last_workout_date")
    @classmethod
    def _aware(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


def _format_pydantic_errors(exc: pydantic.ValidationError) -> list:
    details = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()))
        details.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return details


def validate_metric_update(payload: Any, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Validate a partial metric update.

    Returns:
        Dict of snake_case MetricRecord attributes that were present in the payload.

    Raises:
        ValidationError: payload is not an object, has unknown keys, negative or
            out-of-range values, or a lastWorkoutDate in the future.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Metrics data must be an object")

    # Client-supplied identity fields are ignored; the caller's identity comes from auth.
    cleaned = {k: v for k, v in payload.items() if k not in {"userId", "lastUpdated", "timestamp"}}
    if not cleaned:
        raise ValidationError("No metric fields provided")

    try:
        update = MetricUpdate.model_validate(cleaned)
    except pydantic.ValidationError as exc:
        raise ValidationError("Invalid metrics data", details=_format_pydantic_errors(exc))

    changes = update.model_dump(exclude_unset=True, by_alias=False)
    reference = as_utc(now) or datetime.now(timezone.utc)
    workout_date = changes.get("last_workout_date")
    if workout_date is not None and workout_date > reference:
        raise ValidationError("Invalid metrics data", details=["lastWorkoutDate cannot be in the future"])
    return changes


def validate_user_id(user_id: Any) -> str:
    if not isinstance(user_id, str) or not user_id.strip():
        raise ValidationError("User ID must be a non-empty string")
    user_id = user_id.strip()
    if len(user_id) > USER_ID_MAX_LENGTH:
        raise ValidationError(f"User ID cannot exceed {USER_ID_MAX_LENGTH} characters")
    if not _USER_ID_RE.match(user_id):
        raise ValidationError("User ID can only contain letters, numbers, underscores, and hyphens")
    return user_id


def validate_pagination(limit: Any, offset: Any, *, max_limit: int = 1000) -> Tuple[int, int]:
    errors = []
    try:
        limit = int(limit)
        if limit < 1 or limit > max_limit:
            errors.append(f"Limit must be a positive integer between 1 and {max_limit}")
    except (TypeError, ValueError):
        errors.append(f"Limit must be a positive integer between 1 and {max_limit}")
    try:
        offset = int(offset)
        if offset < 0:
            errors.append("Offset must be a non-negative integer")
    except (TypeError, ValueError):
        errors.append("Offset must be a non-negative integer")
    if errors:
        raise ValidationError("Invalid pagination parameters", details=errors)
    return limit, offset
