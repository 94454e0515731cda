"""
Ranking Scoring Engine

Pure, deterministic computation of a composite fitness score.
No external calls, no randomness, no side effects.

Scoring philosophy:
- Nine raw metrics are normalized to 0..100 (clamped)
- Normalized components are averaged into four pillars
- Each pillar is multiplied by its weight; total = sum of pillars, 0..100

Missing or zero metrics score 0, never an error.
"""

import math
from typing import Dict, List

from liftrank.models.metrics import MetricRecord
from liftrank.models.ranking import PILLARS, ScoreBreakdown, WeightConfig


class ScoringEngine:
    """Pure deterministic ranking score computation."""

    # Normalization benchmarks
    STRENGTH_BENCHMARK = 500.0  # kg lifted for a full strength component
    WORKOUTS_BENCHMARK = 100.0
    STREAK_BENCHMARK = 30.0  # days
    CALORIES_BENCHMARK = 100_000.0
    TARGET_HEART_RATE = 140.0
    HEART_RATE_FALLOFF = 2.0  # points lost per bpm away from target

    # Insight thresholds (percent of the pillar's maximum)
    NEEDS_WORK_BELOW = 50.0
    EXCELLENT_ABOVE = 80.0

    @staticmethod
    def score(metrics: MetricRecord, weights: WeightConfig) -> ScoreBreakdown:
        """
        Compute the composite score for one user.

        Args:
            metrics: The user's current MetricRecord
            weights: Active WeightConfig (validated here)

        Returns:
            ScoreBreakdown with pillar scores, total and normalized components

        Raises:
            ConfigError: weights are invalid
        """
        weights.validate()
        components = ScoringEngine.normalize(metrics)

        strength = components["strength"] * weights.strength
        stamina = ScoringEngine._mean(components["endurance"], components["heartRate"]) * weights.stamina
        consistency = ScoringEngine._mean(
            components["workouts"], components["streak"], components["consistency"]
        ) * weights.consistency
        improvement = ScoringEngine._mean(components["improvement"], components["calories"]) * weights.improvement

        return ScoreBreakdown(
            total_score=strength + stamina + consistency + improvement,
            strength_score=strength,
            stamina_score=stamina,
            consistency_score=consistency,
            improvement_score=improvement,
            breakdown=components,
            weights_version=weights.version,
            inputs=metrics.score_inputs(),
        )

    @staticmethod
    def normalize(metrics: MetricRecord) -> Dict[str, float]:
        """Map raw metrics to nine 0..100 components."""
        heart_rate = 100.0 - abs(
            ScoringEngine._value(metrics.average_heart_rate) - ScoringEngine.TARGET_HEART_RATE
        ) / ScoringEngine.HEART_RATE_FALLOFF
        return {
            "strength": ScoringEngine._ratio(metrics.max_weight_lifted, ScoringEngine.STRENGTH_BENCHMARK),
            "workouts": ScoringEngine._ratio(metrics.total_workouts, ScoringEngine.WORKOUTS_BENCHMARK),
            "streak": ScoringEngine._ratio(metrics.workout_streak, ScoringEngine.STREAK_BENCHMARK),
            "consistency": ScoringEngine._clamp(ScoringEngine._value(metrics.consistency_score)),
            "improvement": ScoringEngine._clamp(ScoringEngine._value(metrics.improvement_rate)),
            "calories": ScoringEngine._ratio(metrics.total_calories_burned, ScoringEngine.CALORIES_BENCHMARK),
            "heartRate": ScoringEngine._clamp(heart_rate),
            "flexibility": ScoringEngine._clamp(ScoringEngine._value(metrics.flexibility_score)),
            "endurance": ScoringEngine._clamp(ScoringEngine._value(metrics.endurance_score)),
        }

    @staticmethod
    def pillar_percentages(breakdown: ScoreBreakdown, weights: WeightConfig) -> Dict[str, float]:
        """Each pillar score as a percentage of what that pillar can contribute."""
        percentages = {}
        for pillar in PILLARS:
            weight = getattr(weights, pillar)
            pillar_score = getattr(breakdown, f"{pillar}_score")
            percentages[pillar] = (pillar_score / weight * 100.0) if weight > 0 else 0.0
        return percentages

    @staticmethod
    def insights(breakdown: ScoreBreakdown, weights: WeightConfig) -> Dict[str, List[str]]:
        """
        Human-readable insights and recommendations for a score.

        Pillars with zero weight are skipped; they cannot move the ranking.
        """
        percentages = ScoringEngine.pillar_percentages(breakdown, weights)
        insights: List[str] = []
        recommendations: List[str] = []

        def needs_work(pillar: str) -> bool:
            return getattr(weights, pillar) > 0 and percentages[pillar] < ScoringEngine.NEEDS_WORK_BELOW

        if needs_work("strength"):
            insights.append("Your strength score is below average")
            recommendations.append("Focus on progressive overload in your strength training")
        elif weights.strength > 0 and percentages["strength"] > ScoringEngine.EXCELLENT_ABOVE:
            insights.append("Excellent strength performance!")
            recommendations.append("Consider increasing weight or adding more challenging exercises")

        if needs_work("stamina"):
            insights.append("Your endurance could be improved")
            recommendations.append("Add more cardio sessions and reduce rest time between sets")

        if needs_work("consistency"):
            insights.append("Workout consistency needs improvement")
            recommendations.append("Set a regular workout schedule and stick to it")

        if needs_work("improvement"):
            insights.append("Your progress rate is slower than average")
            recommendations.append("Review your training program and consider increasing intensity")

        return {"insights": insights, "recommendations": recommendations}

    @staticmethod
    def _value(raw) -> float:
        if raw is None:
            return 0.0
        value = float(raw)
        return value if math.isfinite(value) else 0.0

    @staticmethod
    def _clamp(value: float) -> float:
        return max(0.0, min(100.0, value))

    @staticmethod
    def _ratio(raw, benchmark: float) -> float:
        return ScoringEngine._clamp(min(ScoringEngine._value(raw) / benchmark, 1.0) * 100.0)

    @staticmethod
    def _mean(*values: float) -> float:
        return sum(values) / len(values)
