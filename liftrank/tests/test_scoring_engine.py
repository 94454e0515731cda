"""
Scoring Engine Guardrail Tests

Verify:
1. Determinism: same inputs => same score
2. Bounds: every component and the total stay within 0..100
3. Missing data: an empty record scores without error
4. Pillar math: total equals the sum of the weighted pillars
5. Invalid weights are rejected, never auto-corrected
6. Insights: messages follow the pillar percentages
"""

import math

import pytest

from liftrank.core.errors import ConfigError
from liftrank.features.scoring.scoring_engine import ScoringEngine
from liftrank.models.metrics import MetricRecord
from liftrank.models.ranking import WeightConfig


DEFAULT_WEIGHTS = WeightConfig()


def _maxed(user_id: str = "user_max") -> MetricRecord:
    return MetricRecord(
        user_id=user_id,
        max_weight_lifted=900,
        total_workouts=500,
        workout_streak=90,
        consistency_score=100,
        improvement_rate=250,
        total_calories_burned=1_000_000,
        average_heart_rate=140,
        flexibility_score=100,
        endurance_score=100,
    )


class TestScoreScenario:
    """Worked example with default weights."""

    def test_strength_only_user_scores_33_75(self):
        """500 kg lifted, everything else zero => 30 strength + 3.75 stamina."""
        record = MetricRecord(user_id="user_lifter", max_weight_lifted=500)

        breakdown = ScoringEngine.score(record, DEFAULT_WEIGHTS)

        assert breakdown.strength_score == pytest.approx(30.0)
        # heart rate component at 0 bpm is 100 - 140/2 = 30
        assert breakdown.breakdown["heartRate"] == pytest.approx(30.0)
        assert breakdown.stamina_score == pytest.approx(3.75)
        assert breakdown.consistency_score == pytest.approx(0.0)
        assert breakdown.improvement_score == pytest.approx(0.0)
        assert breakdown.total_score == pytest.approx(33.75)

    def test_wire_form_rounds_to_two_decimals(self):
        record = MetricRecord(user_id="user_round", max_weight_lifted=123.456, workout_streak=7)

        wire = ScoringEngine.score(record, DEFAULT_WEIGHTS).to_dict()

        for key in ("totalScore", "strengthScore", "staminaScore", "consistencyScore", "improvementScore"):
            assert wire[key] == round(wire[key], 2)
        assert wire["weightsVersion"] == DEFAULT_WEIGHTS.version


class TestScoreDeterminism:
    def test_same_inputs_same_breakdown(self):
        record = MetricRecord(
            user_id="user_123",
            max_weight_lifted=180,
            total_workouts=42,
            workout_streak=6,
            consistency_score=71.5,
            improvement_rate=12,
            total_calories_burned=24_000,
            average_heart_rate=128,
            flexibility_score=40,
            endurance_score=55,
        )

        first = ScoringEngine.score(record, DEFAULT_WEIGHTS)
        second = ScoringEngine.score(record, DEFAULT_WEIGHTS)

        assert first == second

    def test_weights_version_recorded(self):
        weights = WeightConfig(strength=0.4, stamina=0.2, consistency=0.2, improvement=0.2, version=7)

        breakdown = ScoringEngine.score(MetricRecord(user_id="user_v"), weights)

        assert breakdown.weights_version == 7


class TestScoreBounds:
    def test_empty_record_scores_without_error(self):
        breakdown = ScoringEngine.score(MetricRecord(user_id="user_new"), DEFAULT_WEIGHTS)

        assert 0.0 <= breakdown.total_score <= 100.0
        assert breakdown.strength_score == 0.0

    def test_maxed_record_hits_100(self):
        breakdown = ScoringEngine.score(_maxed(), DEFAULT_WEIGHTS)

        assert breakdown.total_score == pytest.approx(100.0)
        assert all(value == pytest.approx(100.0) for value in breakdown.breakdown.values())

    def test_components_clamped(self):
        record = MetricRecord(
            user_id="user_extreme",
            max_weight_lifted=10_000,
            consistency_score=1000,
            improvement_rate=1000,
            average_heart_rate=400,
            flexibility_score=500,
            endurance_score=500,
        )

        components = ScoringEngine.normalize(record)

        assert set(components) == {
            "strength", "workouts", "streak", "consistency", "improvement",
            "calories", "heartRate", "flexibility", "endurance",
        }
        for name, value in components.items():
            assert 0.0 <= value <= 100.0, name
        assert components["heartRate"] == 0.0

    @pytest.mark.parametrize("heart_rate,expected", [(140, 100.0), (120, 90.0), (160, 90.0), (0, 30.0), (340, 0.0)])
    def test_heart_rate_curve(self, heart_rate, expected):
        components = ScoringEngine.normalize(MetricRecord(user_id="u", average_heart_rate=heart_rate))
        assert components["heartRate"] == pytest.approx(expected)

    def test_total_is_sum_of_pillars(self):
        weights = WeightConfig(strength=0.1, stamina=0.4, consistency=0.3, improvement=0.2)
        record = MetricRecord(
            user_id="user_sum",
            max_weight_lifted=250,
            total_workouts=30,
            workout_streak=12,
            consistency_score=66,
            improvement_rate=8,
            total_calories_burned=50_000,
            average_heart_rate=150,
            endurance_score=70,
        )

        b = ScoringEngine.score(record, weights)

        assert math.isclose(
            b.total_score,
            b.strength_score + b.stamina_score + b.consistency_score + b.improvement_score,
        )


class TestWeightValidation:
    @pytest.mark.parametrize(
        "weights",
        [
            WeightConfig(strength=0.5, stamina=0.5, consistency=0.5, improvement=0.5),
            WeightConfig(strength=-0.1, stamina=0.5, consistency=0.4, improvement=0.2),
            WeightConfig(strength=float("nan"), stamina=0.25, consistency=0.25, improvement=0.2),
            WeightConfig(strength=0.3, stamina=0.25, consistency=0.25, improvement=0.1),
        ],
    )
    def test_invalid_weights_raise_config_error(self, weights):
        with pytest.raises(ConfigError) as exc_info:
            ScoringEngine.score(MetricRecord(user_id="user_w"), weights)
        assert exc_info.value.code == "config_error"
        assert exc_info.value.details

    def test_sum_within_tolerance_accepted(self):
        weights = WeightConfig(strength=0.305, stamina=0.25, consistency=0.25, improvement=0.2)
        ScoringEngine.score(MetricRecord(user_id="user_w"), weights)


class TestInsights:
    def test_weak_user_gets_recommendations(self):
        breakdown = ScoringEngine.score(MetricRecord(user_id="user_weak"), DEFAULT_WEIGHTS)

        advice = ScoringEngine.insights(breakdown, DEFAULT_WEIGHTS)

        assert "Your strength score is below average" in advice["insights"]
        assert "Workout consistency needs improvement" in advice["insights"]
        assert len(advice["insights"]) == len(advice["recommendations"])

    def test_strong_user_gets_praise(self):
        breakdown = ScoringEngine.score(_maxed(), DEFAULT_WEIGHTS)

        advice = ScoringEngine.insights(breakdown, DEFAULT_WEIGHTS)

        assert advice["insights"] == ["Excellent strength performance!"]

    def test_pillar_percentages_scale_by_weight(self):
        breakdown = ScoringEngine.score(MetricRecord(user_id="u", max_weight_lifted=250), DEFAULT_WEIGHTS)

        percentages = ScoringEngine.pillar_percentages(breakdown, DEFAULT_WEIGHTS)

        assert percentages["strength"] == pytest.approx(50.0)
