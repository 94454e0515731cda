"""
Tier classification tests: fixed points, threshold edges, invalid input.
"""

import pytest

from liftrank.core.errors import ConfigError, ValidationError
from liftrank.features.ranking.tiers import TierClassifier
from liftrank.models.ranking import Tier


@pytest.fixture
def classifier():
    return TierClassifier()


@pytest.mark.parametrize(
    "rank,expected",
    [
        (1, Tier.DIAMOND),
        (5, Tier.DIAMOND),
        (6, Tier.PLATINUM),
        (15, Tier.PLATINUM),
        (16, Tier.GOLD),
        (30, Tier.GOLD),
        (31, Tier.SILVER),
        (50, Tier.SILVER),
        (51, Tier.BRONZE),
        (100, Tier.BRONZE),
    ],
)
def test_hundred_user_boundaries(classifier, rank, expected):
    assert classifier.classify(rank, 100) == expected


def test_sole_user_is_diamond(classifier):
    assert classifier.classify(1, 1) == Tier.DIAMOND


def test_two_users(classifier):
    assert classifier.classify(1, 2) == Tier.SILVER
    assert classifier.classify(2, 2) == Tier.BRONZE


def test_twenty_users_top_rank_is_diamond(classifier):
    # 19 of 20 ranked below => exactly 0.95
    assert classifier.classify(1, 20) == Tier.DIAMOND
    assert classifier.classify(2, 20) == Tier.PLATINUM


def test_tiers_monotone_in_rank(classifier):
    order = [Tier.DIAMOND, Tier.PLATINUM, Tier.GOLD, Tier.SILVER, Tier.BRONZE]
    total = 37
    positions = [order.index(classifier.classify(rank, total)) for rank in range(1, total + 1)]
    assert positions == sorted(positions)


@pytest.mark.parametrize("rank,total", [(0, 10), (11, 10), (-1, 5), (1, 0)])
def test_invalid_rank_raises(classifier, rank, total):
    with pytest.raises(ValidationError):
        classifier.classify(rank, total)


def test_non_integer_rank_raises(classifier):
    with pytest.raises(ValidationError):
        classifier.classify(1.5, 10)


def test_custom_thresholds():
    classifier = TierClassifier({"Diamond": 0.99, "Platinum": 0.9, "Gold": 0.8, "Silver": 0.6})
    assert classifier.classify(5, 100) == Tier.PLATINUM
    assert classifier.thresholds["Diamond"] == 0.99


@pytest.mark.parametrize(
    "thresholds",
    [
        {"Diamond": 1.5},
        {"Diamond": 0.5, "Platinum": 0.85},
        {"Mythic": 0.99},
        {"Gold": "high"},
    ],
)
def test_invalid_thresholds_raise_config_error(thresholds):
    with pytest.raises(ConfigError):
        TierClassifier(thresholds)


def test_percentile_share_below(classifier):
    assert TierClassifier.percentile(5, 100) == 0.95
    assert TierClassifier.percentile(100, 100) == 0.0


@pytest.mark.parametrize(
    "rank,total,expected",
    [(1, 100, 100), (5, 100, 96), (100, 100, 1), (1, 1, 100), (2, 8, 88), (4, 4, 25)],
)
def test_percentile_rank_counts_the_user(rank, total, expected):
    assert TierClassifier.percentile_rank(rank, total) == expected


def test_percentile_rank_validates_rank():
    with pytest.raises(ValidationError):
        TierClassifier.percentile_rank(0, 10)
