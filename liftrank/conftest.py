# liftrank/conftest.py
import os
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi.testclient import TestClient

from liftrank.core.config import settings
from liftrank.core.metrics import METRICS
from liftrank.features.profiles.service import profile_directory
from liftrank.features.ranking.aggregator import RankingAggregator
from liftrank.features.ranking.service import RankingService, set_ranking_service
from liftrank.features.ranking.tiers import TierClassifier
from liftrank.models.metrics import MetricRecord

TEST_JWT_SECRET = "test-jwt-secret"
TEST_ADMIN_KEY = "test-admin-key-123"

# Fixed clock so activity windows are reproducible
FIXED_NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def db_url():
    """
    Provide DATABASE_URL for tests.

    Returns the URL from environment, or None if not set.
    Tests that need SQL use an in-memory SQLite engine instead.
    """
    return os.getenv("DATABASE_URL")


@pytest.fixture(autouse=True)
def reset_metrics():
    METRICS.reset()
    yield


@pytest.fixture
def fixed_now():
    return FIXED_NOW


@pytest.fixture
def make_record():
    """Factory for MetricRecords with sensible defaults."""

    def _make(user_id: str, **fields) -> MetricRecord:
        fields.setdefault("last_workout_date", FIXED_NOW - timedelta(days=1))
        return MetricRecord(user_id=user_id, **fields)

    return _make


@pytest.fixture
def ranking_service():
    """
    Fresh in-memory RankingService installed as the process-wide service.

    Uses the fixed clock and the shared profile directory (so auth claims flow
    into entries), and restores the previous global afterwards.
    """
    profile_directory.clear()
    service = RankingService(
        aggregator=RankingAggregator(TierClassifier()),
        profiles=profile_directory,
        policy="immediate",
        clock=lambda: FIXED_NOW,
    )
    set_ranking_service(service)
    yield service
    set_ranking_service(None)
    profile_directory.clear()


@pytest.fixture
def deferred_service(ranking_service):
    ranking_service.policy = "deferred"
    return ranking_service


@pytest.fixture
def client(ranking_service):
    from liftrank.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_settings():
    """Enable the legacy admin key and a JWT secret for the duration of a test."""
    original = {
        "ADMIN_KEY": settings.ADMIN_KEY,
        "ADMIN_AUTH_MODE": settings.ADMIN_AUTH_MODE,
        "ENVIRONMENT": settings.ENVIRONMENT,
        "JWT_SECRET_KEY": settings.JWT_SECRET_KEY,
        "RECALC_QUEUE_ENABLED": settings.RECALC_QUEUE_ENABLED,
    }
    settings.ADMIN_KEY = TEST_ADMIN_KEY
    settings.ADMIN_AUTH_MODE = "hybrid"
    settings.ENVIRONMENT = "dev"
    settings.JWT_SECRET_KEY = TEST_JWT_SECRET
    settings.RECALC_QUEUE_ENABLED = False
    try:
        yield settings
    finally:
        for key, value in original.items():
            setattr(settings, key, value)


@pytest.fixture
def admin_headers(admin_settings):
    return {"X-Admin-Key": TEST_ADMIN_KEY}


@pytest.fixture
def make_token(admin_settings):
    """Create HS256 bearer tokens signed with the test secret."""

    def _make(sub: str, *, expires_in: int = 3600, **claims) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": sub,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=expires_in)).timestamp()),
            **claims,
        }
        return jwt.encode(payload, TEST_JWT_SECRET, algorithm="HS256")

    return _make
