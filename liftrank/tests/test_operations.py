"""
Operational pieces around the ranking service: background scheduler,
weights registry, config validation, RQ queue client, worker entrypoint and
the seeding script.
"""

import logging
import random
from datetime import datetime, timezone

import pytest

from liftrank.core.config import Settings, validate_config
from liftrank.core.errors import ConfigError, RecalculationTimeoutError, ValidationError
from liftrank.core.metrics import weights_version
from liftrank.features.metrics.validators import validate_metric_update
from liftrank.features.ranking.scheduler import RecalculationScheduler
from liftrank.features.ranking.service import RankingService
from liftrank.features.weights.service import WeightConfigService
from liftrank.realtime.hub import LeaderboardHub
from liftrank.scripts.seed_metrics import main as seed_main, synthetic_metrics
from liftrank.workers import queue_client, recalculate_rankings


class TestScheduler:
    def test_interval_must_be_positive(self, deferred_service):
        with pytest.raises(ValueError):
            RecalculationScheduler(deferred_service, 0)

    @pytest.mark.asyncio
    async def test_tick_skips_when_clean(self, deferred_service):
        scheduler = RecalculationScheduler(deferred_service, 60)

        assert await scheduler.tick() is False
        assert deferred_service.get_snapshot() is None

    @pytest.mark.asyncio
    async def test_tick_recalculates_dirty(self, deferred_service):
        await deferred_service.submit_metric_update("user_a", {"maxWeightLifted": 150})
        scheduler = RecalculationScheduler(deferred_service, 60)

        assert await scheduler.tick() is True
        assert deferred_service.has_dirty is False
        assert deferred_service.get_user_ranking("user_a").current_rank == 1

    @pytest.mark.asyncio
    async def test_failed_tick_keeps_dirty(self, deferred_service):
        await deferred_service.submit_metric_update("user_a", {"maxWeightLifted": 150})

        def timed_out(*args, **kwargs):
            raise RecalculationTimeoutError("too slow")

        deferred_service.aggregator.recompute = timed_out
        scheduler = RecalculationScheduler(deferred_service, 60)

        assert await scheduler.tick() is False
        assert deferred_service.has_dirty is True

    @pytest.mark.asyncio
    async def test_sync_only_tick_forwards_worker_snapshots(self, deferred_service):
        await deferred_service.submit_metric_update("user_a", {"maxWeightLifted": 150})
        worker = RankingService(
            metric_store=deferred_service.metric_store,
            hub=LeaderboardHub(deferred_service.hub.store),
            clock=deferred_service.clock,
        )
        await worker.recalculate_all()
        received = []
        deferred_service.hub.subscribe("overall", lambda s: received.append(s.sequence))
        scheduler = RecalculationScheduler(deferred_service, 60, recalculate=False)

        assert await scheduler.tick() is False
        assert received == [1]
        assert deferred_service.get_user_ranking("user_a").current_rank == 1
        assert deferred_service.has_dirty is True

    @pytest.mark.asyncio
    async def test_start_and_stop(self, deferred_service):
        scheduler = RecalculationScheduler(deferred_service, 0.01)

        scheduler.start()
        assert scheduler.running is True
        await scheduler.stop()

        assert scheduler.running is False


class TestWeightConfigService:
    def test_defaults(self):
        config = WeightConfigService().current()

        assert (config.strength, config.stamina, config.consistency, config.improvement) == (0.3, 0.25, 0.25, 0.2)
        assert config.version == 1

    def test_update_bumps_version(self):
        service = WeightConfigService()
        now = datetime(2025, 6, 15, tzinfo=timezone.utc)

        config = service.update({"strength": 0.25, "stamina": 0.25, "consistency": 0.25, "improvement": 0.25}, now=now)

        assert config.version == 2
        assert config.last_updated == now
        assert service.current() is config
        assert weights_version.value() == 2

    def test_sum_within_tolerance_accepted(self):
        service = WeightConfigService()

        config = service.update({"strength": 0.305, "stamina": 0.25, "consistency": 0.25, "improvement": 0.2})

        assert config.version == 2

    @pytest.mark.parametrize(
        "weights",
        [
            {"strength": 0.5, "stamina": 0.5, "consistency": 0.5, "improvement": 0.5},
            {"strength": -0.1, "stamina": 0.5, "consistency": 0.3, "improvement": 0.3},
            {"strength": float("nan"), "stamina": 0.25, "consistency": 0.25, "improvement": 0.25},
            {"strength": "heavy", "stamina": 0.25, "consistency": 0.25, "improvement": 0.25},
        ],
    )
    def test_invalid_weights_rejected(self, weights):
        service = WeightConfigService()

        with pytest.raises(ConfigError):
            service.update(weights)

        assert service.current().version == 1

    def test_non_mapping_rejected(self):
        with pytest.raises(ValidationError):
            WeightConfigService().update([0.25, 0.25, 0.25, 0.25])


class TestConfig:
    def test_missing_keys_warn(self, caplog):
        cfg = Settings(DATABASE_URL=None, JWT_SECRET_KEY=None, ADMIN_KEY=None)

        with caplog.at_level(logging.WARNING, logger="liftrank"):
            assert validate_config(strict=False, settings_obj=cfg) is True

        assert "DATABASE_URL" in caplog.text

    def test_strict_mode_raises(self):
        cfg = Settings(DATABASE_URL=None, JWT_SECRET_KEY="secret", ADMIN_KEY="key")

        with pytest.raises(RuntimeError):
            validate_config(strict=True, settings_obj=cfg)

    def test_unknown_policy_rejected(self):
        cfg = Settings(DATABASE_URL="sqlite://", JWT_SECRET_KEY="secret", ADMIN_KEY="key", RANKING_UPDATE_POLICY="lazy")

        with pytest.raises(RuntimeError):
            validate_config(strict=True, settings_obj=cfg)

    def test_complete_config_passes(self):
        cfg = Settings(DATABASE_URL="sqlite://", JWT_SECRET_KEY="secret", ADMIN_KEY="key")

        assert validate_config(strict=True, settings_obj=cfg) is True

    def test_deferred_without_interval_warns(self, caplog):
        cfg = Settings(
            DATABASE_URL="sqlite://",
            JWT_SECRET_KEY="secret",
            ADMIN_KEY="key",
            RANKING_UPDATE_POLICY="deferred",
            RECALC_INTERVAL_SECONDS=0,
        )

        with caplog.at_level(logging.WARNING, logger="liftrank"):
            assert validate_config(strict=True, settings_obj=cfg) is True

        assert "RECALC_INTERVAL_SECONDS=0" in caplog.text

    def test_deferred_with_interval_is_quiet(self, caplog):
        cfg = Settings(
            DATABASE_URL="sqlite://",
            JWT_SECRET_KEY="secret",
            ADMIN_KEY="key",
            RANKING_UPDATE_POLICY="deferred",
            RECALC_INTERVAL_SECONDS=30,
        )

        with caplog.at_level(logging.WARNING, logger="liftrank"):
            validate_config(strict=True, settings_obj=cfg)

        assert caplog.text == ""

    def test_hub_limits_come_from_settings(self):
        cfg = Settings(DATABASE_URL=None, WS_PUSH_LIMIT=10, WS_MAX_SOCKETS_PER_COHORT=3)

        service = RankingService.from_settings(cfg)

        assert service.hub.push_limit == 10
        assert service.hub.max_sockets_per_cohort == 3
        assert service.hub.refresh_seconds is None


class TestQueue:
    def test_enqueue_uses_job_path(self):
        class FakeJob:
            id = "job-1"

        class FakeQueue:
            def __init__(self):
                self.calls = []

            def enqueue(self, func, **kwargs):
                self.calls.append((func, kwargs))
                return FakeJob()

        queue = FakeQueue()

        assert queue_client.enqueue_recalculation(queue) == "job-1"
        func, kwargs = queue.calls[0]
        assert func == "liftrank.workers.recalculate_rankings.run_recalculation"
        assert kwargs["job_timeout"] == "10m"

    def test_worker_requires_database(self, monkeypatch):
        monkeypatch.setattr(recalculate_rankings.settings, "DATABASE_URL", None)

        with pytest.raises(RuntimeError):
            recalculate_rankings.run_recalculation()


class TestSeedScript:
    def test_synthetic_metrics_are_valid(self):
        rng = random.Random(7)
        now = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)

        for _ in range(25):
            changes = validate_metric_update(synthetic_metrics(rng, now), now=now)
            assert changes["last_workout_date"] <= now

    def test_users_must_be_positive(self):
        with pytest.raises(SystemExit):
            seed_main(["--users", "0"])
