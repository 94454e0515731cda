"""
SQL-backed stores against an in-memory SQLite engine.
"""

from datetime import datetime, timedelta, timezone

import pytest

from liftrank.core.database import build_engine, check_connection, create_all_tables, drop_all_tables
from liftrank.core.errors import TransientStoreError
from liftrank.features.metrics.store import SqlMetricStore
from liftrank.features.ranking.aggregator import RankingAggregator
from liftrank.features.ranking.service import RankingService
from liftrank.features.ranking.snapshot_store import SqlSnapshotStore
from liftrank.features.scoring.scoring_engine import ScoringEngine
from liftrank.features.weights.service import WeightConfigService
from liftrank.models.ranking import LeaderboardSnapshot
from liftrank.realtime.hub import LeaderboardHub


NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    create_all_tables(engine)
    yield engine
    drop_all_tables(engine)
    engine.dispose()


def test_connection_check(engine):
    assert check_connection(engine) is True


class TestSqlMetricStore:
    def test_insert_then_merge(self, engine):
        store = SqlMetricStore(engine)

        store.apply_update("user_a", {"max_weight_lifted": 120.0}, now=NOW)
        record = store.apply_update(
            "user_a",
            {"workout_streak": 4, "last_workout_date": NOW - timedelta(days=2)},
            now=NOW,
        )

        loaded = store.get("user_a")
        assert loaded == record
        assert loaded.max_weight_lifted == 120.0
        assert loaded.workout_streak == 4
        assert loaded.last_workout_date.tzinfo is not None
        assert loaded.last_workout_date == NOW - timedelta(days=2)

    def test_missing_user(self, engine):
        assert SqlMetricStore(engine).get("nobody") is None

    def test_all_records_sorted(self, engine):
        store = SqlMetricStore(engine)
        for user_id in ("user_c", "user_a", "user_b"):
            store.apply_update(user_id, {"total_workouts": 1}, now=NOW)

        assert [r.user_id for r in store.all_records()] == ["user_a", "user_b", "user_c"]
        assert store.count() == 3

    def test_unknown_field_rejected(self, engine):
        with pytest.raises(KeyError):
            SqlMetricStore(engine).apply_update("user_a", {"bench_press": 1}, now=NOW)

    def test_database_errors_are_transient(self, engine):
        store = SqlMetricStore(engine)
        drop_all_tables(engine)

        with pytest.raises(TransientStoreError):
            store.get("user_a")
        with pytest.raises(TransientStoreError):
            store.apply_update("user_a", {"total_workouts": 1}, now=NOW)

        create_all_tables(engine)


class TestSqlWeights:
    def test_weights_persist_across_instances(self, engine):
        first = WeightConfigService(engine, persist=True)
        assert first.current().version == 1

        first.update({"strength": 0.4, "stamina": 0.2, "consistency": 0.2, "improvement": 0.2})

        second = WeightConfigService(engine, persist=True)
        assert second.current().version == 2
        assert second.current().strength == 0.4


class TestSqlSnapshots:
    @pytest.mark.asyncio
    async def test_snapshots_survive_restart(self, engine):
        service = RankingService(
            metric_store=SqlMetricStore(engine),
            hub=LeaderboardHub(SqlSnapshotStore(engine)),
            weights=WeightConfigService(engine, persist=True),
            aggregator=RankingAggregator(),
            clock=lambda: NOW,
        )
        await service.submit_metric_update("user_a", {"maxWeightLifted": 500})
        await service.submit_metric_update("user_b", {"maxWeightLifted": 250})
        published = service.get_snapshot("overall")

        restarted = RankingService(
            metric_store=SqlMetricStore(engine),
            hub=LeaderboardHub(SqlSnapshotStore(engine)),
            weights=WeightConfigService(engine, persist=True),
            clock=lambda: NOW,
        )
        assert restarted.restore() == 3
        restored = restarted.get_snapshot("overall")

        assert restored.sequence == published.sequence
        assert [e.user_id for e in restored.rankings] == ["user_a", "user_b"]
        assert restored.rankings[0].score == published.rankings[0].score
        assert restored.computed_at == published.computed_at
        assert restarted.has_dirty is True

        result = await restarted.recalculate_all()
        assert result["sequence"] == published.sequence + 1

    def test_snapshot_store_failure_is_transient(self, engine):
        store = SqlSnapshotStore(engine)
        drop_all_tables(engine)
        with pytest.raises(TransientStoreError):
            store.load("overall")
        create_all_tables(engine)

    def test_older_sequence_not_stored(self, engine):
        store = SqlSnapshotStore(engine)

        def snapshot(sequence):
            return LeaderboardSnapshot(
                type="overall", rankings=(), computed_at=NOW, sequence=sequence, weights_version=1
            )

        assert store.save(snapshot(5)) is True
        assert store.save(snapshot(3)) is False
        assert store.save(snapshot(5)) is False
        assert store.load("overall").sequence == 5
        assert store.save(snapshot(6)) is True


class TestSharedDatabase:
    """An API process and a queue worker sharing one database."""

    @staticmethod
    def _service(engine, policy="immediate"):
        return RankingService(
            metric_store=SqlMetricStore(engine),
            hub=LeaderboardHub(SqlSnapshotStore(engine), refresh_seconds=0),
            weights=WeightConfigService(engine, persist=True),
            aggregator=RankingAggregator(),
            policy=policy,
            clock=lambda: NOW,
        )

    @pytest.mark.asyncio
    async def test_api_serves_worker_recalculation(self, engine):
        api = self._service(engine, policy="deferred")
        await api.submit_metric_update("user_a", {"maxWeightLifted": 500})
        await api.submit_metric_update("user_b", {"maxWeightLifted": 250})
        assert api.get_leaderboard() == []

        worker = self._service(engine)
        worker.restore()
        result = await worker.recalculate_all()

        assert [e.user_id for e in api.get_leaderboard()] == ["user_a", "user_b"]
        assert api.get_snapshot().sequence == result["sequence"]

    @pytest.mark.asyncio
    async def test_api_run_numbers_after_worker_runs(self, engine):
        api = self._service(engine, policy="deferred")
        await api.submit_metric_update("user_a", {"maxWeightLifted": 500})
        worker = self._service(engine, policy="deferred")
        await worker.recalculate_all()
        latest_worker = await worker.recalculate_all()

        own = await api.recalculate_all()

        assert own["sequence"] > latest_worker["sequence"]
        assert SqlSnapshotStore(engine).load("overall").sequence == own["sequence"]

    @pytest.mark.asyncio
    async def test_stale_publish_does_not_replace_stored_snapshot(self, engine):
        api = self._service(engine, policy="deferred")
        worker = self._service(engine, policy="deferred")
        await api.submit_metric_update("user_a", {"maxWeightLifted": 500})
        for _ in range(3):
            newest = await worker.recalculate_all()
        older = api.aggregator.recompute(
            "overall", api.metric_store.all_records(), api.weights.current(), now=NOW, sequence=1
        )

        assert await api.hub.publish(older) is False
        assert SqlSnapshotStore(engine).load("overall").sequence == newest["sequence"]
        assert api.get_snapshot().sequence == newest["sequence"]

    @pytest.mark.asyncio
    async def test_metrics_changed_elsewhere_are_rescored(self, engine):
        api = self._service(engine, policy="deferred")
        await api.submit_metric_update("user_a", {"maxWeightLifted": 500})
        await api.submit_metric_update("user_b", {"maxWeightLifted": 250})
        await api.recalculate_all()
        assert api.get_leaderboard()[0].user_id == "user_a"

        other = self._service(engine, policy="deferred")
        await other.submit_metric_update("user_b", {"maxWeightLifted": 1000})
        expected = ScoringEngine.score(api.metric_store.get("user_b"), api.weights.current())

        insights = api.get_insights("user_b")
        assert insights["scoreBreakdown"]["strengthScore"] == round(expected.strength_score, 2)

        await api.recalculate_all()
        board = api.get_leaderboard()
        assert board[0].user_id == "user_b"
        assert board[0].score == pytest.approx(expected.total_score)
