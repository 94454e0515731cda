"""
liftrank/realtime/hub.py
Publish/subscribe hub for leaderboard snapshots.

One current snapshot per cohort. Publishing persists the snapshot, swaps the
cohort's reference and fans it out to every subscriber. Subscribers are plain
callables or coroutine functions; WebSocket clients are registered as
subscribers that forward the top of the snapshot as JSON.

The snapshot store is shared with other processes (the queued recalculation
worker), so the hub also adopts newer snapshots it finds there.
"""

from typing import Awaitable, Callable, Dict, List, Optional, Union
from fastapi import WebSocket
import asyncio
import inspect
import itertools
import logging
import threading
import time

from liftrank.core.errors import TransientStoreError, ValidationError
from liftrank.core.metrics import (
    leaderboard_size,
    snapshot_publishes_total,
    ws_active_connections,
    ws_connections_total,
    ws_messages_sent_total,
)
from liftrank.features.ranking.snapshot_store import InMemorySnapshotStore, SnapshotStore
from liftrank.models.ranking import COHORT_TYPES, LeaderboardSnapshot

logger = logging.getLogger(__name__)

Subscriber = Callable[[LeaderboardSnapshot], Union[None, Awaitable[None]]]

DEFAULT_PUSH_LIMIT = 50


def snapshot_message(snapshot: LeaderboardSnapshot, limit: Optional[int] = DEFAULT_PUSH_LIMIT) -> dict:
    """Wire message pushed to WebSocket clients: the top `limit` entries plus totalUsers."""
    return {"type": "leaderboard.snapshot", "data": snapshot.to_dict(limit=limit)}


class LeaderboardHub:
    """
    Latest-wins snapshot holder with fan-out.

    A snapshot whose sequence is not newer than the cohort's current one, in
    memory or in the store, is discarded. Readers always see a whole snapshot,
    never a partial one.

    Args:
        store: Snapshot persistence, possibly shared with other processes
        max_sockets_per_cohort: 0 disables the limit
        push_limit: Entries per WebSocket push; None pushes the whole snapshot
        refresh_seconds: How stale `latest()` may be before it re-reads the
            store. None never re-reads; 0 re-reads on every call.
    """

    def __init__(
        self,
        store: Optional[SnapshotStore] = None,
        *,
        max_sockets_per_cohort: int = 0,
        push_limit: Optional[int] = DEFAULT_PUSH_LIMIT,
        refresh_seconds: Optional[float] = None,
        time_fn: Callable[[], float] = time.monotonic,
    ):
        self.store = store or InMemorySnapshotStore()
        self.max_sockets_per_cohort = max_sockets_per_cohort
        self.push_limit = push_limit
        self.refresh_seconds = refresh_seconds
        self._time = time_fn
        self._snapshots: Dict[str, LeaderboardSnapshot] = {}
        # Highest sequence already fanned out, per cohort
        self._delivered: Dict[str, int] = {cohort: 0 for cohort in COHORT_TYPES}
        self._refreshed_at: Dict[str, float] = {}
        # cohort -> token -> callback
        self._subscribers: Dict[str, Dict[int, Subscriber]] = {cohort: {} for cohort in COHORT_TYPES}
        self._sockets: Dict[str, int] = {cohort: 0 for cohort in COHORT_TYPES}
        self._tokens = itertools.count(1)
        # Guards the snapshot and subscriber maps; readers may be worker threads
        self._state_lock = threading.Lock()
        self._publish_lock = asyncio.Lock()

    @staticmethod
    def _check_cohort(cohort: str) -> None:
        if cohort not in COHORT_TYPES:
            raise ValidationError(f"Invalid leaderboard type: {cohort}")

    def latest(self, cohort: str) -> Optional[LeaderboardSnapshot]:
        self._check_cohort(cohort)
        if self._refresh_due(cohort):
            try:
                self.refresh(cohort)
            except TransientStoreError:
                logger.warning(f"[HUB] Serving cached {cohort} snapshot, store unavailable")
        with self._state_lock:
            return self._snapshots.get(cohort)

    def current_sequence(self) -> int:
        with self._state_lock:
            return max((s.sequence for s in self._snapshots.values()), default=0)

    def _refresh_due(self, cohort: str) -> bool:
        if self.refresh_seconds is None:
            return False
        last = self._refreshed_at.get(cohort)
        return last is None or self._time() - last >= self.refresh_seconds

    def _adopt(self, snapshot: LeaderboardSnapshot) -> bool:
        with self._state_lock:
            current = self._snapshots.get(snapshot.type)
            if current is not None and snapshot.sequence <= current.sequence:
                return False
            self._snapshots[snapshot.type] = snapshot
        leaderboard_size.set(snapshot.total_users, labels={"cohort": snapshot.type})
        return True

    def refresh(self, cohort: Optional[str] = None) -> List[str]:
        """
        Adopt stored snapshots newer than the in-memory ones.

        Returns:
            Cohorts whose current snapshot changed.

        Raises:
            TransientStoreError: the store could not be read
        """
        cohorts = COHORT_TYPES if cohort is None else (cohort,)
        adopted = []
        for name in cohorts:
            self._check_cohort(name)
            stored = self.store.load(name)
            self._refreshed_at[name] = self._time()
            if stored is not None and self._adopt(stored):
                adopted.append(name)
        if adopted:
            logger.info(f"[HUB] Adopted newer stored snapshots: {', '.join(adopted)}")
        return adopted

    def restore(self) -> int:
        """Load persisted snapshots (startup). Returns how many cohorts were restored."""
        loaded = self.store.load_all()
        for snapshot in loaded.values():
            self._adopt(snapshot)
        with self._state_lock:
            for cohort, snapshot in self._snapshots.items():
                self._delivered[cohort] = max(self._delivered[cohort], snapshot.sequence)
        if loaded:
            logger.info(f"[HUB] Restored {len(loaded)} leaderboard snapshots")
        return len(loaded)

    async def sync(self) -> int:
        """
        Adopt newer stored snapshots and push them to subscribers.

        Returns:
            Number of cohorts fanned out.
        """
        self.refresh()
        pushed = 0
        for cohort in COHORT_TYPES:
            with self._state_lock:
                snapshot = self._snapshots.get(cohort)
                if snapshot is None or snapshot.sequence <= self._delivered[cohort]:
                    continue
                self._delivered[cohort] = snapshot.sequence
                subscribers = list(self._subscribers[cohort].items())
            await self._fan_out(snapshot, subscribers)
            pushed += 1
        return pushed

    async def publish(self, snapshot: LeaderboardSnapshot) -> bool:
        """
        Persist, swap and fan out a snapshot.

        Returns:
            True when the snapshot became current, False when it was stale.

        Raises:
            TransientStoreError: persistence failed; the current snapshot is kept
        """
        self._check_cohort(snapshot.type)
        async with self._publish_lock:
            with self._state_lock:
                current = self._snapshots.get(snapshot.type)
            stale = current is not None and snapshot.sequence <= current.sequence
            if not stale and not self.store.save(snapshot):
                # Another process stored a newer one
                self.refresh(snapshot.type)
                stale = True
            if stale:
                snapshot_publishes_total.inc(labels={"cohort": snapshot.type, "outcome": "stale"})
                logger.debug(f"[HUB] Discarded stale {snapshot.type} snapshot seq={snapshot.sequence}")
                return False

            with self._state_lock:
                self._snapshots[snapshot.type] = snapshot
                self._delivered[snapshot.type] = max(self._delivered[snapshot.type], snapshot.sequence)
                subscribers = list(self._subscribers[snapshot.type].items())

        snapshot_publishes_total.inc(labels={"cohort": snapshot.type, "outcome": "published"})
        leaderboard_size.set(snapshot.total_users, labels={"cohort": snapshot.type})
        await self._fan_out(snapshot, subscribers)
        return True

    async def _fan_out(self, snapshot: LeaderboardSnapshot, subscribers) -> None:
        failed = []
        for token, callback in subscribers:
            try:
                result = callback(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(f"[HUB] Dropping {snapshot.type} subscriber after failure: {e}")
                failed.append(token)

        for token in failed:
            self._remove(snapshot.type, token)

    def subscribe(self, cohort: str, callback: Subscriber) -> Callable[[], None]:
        """Register a callback for every future snapshot of `cohort`. Returns unsubscribe."""
        self._check_cohort(cohort)
        token = next(self._tokens)
        with self._state_lock:
            self._subscribers[cohort][token] = callback

        def unsubscribe() -> None:
            self._remove(cohort, token)

        return unsubscribe

    def subscriber_count(self, cohort: str) -> int:
        self._check_cohort(cohort)
        with self._state_lock:
            return len(self._subscribers[cohort])

    def _remove(self, cohort: str, token: int) -> None:
        with self._state_lock:
            self._subscribers[cohort].pop(token, None)

    async def register_socket(self, cohort: str, websocket: WebSocket) -> Optional[Callable[[], None]]:
        """
        Subscribe a WebSocket client and send it the current snapshot.

        Returns:
            Unregister callable, or None when the per-cohort socket limit is reached.
        """
        self._check_cohort(cohort)
        with self._state_lock:
            if self.max_sockets_per_cohort and self._sockets[cohort] >= self.max_sockets_per_cohort:
                return None
            self._sockets[cohort] += 1
            ws_active_connections.set(sum(self._sockets.values()))
        ws_connections_total.inc()

        async def forward(snapshot: LeaderboardSnapshot) -> None:
            await websocket.send_json(snapshot_message(snapshot, self.push_limit))
            ws_messages_sent_total.inc(labels={"cohort": cohort})

        unsubscribe = self.subscribe(cohort, forward)
        released = False

        def unregister() -> None:
            nonlocal released
            if released:
                return
            released = True
            unsubscribe()
            with self._state_lock:
                self._sockets[cohort] = max(0, self._sockets[cohort] - 1)
                ws_active_connections.set(sum(self._sockets.values()))

        current = self.latest(cohort)
        if current is not None:
            try:
                await forward(current)
            except Exception:
                unregister()
                raise
        logger.debug(f"[HUB] Registered socket for {cohort}. Total: {self._sockets[cohort]}")
        return unregister

    def socket_count(self, cohort: Optional[str] = None) -> int:
        with self._state_lock:
            if cohort is None:
                return sum(self._sockets.values())
            return self._sockets.get(cohort, 0)

