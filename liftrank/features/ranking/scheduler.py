"""
Background re-ranking for the deferred update policy.

Runs inside the app's event loop. Every interval it pushes snapshots that
other processes published to the store, then re-ranks when metrics or weights
changed since the last successful run.
"""

import asyncio
import logging
from typing import Optional

from liftrank.core.errors import AppError

logger = logging.getLogger("liftrank.ranking.scheduler")


class RecalculationScheduler:
    def __init__(self, service, interval_seconds: float, *, recalculate: bool = True):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.service = service
        self.interval_seconds = interval_seconds
        self.recalculate = recalculate
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(f"[scheduler] started, interval={self.interval_seconds}s")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("[scheduler] stopped")

    async def tick(self) -> bool:
        """Sync and re-rank once if needed. Returns True when a recalculation ran."""
        try:
            await self.service.hub.sync()
        except AppError as exc:
            logger.warning(f"[scheduler] snapshot sync failed: {exc.code}: {exc.message}")
        if not self.recalculate or not self.service.has_dirty:
            return False
        try:
            await self.service.recalculate_all()
        except AppError as exc:
            # Dirty flag stays set; the next tick retries
            logger.warning(f"[scheduler] recalculation failed: {exc.code}: {exc.message}")
            return False
        return True

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.tick()
