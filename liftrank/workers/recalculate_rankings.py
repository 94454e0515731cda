"""Full leaderboard recalculation job, run by an RQ worker."""
import asyncio
import logging
from typing import Optional

from liftrank.core.config import settings
from liftrank.features.ranking.service import RankingService

logger = logging.getLogger("liftrank.workers.recalculate")


def run_recalculation(*, timeout_seconds: Optional[float] = None) -> dict:
    """
    Re-rank every cohort against the database-backed stores.

    The worker process has no live subscribers; snapshots are persisted and the
    API process picks them up on its next restore or recalculation.
    """
    if not settings.DATABASE_URL:
        raise RuntimeError("DATABASE_URL is required for queued recalculation")

    service = RankingService.from_settings(settings)
    service.restore()
    result = asyncio.run(service.recalculate_all(timeout=timeout_seconds))
    logger.info(
        "[recalculate] rankings recalculated",
        extra={"processed": result["processedCount"], "sequence": result["sequence"]},
    )
    return result


if __name__ == "__main__":
    result = run_recalculation()
    print(result)
