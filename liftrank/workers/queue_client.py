"""
RQ queue client for ranking jobs.

Connections are created lazily so the API can run without Redis when
RECALC_QUEUE_ENABLED is off.
"""
from typing import Optional

from redis import Redis
from rq import Queue

from liftrank.core.config import settings

QUEUE_NAME = "rankings"

_queue: Optional[Queue] = None


def get_queue() -> Queue:
    global _queue
    if _queue is None:
        redis_conn = Redis.from_url(settings.REDIS_URL)
        _queue = Queue(QUEUE_NAME, connection=redis_conn)
    return _queue


def enqueue_recalculation(queue: Optional[Queue] = None) -> str:
    """
    Enqueue a full recalculation.

    Returns:
        Job ID
    """
    job = (queue or get_queue()).enqueue(
        "liftrank.workers.recalculate_rankings.run_recalculation",
        timeout_seconds=settings.RECALC_TIMEOUT_SECONDS,
        job_timeout="10m",
        result_ttl=3600,  # Keep result for 1 hour
    )
    return job.id
