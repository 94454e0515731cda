"""
Health endpoints.

/healthz is a liveness check with no dependencies; /readyz reports whether the
ranking stores answer and which cohorts have a published snapshot.
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from liftrank.core.errors import TransientStoreError
from liftrank.features.ranking.service import RankingService, get_ranking_service
from liftrank.models.ranking import COHORT_TYPES

logger = logging.getLogger("liftrank")

root_router = APIRouter(tags=["health"])


@root_router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz(service: RankingService = Depends(get_ranking_service)):
    try:
        tracked = service.metric_store.count()
    except TransientStoreError as exc:
        logger.warning(f"[health] metric store not ready: {exc.message}")
        return JSONResponse(status_code=503, content={"status": "unavailable", "reason": exc.code})

    published = {}
    for cohort in COHORT_TYPES:
        snapshot = service.hub.latest(cohort)
        published[cohort] = snapshot.sequence if snapshot else None
    return {
        "status": "ok",
        "trackedUsers": tracked,
        "policy": service.policy,
        "weightsVersion": service.weights.current().version,
        "snapshots": published,
    }
