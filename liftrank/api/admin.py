"""
Admin API routes for ranking operations.

All routes require admin authentication (admin JWT or X-Admin-Key).
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from liftrank.core.admin_auth import AdminActor, require_admin
from liftrank.core.config import settings
from liftrank.core.logging import log_event
from liftrank.features.ranking.service import RankingService, get_ranking_service
from liftrank.workers.queue_client import enqueue_recalculation

router = APIRouter(prefix="/api", tags=["admin"])


class UpdateWeightsRequest(BaseModel):
    weights: Dict[str, Any]


@router.post("/recalculate-rankings")
async def recalculate_rankings(
    actor: AdminActor = Depends(require_admin),
    service: RankingService = Depends(get_ranking_service),
) -> dict:
    """Re-rank every cohort now, or enqueue the job when the queue is enabled."""
    if settings.RECALC_QUEUE_ENABLED:
        job_id = enqueue_recalculation()
        # The worker re-ranks every tracked user; the API picks its snapshots up from the store
        tracked = service.metric_store.count()
        log_event(
            "info",
            "admin.recalculate.enqueued",
            user_id=actor.actor_id,
            event_type="admin.recalculate",
            extra={"job_id": job_id, "tracked": tracked},
        )
        return {"success": True, "queued": True, "jobId": job_id, "processedCount": tracked}

    result = await service.recalculate_all()
    log_event(
        "info",
        "admin.recalculate",
        user_id=actor.actor_id,
        event_type="admin.recalculate",
        extra={"processed": result["processedCount"]},
    )
    return {"success": True, "queued": False, "processedCount": result["processedCount"], "data": result}


@router.get("/getCurrentWeights")
def get_current_weights(
    actor: AdminActor = Depends(require_admin),
    service: RankingService = Depends(get_ranking_service),
) -> dict:
    return {"success": True, "weights": service.weights.current().to_dict()}


@router.post("/updateRankingWeights")
async def update_ranking_weights(
    body: UpdateWeightsRequest,
    actor: AdminActor = Depends(require_admin),
    service: RankingService = Depends(get_ranking_service),
) -> dict:
    update = await service.update_weights(body.weights)
    log_event(
        "info",
        "admin.weights.updated",
        user_id=actor.actor_id,
        event_type="admin.weights",
        extra={"version": update.weights.version, "recalculated": update.recalculated},
    )
    return {"success": True, "weights": update.weights.to_dict(), "recalculated": update.recalculated}
