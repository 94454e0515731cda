"""
Metric ingestion endpoint.

POST /api/update-user-metrics — merge a partial metric update for the caller.
Called by workout completion; the body uses camelCase MetricRecord fields.
"""

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends

from liftrank.core.auth import get_current_user_id
from liftrank.features.ranking.service import RankingService, get_ranking_service

router = APIRouter(prefix="/api", tags=["metrics"])


@router.post("/update-user-metrics")
async def update_user_metrics(
    payload: Dict[str, Any] = Body(...),
    current_user_id: str = Depends(get_current_user_id),
    service: RankingService = Depends(get_ranking_service),
) -> dict:
    """
    Accepts either the metric fields directly or wrapped as {"metrics": {...}}.

    Returns:
        {"success": true, "data": {"userId", "metrics", "score", "policy", "reranked", "ranking"}}
    """
    metrics = payload["metrics"] if set(payload) == {"metrics"} else payload
    ack = await service.submit_metric_update(current_user_id, metrics)
    return {"success": True, "data": ack}
