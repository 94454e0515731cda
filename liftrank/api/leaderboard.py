"""
Leaderboard API Endpoints

GET /api/leaderboard — page of a cohort's current leaderboard
GET /api/user-ranking/{user_id} — one user's ranking (self or admin)
GET /api/my-ranking — the caller's ranking
GET /api/ranking-stats — tier distribution and summary numbers
GET /api/my-insights — score insights and recommendations for the caller
GET /api/top-performers — best users in one pillar (strength, stamina, consistency, improvement)
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from liftrank.core.admin_auth import get_admin_actor
from liftrank.core.auth import get_current_user_id
from liftrank.core.errors import NotFoundError, PermissionError
from liftrank.features.ranking.service import RankingService, get_ranking_service
from liftrank.features.ranking.tiers import TierClassifier
from liftrank.models.ranking import RankingEntry

router = APIRouter(prefix="/api", tags=["leaderboard"])


def _ranking_payload(entry: RankingEntry) -> dict:
    payload = entry.to_dict()
    payload["percentile"] = TierClassifier.percentile_rank(entry.current_rank, entry.total_users)
    return payload


@router.get("/leaderboard")
def get_leaderboard(
    type: str = Query("overall", description="overall | weekly | monthly"),
    limit: Optional[int] = Query(None, description="Page size (1-1000, default 50)"),
    offset: int = Query(0, description="Entries to skip"),
    service: RankingService = Depends(get_ranking_service),
) -> dict:
    """
    Get a page of the current leaderboard.

    Returns:
        {
            "success": true,
            "data": [ { ranking entry }, ... ],
            "type": "overall",
            "limit": 50,
            "offset": 0,
            "total": 1234
        }
    """
    page_size = service.default_limit if limit is None else limit
    entries = service.get_leaderboard(type, page_size, offset)
    snapshot = service.get_snapshot(type)
    return {
        "success": True,
        "data": [entry.to_dict() for entry in entries],
        "type": type,
        "limit": page_size,
        "offset": offset,
        "total": snapshot.total_users if snapshot else 0,
        "computedAt": snapshot.computed_at.isoformat() if snapshot else None,
    }


@router.get("/user-ranking/{user_id}")
def get_user_ranking(
    user_id: str,
    request: Request,
    type: str = Query("overall"),
    current_user_id: str = Depends(get_current_user_id),
    service: RankingService = Depends(get_ranking_service),
) -> dict:
    if user_id != current_user_id and get_admin_actor(request) is None:
        raise PermissionError("You can only view your own ranking")
    entry = service.get_user_ranking(user_id, type)
    if entry is None:
        raise NotFoundError("User ranking not found")
    return {"success": True, "data": _ranking_payload(entry)}


@router.get("/my-ranking")
def get_my_ranking(
    type: str = Query("overall"),
    current_user_id: str = Depends(get_current_user_id),
    service: RankingService = Depends(get_ranking_service),
) -> dict:
    entry = service.get_user_ranking(current_user_id, type)
    if entry is None:
        raise NotFoundError("User ranking not found")
    return {"success": True, "data": _ranking_payload(entry)}


@router.get("/ranking-stats")
def get_ranking_stats(
    type: str = Query("overall"),
    service: RankingService = Depends(get_ranking_service),
) -> dict:
    return {"success": True, "data": service.get_statistics(type)}


@router.get("/my-insights")
def get_my_insights(
    current_user_id: str = Depends(get_current_user_id),
    service: RankingService = Depends(get_ranking_service),
) -> dict:
    return {"success": True, "data": service.get_insights(current_user_id)}


@router.get("/top-performers")
def get_top_performers(
    category: str = Query(..., description="strength | stamina | consistency | improvement"),
    limit: int = Query(10, description="Number of users (1-1000)"),
    type: str = Query("overall"),
    service: RankingService = Depends(get_ranking_service),
) -> dict:
    entries = service.get_top_performers(category, limit, type)
    return {
        "success": True,
        "category": category,
        "type": type,
        "data": [entry.to_dict() for entry in entries],
    }
