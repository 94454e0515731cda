"""
liftrank/api/realtime.py
WebSocket endpoint for live leaderboard updates.

/ws/leaderboard/{type} sends the current snapshot on connect and every newly
published snapshot afterwards, each capped at the top WS_PUSH_LIMIT entries
with the full totalUsers. Read-only: clients may only send "ping".
"""

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from datetime import datetime, timezone
from uuid import uuid4
import json
import logging

from liftrank.core.logging import log_event
from liftrank.features.ranking.service import RankingService, get_ranking_service
from liftrank.models.ranking import COHORT_TYPES

logger = logging.getLogger(__name__)

router = APIRouter()


def _is_ping(raw_message: str) -> bool:
    if raw_message.strip().lower() == "ping":
        return True
    try:
        data = json.loads(raw_message)
    except ValueError:
        return False
    return isinstance(data, dict) and data.get("type") == "ping"


@router.websocket("/ws/leaderboard/{cohort}")
async def leaderboard_socket(
    websocket: WebSocket,
    cohort: str,
    service: RankingService = Depends(get_ranking_service),
):
    await websocket.accept()
    request_id = websocket.headers.get("X-Request-Id") or str(uuid4())
    connection_id = str(uuid4())

    if cohort not in COHORT_TYPES:
        await _reject_and_close(websocket, request_id, "validation_error", f"Invalid leaderboard type: {cohort}")
        return

    await websocket.send_json({
        "type": "connected",
        "cohort": cohort,
        "ts": datetime.now(timezone.utc).isoformat(),
        "request_id": request_id,
        "connection_id": connection_id,
    })

    unregister = await service.hub.register_socket(cohort, websocket)
    if unregister is None:
        log_event("warning", "ws.limit.cohort", request_id=request_id, cohort=cohort, event_type="ws.limit.cohort", extra={"connection_id": connection_id})
        await _reject_and_close(websocket, request_id, "ws_limit", "Leaderboard socket limit exceeded")
        return

    log_event("info", "ws.connected", request_id=request_id, cohort=cohort, event_type="ws.connected", extra={"connection_id": connection_id})

    try:
        while True:
            raw_message = await websocket.receive_text()
            if _is_ping(raw_message):
                await websocket.send_json({
                    "type": "pong",
                    "ts": datetime.now(timezone.utc).isoformat(),
                    "request_id": request_id,
                })
            # Other client messages are ignored; the socket is read-only
    except WebSocketDisconnect:
        log_event("info", "ws.disconnected", request_id=request_id, cohort=cohort, event_type="ws.disconnected", extra={"connection_id": connection_id})
    except Exception as e:
        log_event("error", "ws.loop_error", request_id=request_id, cohort=cohort, event_type="ws.loop_error", extra={"error": str(e), "connection_id": connection_id})
    finally:
        unregister()


async def _reject_and_close(websocket: WebSocket, request_id: str, code: str, message: str):
    try:
        await websocket.send_json({
            "type": "error",
            "code": code,
            "message": message,
            "request_id": request_id,
        })
    finally:
        await websocket.close(code=1008)
