"""
FastAPI routes: alert write/read API and the live push stream.

Provides endpoints to:
    GET  /api/v1/alerts         — most recent persisted alerts, newest first
    POST /api/v1/alerts         — submit one alert (same chain as MQTT/FIRMS)
    WS   /api/v1/ws/alerts      — real-time "alert" events
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Query, Request, WebSocket, WebSocketDisconnect

from leo.app.alerts.broadcaster import SubscriberSession
from leo.app.alerts.runtime import AlertRuntime
from leo.app.api.schemas import AlertOut
from leo.app.core.errors import ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["alerts"])


def _runtime(request: Request) -> AlertRuntime:
    return request.app.state.runtime


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/alerts", response_model=List[AlertOut])
async def list_alerts(
    request: Request,
    limit: Optional[int] = Query(
        None, ge=1,
        description="Maximum number of alerts to return (default and cap: RECENT_ALERTS_LIMIT)",
    ),
):
    """Recent alerts, newest first. The reconciliation source for live viewers."""
    runtime = _runtime(request)
    cap = runtime.config.RECENT_ALERTS_LIMIT
    if limit is None:
        limit = cap
    elif limit > cap:
        raise ValidationError(f"limit must be between 1 and {cap}", field="limit")
    alerts = await runtime.store.list_recent(limit)
    return [AlertOut.from_alert(a) for a in alerts]


@router.post("/alerts", response_model=AlertOut, status_code=201)
async def create_alert(
    request: Request,
    payload: Dict[str, Any] = Body(
        ...,
        examples=[{"type": "MEDICAL", "lat": 48.85, "lng": 2.35, "msg": "Injured hiker"}],
    ),
):
    """
    Submit one alert.

    The body is normalised exactly like MQTT messages; missing or non-finite
    coordinates yield 400, everything else falls back to defaults.
    """
    saved = await _runtime(request).pipeline.ingest(payload, origin="api")
    return AlertOut.from_alert(saved)


@router.websocket("/ws/alerts")
async def alert_stream(websocket: WebSocket):
    """Push every newly persisted alert to this viewer until it disconnects."""
    runtime: AlertRuntime = websocket.app.state.runtime
    session = SubscriberSession(
        websocket.send_json, max_pending=runtime.config.SESSION_QUEUE_SIZE,
    )
    # Registered before the handshake completes so no alert persisted after
    # the client sees the connection open is missed.
    runtime.broadcaster.register(session)
    try:
        await websocket.accept()
        session.start()
        while True:
            # Client messages are ignored; this only detects disconnects
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    except WebSocketDisconnect:
        pass
    finally:
        runtime.broadcaster.unregister(session)
        await session.close()
