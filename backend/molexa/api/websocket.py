"""
WebSocket API router.

Endpoints:
  WS  /ws/analytics     – Live analytics snapshots
  GET /analytics/live/stats – Subscriber statistics
"""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect

from molexa.services.live_publisher import WebSocketSubscriber

logger = logging.getLogger("molexa.ws.api")

router = APIRouter(tags=["websocket"])


@router.websocket("/ws/analytics")
async def websocket_analytics(ws: WebSocket):
    """
    Live analytics stream.

    The server pushes an ``initial`` snapshot, then ``new_request`` and
    ``heartbeat`` snapshots. Clients may send:
      {"action": "ping"}
      {"action": "snapshot"}
    """
    publisher = ws.app.state.analytics.publisher
    await ws.accept()
    subscriber = WebSocketSubscriber(ws)
    if not await publisher.subscribe(subscriber):
        return

    try:
        while True:
            raw = await ws.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await ws.send_json({"type": "error", "message": "Invalid JSON"})
                continue

            action = msg.get("action") if isinstance(msg, dict) else None

            if action == "ping":
                await ws.send_json({"type": "system", "event": "pong"})
            elif action == "snapshot":
                payload = ws.app.state.analytics.snapshot()
                payload["type"] = "snapshot"
                await ws.send_json(payload)
            else:
                await ws.send_json({"type": "error", "message": f"Unknown action: {action}"})

    except WebSocketDisconnect:
        await publisher.unsubscribe(subscriber.subscriber_id)
    except Exception as exc:
        logger.exception("WS error for %s: %s", subscriber.subscriber_id, exc)
        await publisher.unsubscribe(subscriber.subscriber_id)


@router.get("/analytics/live/stats")
def live_stats(request: Request):
    """Return current live subscriber statistics."""
    return request.app.state.analytics.publisher.stats()
