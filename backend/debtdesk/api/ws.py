"""
Notification WebSocket — server-to-client push of delegation lifecycle events.

One authenticated connection per browser session. The only client message
understood is ``{"type": "ping"}``; delegation commands never travel over
this channel.
"""

import json
import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from debtdesk.api.deps import authenticate_token
from debtdesk.errors import DomainError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["notifications"])


@router.websocket("/ws/notifications")
async def notifications_socket(ws: WebSocket, token: str = Query(default="")):
    state = ws.app.state
    try:
        async with state.session_factory() as db:
            identity = await authenticate_token(db, token)
    except DomainError as exc:
        logger.info("WebSocket rejected: %s", exc.message)
        await ws.close(code=4001, reason="Unauthorized")
        return

    await ws.accept()
    connections = state.connections
    await connections.register(identity.employee_code, ws)
    await ws.send_json({"type": "connected", "employee_code": identity.employee_code})

    try:
        while True:
            raw = await ws.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await ws.send_json({"type": "error", "content": "Invalid JSON"})
                continue

            if isinstance(data, dict) and data.get("type") == "ping":
                await ws.send_json({"type": "pong"})
    except WebSocketDisconnect:
        logger.info("WebSocket disconnected: %s", identity.employee_code)
    except Exception as e:
        logger.error("WebSocket error for %s: %s", identity.employee_code, e)
    finally:
        await connections.unregister(identity.employee_code, ws)
