"""
WebSocket endpoint for live monitoring.

Clients connect with ``?token=<bearer token>``; identity and role come from
the token. Outbound messages are ``{"event": ..., "data": ...}``; inbound
messages use the same shape (``join-exam``, ``student-activity``,
``violation``).
"""
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from typing import Optional
import asyncio
import json
import logging

from ....core.security import decode_token
from ....services.live_notifications import dispatch_client_message, pump

router = APIRouter()
logger = logging.getLogger(__name__)


@router.websocket("/ws")
async def live_updates(websocket: WebSocket, token: Optional[str] = Query(None)):
    payload = decode_token(token) if token else None
    if payload is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    registry = websocket.app.state.live_registry
    await websocket.accept()
    subscriber = registry.connect()
    registry.register(subscriber, user_id, payload.get("role"))
    sender = asyncio.create_task(pump(subscriber, websocket.send_json))

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                logger.warning(f"Ignoring malformed live message from {subscriber.connection_id}")
                continue
            if isinstance(message, dict):
                dispatch_client_message(registry, subscriber, message)
    except WebSocketDisconnect:
        pass
    finally:
        registry.disconnect(subscriber)
        sender.cancel()
        try:
            await sender
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.info(f"Live sender for {subscriber.connection_id} stopped: {e}")
