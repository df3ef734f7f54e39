"""WebSocket endpoint for forum chat and presence.

This module provides:
    - WebSocket /ws: real-time presence, global chat and private chat

Protocol:
    Every frame is a JSON object. Clients send
    ``{"event": ..., "data": ..., "ackId": ...}``; the server sends
    ``{"event": ..., "data": ...}`` and, for frames carrying an ``ackId``,
    ``{"event": "ack", "ackId": ..., "data": {"success": ..., ...}}``.

    The token is read from the ``token`` query parameter or the
    Authorization header. A missing or invalid token does not close the
    socket; the connection continues anonymously and privileged events are
    refused with ``unauthenticated``.

Inbound events:
    - user:online
    - chat:global:join / leave / message / typing
    - chat:private:join / leave / message / typing / read
"""
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from .manager import Connection
from .schemas import ChatEvent
from .services import ChatServices

logger = logging.getLogger(__name__)

router = APIRouter()


async def _close(services: ChatServices, connection: Connection) -> None:
    """Forget the connection, then update presence."""
    services.connections.disconnect(connection)
    try:
        await services.presence.disconnect(connection)
    except Exception:
        logger.exception(f"[WS] Presence cleanup failed for {connection.id}")


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """Serve one client socket until it disconnects.

    Args:
        websocket: The WebSocket connection.
    """
    services: ChatServices = websocket.app.state.chat
    auth = services.authenticator.authenticate_handshake(
        websocket.query_params, websocket.headers
    )
    connection = await services.connections.connect(websocket, auth.user_id)
    await services.connections.emit(connection, ChatEvent.CONNECTED, {
        "connectionId": connection.id,
        "userId": connection.user_id,
        "authenticated": connection.authenticated,
    })

    try:
        await services.presence.connect(connection)
    except Exception:
        # Presence storage failure must not drop the socket.
        logger.exception(f"[WS] Presence update failed on connect for {connection.id}")

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            raw = message.get("text")
            if raw is None:
                logger.warning(f"[WS] Ignoring binary frame from {connection.id}")
                continue
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning(f"[WS] Ignoring non-JSON frame from {connection.id}")
                continue
            if not isinstance(frame, dict):
                logger.warning(f"[WS] Ignoring non-object frame from {connection.id}")
                continue
            await services.dispatcher.dispatch(connection, frame)
    except WebSocketDisconnect:
        logger.info(f"[WS] {connection.id} disconnected")
    finally:
        await _close(services, connection)
