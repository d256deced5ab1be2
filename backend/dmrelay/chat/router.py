"""Chat router providing the relay WebSocket endpoint.

This module provides:
    - WebSocket /ws: Real-time private messaging

Protocol Flow:
    1. Client connects → Server sends: {type: "connected", connectionId}
    2. Client sends: {type: "join", username, userId}
       → Joiner receives: {type: "user-joined", userId, username}
       → Everyone receives: {type: "users-updated", users: [...]}
    3. Client sends: {type: "private-message", recipientId, message, timestamp, messageId}
       → Recipient receives: {type: "private-message", id, senderId, ...}
       → Sender receives: {type: "message-sent", messageId, timestamp}
    4. Client sends: {type: "mark-messages-read", senderId}
       → Original sender receives: {type: "messages-read", readBy, conversationKey}
    5. Client sends: {type: "typing-start" | "typing-stop", recipientId}
       → Recipient receives: {type: "user-typing" | "user-stop-typing", ...}
    6. Client sends: {type: "get-conversation", recipientId}
       → Requester receives: {type: "conversation-history", recipientId, messages}
    7. On disconnect → Everyone receives "users-updated" with the user offline,
       and again once the record is reaped.

No error frames are ever sent; frames the relay cannot act on (binary,
non-JSON, unknown or malformed) are dropped. However the loop ends, the
connection is marked offline and its presence record scheduled for removal.
"""
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from .service import ChatRelay

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def websocket_relay_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint handling the full lifecycle of one client connection.

    Args:
        websocket: The WebSocket connection.
    """
    relay: ChatRelay = websocket.app.state.relay

    connection_id = await relay.connect(websocket)
    logger.info(
        f"[WS] Connection accepted: {connection_id}. "
        f"{len(relay.hub)} live connections"
    )

    try:
        # Main message loop
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            text = message.get("text")
            if text is None:
                logger.debug(f"[WS] Binary frame from {connection_id} ignored")
                continue
            try:
                data = json.loads(text)
            except json.JSONDecodeError:
                logger.debug(f"[WS] Non-JSON frame from {connection_id} ignored")
                continue

            logger.debug(
                "[WS] %s received: type=%s",
                connection_id,
                data.get("type", "?") if isinstance(data, dict) else "?",
            )
            try:
                await relay.dispatch(connection_id, data)
            except Exception:
                # Never surfaced to the client; the connection stays open.
                logger.exception(f"[WS] Failed to handle frame from {connection_id}")

    except WebSocketDisconnect:
        logger.info(f"[WS] Connection closed: {connection_id}")
    finally:
        await relay.handle_disconnect(connection_id)
