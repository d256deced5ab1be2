"""Private-messaging relay: event dispatch over the chat components.

ChatRelay owns all relay state (registry, message store, live connections)
and turns each inbound frame into store mutations and outbound frames.

Error policy:
    Nothing is ever reported back to the client. An unregistered sender, an
    unresolved recipient, or a payload missing fields is logged at debug
    level and dropped. An empty conversation yields an empty history.

Thread Safety:
    Designed for a single asyncio event loop. Handlers mutate state
    synchronously before their first await, so frames never interleave
    inside a mutation.
"""
import asyncio
import logging
import time
from typing import Any, Optional

from fastapi import WebSocket
from pydantic import ValidationError

from dmrelay.config import AppConfig

from .conversations import conversation_key
from .hub import ConnectionHub
from .presence import PresenceBroadcaster
from .reaper import DisconnectReaper
from .registry import ConnectionRegistry
from .schemas import (
    InboundEvent,
    JoinPayload,
    MarkReadPayload,
    Message,
    OutboundEvent,
    PrivateMessagePayload,
    RecipientPayload,
    TypingSignal,
    UserPresence,
    generate_message_id,
)
from .store import MessageStore
from .typing_relay import TypingRelay

logger = logging.getLogger(__name__)


class ChatRelay:
    """Routes private messages, read receipts, typing and presence.

    One instance lives for the lifetime of the application; it is created
    in the FastAPI lifespan and stored on ``app.state.relay``.
    """

    def __init__(self, config: Optional[AppConfig] = None) -> None:
        self.config = config or AppConfig()

        self.registry = ConnectionRegistry()
        self.store = MessageStore()
        self.hub = ConnectionHub()
        self.presence = PresenceBroadcaster(self.registry, self.hub)
        self.typing = TypingRelay(self.registry, self.hub)
        self.reaper = DisconnectReaper(
            self.registry,
            self.presence,
            delay_seconds=self.config.presence.reap_delay_seconds,
        )

        self._handlers = {
            InboundEvent.JOIN.value: self.handle_join,
            InboundEvent.PRIVATE_MESSAGE.value: self.handle_private_message,
            InboundEvent.MARK_MESSAGES_READ.value: self.handle_mark_read,
            InboundEvent.TYPING_START.value: self.handle_typing_start,
            InboundEvent.TYPING_STOP.value: self.handle_typing_stop,
            InboundEvent.GET_CONVERSATION.value: self.handle_get_conversation,
        }

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def connect(self, websocket: WebSocket) -> str:
        """Accept a socket and greet it with its connection id."""
        connection_id = await self.hub.connect(websocket)
        await self.hub.send_to(connection_id, {
            "type": OutboundEvent.CONNECTED.value,
            "connectionId": connection_id,
        })
        return connection_id

    async def handle_disconnect(self, connection_id: str) -> None:
        """Forget the socket, then flag the user offline and schedule the reap."""
        self.hub.disconnect(connection_id)
        if not await self.reaper.on_disconnect(connection_id):
            logger.debug(f"[Relay] Unregistered connection {connection_id} closed")

    async def shutdown(self) -> None:
        tasks = list(self.reaper.pending.values())
        cancelled = self.reaper.cancel_all()
        # Let cancelled reaps finish before the loop closes.
        await asyncio.gather(*tasks, return_exceptions=True)
        self.registry.clear()
        self.store.clear()
        logger.info(f"[Relay] Shut down ({cancelled} pending reaps cancelled)")

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def dispatch(self, connection_id: str, frame: Any) -> None:
        """Route one inbound frame to its handler.

        Unknown frame types and malformed payloads are ignored.
        """
        if not isinstance(frame, dict):
            logger.debug(f"[Relay] Non-object frame from {connection_id} ignored")
            return

        event_type = frame.get("type")
        handler = self._handlers.get(event_type) if isinstance(event_type, str) else None
        if handler is None:
            logger.debug(f"[Relay] Unknown frame type {event_type!r} ignored")
            return

        try:
            await handler(connection_id, frame)
        except ValidationError as e:
            logger.debug(
                f"[Relay] Malformed {event_type} from {connection_id}: "
                f"{e.error_count()} error(s)"
            )

    # =========================================================================
    # Handlers
    # =========================================================================

    async def handle_join(self, connection_id: str, data: dict) -> None:
        payload = JoinPayload.model_validate(data)

        if self.config.presence.merge_on_reconnect:
            self.reaper.reclaim_user(payload.userId)

        user = self.registry.register(connection_id, payload.userId, payload.username)
        await self.hub.send_to(connection_id, {
            "type": OutboundEvent.USER_JOINED.value,
            "userId": user.userId,
            "username": user.username,
        })
        await self.presence.publish()

    async def handle_private_message(self, connection_id: str, data: dict) -> None:
        payload = PrivateMessagePayload.model_validate(data)

        sender = self._sender(connection_id)
        if sender is None:
            return
        recipient = self.registry.find_by_user_id(payload.recipientId)
        if recipient is None:
            logger.debug(
                f"[Relay] Recipient {payload.recipientId} not connected; message dropped"
            )
            return

        message = Message(
            id=payload.messageId or generate_message_id(),
            senderId=sender.userId,
            senderUsername=sender.username,
            recipientId=payload.recipientId,
            content=payload.message,
            timestamp=payload.timestamp if payload.timestamp is not None else time.time(),
        )
        key = conversation_key(sender.userId, payload.recipientId)
        self.store.append(key, message)
        logger.info(
            f"[Relay] Message {message.id} from {sender.userId} to {payload.recipientId} "
            f"({self.store.message_count(key)} in {key})"
        )

        await self.hub.send_to(recipient.connectionId, {
            "type": OutboundEvent.PRIVATE_MESSAGE.value,
            **message.to_wire(),
        })
        await self.hub.send_to(connection_id, {
            "type": OutboundEvent.MESSAGE_SENT.value,
            "messageId": message.id,
            "timestamp": message.timestamp,
        })

    async def handle_mark_read(self, connection_id: str, data: dict) -> None:
        payload = MarkReadPayload.model_validate(data)

        reader = self._sender(connection_id)
        if reader is None:
            return

        key = conversation_key(reader.userId, payload.senderId)
        changed = self.store.mark_read(key, reader.userId)
        logger.debug(f"[Relay] {reader.userId} read {changed} message(s) in {key}")

        original_sender = self.registry.find_by_user_id(payload.senderId)
        if original_sender is None:
            return
        await self.hub.send_to(original_sender.connectionId, {
            "type": OutboundEvent.MESSAGES_READ.value,
            "readBy": reader.userId,
            "conversationKey": key,
        })

    async def handle_typing_start(self, connection_id: str, data: dict) -> None:
        await self._forward_typing(connection_id, data, TypingSignal.START)

    async def handle_typing_stop(self, connection_id: str, data: dict) -> None:
        await self._forward_typing(connection_id, data, TypingSignal.STOP)

    async def handle_get_conversation(self, connection_id: str, data: dict) -> None:
        payload = RecipientPayload.model_validate(data)

        requester = self._sender(connection_id)
        if requester is None:
            return

        key = conversation_key(requester.userId, payload.recipientId)
        logger.debug(
            f"[Relay] History of {key} for {requester.userId}: "
            f"{self.store.unread_count(key, requester.userId)} unread"
        )
        await self.hub.send_to(connection_id, {
            "type": OutboundEvent.CONVERSATION_HISTORY.value,
            "recipientId": payload.recipientId,
            "messages": [message.to_wire() for message in self.store.history(key)],
        })

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _forward_typing(
        self, connection_id: str, data: dict, kind: TypingSignal
    ) -> None:
        payload = RecipientPayload.model_validate(data)
        sender = self._sender(connection_id)
        if sender is None:
            return
        await self.typing.forward(kind, sender, payload.recipientId)

    def _sender(self, connection_id: str) -> Optional[UserPresence]:
        sender = self.registry.get(connection_id)
        if sender is None:
            logger.debug(f"[Relay] Frame from unregistered connection {connection_id} ignored")
        return sender
