"""Typing indicators, forwarded point-to-point.

Nothing is stored. If a "stop" never arrives (the sender disconnected
mid-typing), the receiver keeps showing the indicator until the next signal.
"""
import logging

from .hub import ConnectionHub
from .registry import ConnectionRegistry
from .schemas import OutboundEvent, TypingSignal, UserPresence

logger = logging.getLogger(__name__)


class TypingRelay:
    def __init__(self, registry: ConnectionRegistry, hub: ConnectionHub) -> None:
        self.registry = registry
        self.hub = hub

    async def forward(
        self, kind: TypingSignal, from_user: UserPresence, to_user_id: str
    ) -> bool:
        """Forward a typing signal to the target user's live connection.

        Returns:
            True if a frame was sent, False if the target did not resolve.
        """
        target = self.registry.find_by_user_id(to_user_id)
        if target is None:
            logger.debug(f"[Typing] No live connection for {to_user_id}; dropped")
            return False

        if kind == TypingSignal.START:
            event = {
                "type": OutboundEvent.USER_TYPING.value,
                "userId": from_user.userId,
                "username": from_user.username,
            }
        else:
            event = {
                "type": OutboundEvent.USER_STOP_TYPING.value,
                "userId": from_user.userId,
            }
        return await self.hub.send_to(target.connectionId, event)
