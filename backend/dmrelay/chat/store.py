"""In-memory message store, one append-only log per conversation."""
import logging
from typing import Dict, List

from .schemas import Message

logger = logging.getLogger(__name__)


class MessageStore:
    """Per-conversation message logs keyed by ``conversation_key``.

    Messages are kept in arrival order and never removed. Only the read
    flag of a stored message is ever changed.
    """

    def __init__(self) -> None:
        # conversation_key -> list of messages (append-only)
        self._logs: Dict[str, List[Message]] = {}

    def append(self, conversation_key: str, message: Message) -> Message:
        """Add a message to a conversation, creating the log if needed.

        Returns:
            The same message (for chaining).
        """
        self._logs.setdefault(conversation_key, []).append(message)
        return message

    def mark_read(self, conversation_key: str, recipient_id: str) -> int:
        """Mark every message addressed to ``recipient_id`` as read.

        Args:
            conversation_key: Conversation to update.
            recipient_id: User whose incoming messages are now read.

        Returns:
            Number of messages that changed on this call (0 when repeated).
        """
        changed = 0
        for message in self._logs.get(conversation_key, []):
            if message.recipientId == recipient_id and not message.isRead:
                message.isRead = True
                changed += 1
        return changed

    def history(self, conversation_key: str) -> List[Message]:
        """Return a copy of the ordered log, or an empty list."""
        return list(self._logs.get(conversation_key, []))

    def unread_count(self, conversation_key: str, recipient_id: str) -> int:
        return sum(
            1 for message in self._logs.get(conversation_key, [])
            if message.recipientId == recipient_id and not message.isRead
        )

    def message_count(self, conversation_key: str) -> int:
        """Get the number of messages in a conversation."""
        return len(self._logs.get(conversation_key, []))

    def clear(self) -> None:
        self._logs.clear()
        logger.info("[Store] All conversations cleared")
