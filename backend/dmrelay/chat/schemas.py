"""Data models and wire payloads for the private-messaging relay.

Stored records (UserPresence, Message) and the inbound payload models that
incoming WebSocket frames are parsed into. Field names are camelCase because
they go out on the wire unchanged.
"""
import random
import string
import time
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, Field

# Generated message ids: short base-36 strings.
MESSAGE_ID_LENGTH = 9
_ID_ALPHABET = string.ascii_lowercase + string.digits

# Client timestamps are opaque: epoch number or ISO string, stored as given.
# int first so Date.now() millisecond values are not turned into floats.
Timestamp = Union[int, float, str]


def generate_message_id() -> str:
    """Generate a short id for messages sent without a client ``messageId``."""
    return "".join(random.choices(_ID_ALPHABET, k=MESSAGE_ID_LENGTH))


class InboundEvent(str, Enum):
    """Frame types a client may send."""
    JOIN = "join"
    PRIVATE_MESSAGE = "private-message"
    MARK_MESSAGES_READ = "mark-messages-read"
    TYPING_START = "typing-start"
    TYPING_STOP = "typing-stop"
    GET_CONVERSATION = "get-conversation"


class OutboundEvent(str, Enum):
    """Frame types the server sends."""
    CONNECTED = "connected"
    USER_JOINED = "user-joined"
    USERS_UPDATED = "users-updated"
    PRIVATE_MESSAGE = "private-message"
    MESSAGE_SENT = "message-sent"
    MESSAGES_READ = "messages-read"
    USER_TYPING = "user-typing"
    USER_STOP_TYPING = "user-stop-typing"
    CONVERSATION_HISTORY = "conversation-history"


class TypingSignal(str, Enum):
    START = "start"
    STOP = "stop"


# =============================================================================
# Stored records
# =============================================================================


class UserPresence(BaseModel):
    """Presence record owned by one live connection.

    Attributes:
        connectionId: Server-assigned id of the owning connection.
        userId: Client-supplied identity, stable across reconnects.
        username: Display name supplied on join.
        isOnline: False once the connection dropped, until the record is reaped.
        lastSeen: Epoch seconds of the last register/markOffline.
    """
    connectionId: str = Field(..., description="Owning connection id")
    userId: str = Field(..., description="Client-supplied user identity")
    username: str = Field(default="", description="Display name")
    isOnline: bool = Field(default=True, description="Connection still live")
    lastSeen: float = Field(default_factory=time.time, description="Epoch seconds")


class Message(BaseModel):
    """One private message in a conversation log.

    Only ``isRead`` changes after creation, and only from False to True.
    """
    id: str = Field(default_factory=generate_message_id, description="Message id")
    senderId: str = Field(..., description="User id of the sender")
    senderUsername: str = Field(default="", description="Sender display name")
    recipientId: str = Field(..., description="User id of the recipient")
    content: str = Field(..., description="Message text")
    timestamp: Timestamp = Field(default_factory=time.time, description="Sender timestamp")
    isRead: bool = Field(default=False, description="Read by the recipient")

    def to_wire(self) -> dict:
        """Wire shape: ``content`` travels as ``message``."""
        data = self.model_dump()
        data["message"] = data.pop("content")
        return data


# =============================================================================
# Inbound payloads
# =============================================================================


class JoinPayload(BaseModel):
    username: str
    userId: str


class PrivateMessagePayload(BaseModel):
    recipientId: str
    message: str
    timestamp: Optional[Timestamp] = None
    messageId: Optional[str] = None


class MarkReadPayload(BaseModel):
    senderId: str


class RecipientPayload(BaseModel):
    """Payload shared by typing-start, typing-stop and get-conversation."""
    recipientId: str
