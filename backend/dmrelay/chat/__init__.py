"""Realtime private messaging: presence, routing and message logs."""
from .conversations import conversation_key
from .service import ChatRelay

__all__ = ["ChatRelay", "conversation_key"]
