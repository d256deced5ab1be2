"""Presence broadcasting.

Every registry mutation is followed by a full ``users-updated`` snapshot
to all connections. There is no diffing.
"""
import logging

from .hub import ConnectionHub
from .registry import ConnectionRegistry
from .schemas import OutboundEvent

logger = logging.getLogger(__name__)


class PresenceBroadcaster:
    def __init__(self, registry: ConnectionRegistry, hub: ConnectionHub) -> None:
        self.registry = registry
        self.hub = hub

    def snapshot_event(self) -> dict:
        return {
            "type": OutboundEvent.USERS_UPDATED.value,
            "users": [record.model_dump() for record in self.registry.snapshot()],
        }

    async def publish(self) -> None:
        """Broadcast the current presence snapshot to every client."""
        # Snapshot is taken before the first await.
        event = self.snapshot_event()
        logger.debug(
            f"[Presence] Broadcasting {len(event['users'])} users to {len(self.hub)} connections"
        )
        await self.hub.broadcast(event)
