"""Deferred removal of presence records after a disconnect.

A dropped connection is flagged offline right away and purged after a grace
delay. Each pending removal is an asyncio task kept in ``pending`` so it can
be cancelled, but by default nothing cancels it: a user who reconnects
within the delay shows up twice (old record offline, new record online)
until the old one is reaped.

With ``merge_on_reconnect`` enabled, the relay calls ``reclaim_user`` on
join, which cancels the user's pending removals and drops the stale records
immediately. Routing stays keyed by connection id either way.
"""
import asyncio
import logging
from typing import Dict

from .presence import PresenceBroadcaster
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)

DEFAULT_REAP_DELAY_SECONDS = 5.0


class DisconnectReaper:
    def __init__(
        self,
        registry: ConnectionRegistry,
        presence: PresenceBroadcaster,
        delay_seconds: float = DEFAULT_REAP_DELAY_SECONDS,
    ) -> None:
        self.registry = registry
        self.presence = presence
        self.delay_seconds = delay_seconds

        # connection_id -> scheduled removal task
        self.pending: Dict[str, asyncio.Task] = {}

    async def on_disconnect(self, connection_id: str) -> bool:
        """Mark a connection offline, broadcast, and schedule its removal.

        Returns:
            True if the connection had a presence record, False otherwise.
        """
        record = self.registry.mark_offline(connection_id)
        if record is None:
            return False

        logger.info(
            f"[Reaper] {record.username} ({record.userId}) offline; "
            f"removing {connection_id} in {self.delay_seconds}s"
        )
        self._schedule(connection_id)
        await self.presence.publish()
        return True

    def is_pending(self, connection_id: str) -> bool:
        return connection_id in self.pending

    def cancel(self, connection_id: str) -> bool:
        """Cancel a scheduled removal. The record itself is left alone."""
        task = self.pending.pop(connection_id, None)
        if task is None:
            return False
        task.cancel()
        return True

    def cancel_all(self) -> int:
        """Cancel every scheduled removal (used at shutdown)."""
        count = 0
        for connection_id in list(self.pending):
            if self.cancel(connection_id):
                count += 1
        return count

    def reclaim_user(self, user_id: str) -> int:
        """Drop a user's offline records now, cancelling their timers.

        Returns:
            Number of records removed.
        """
        removed = 0
        for record in self.registry.records_for_user(user_id):
            if record.isOnline:
                continue
            self.cancel(record.connectionId)
            self.registry.remove(record.connectionId)
            removed += 1
        if removed:
            logger.info(f"[Reaper] Merged {removed} stale record(s) for {user_id}")
        return removed

    def _schedule(self, connection_id: str) -> None:
        self.cancel(connection_id)
        self.pending[connection_id] = asyncio.get_running_loop().create_task(
            self._reap_later(connection_id)
        )

    async def _reap_later(self, connection_id: str) -> None:
        await asyncio.sleep(self.delay_seconds)
        self.pending.pop(connection_id, None)
        record = self.registry.remove(connection_id)
        if record is None:
            return
        logger.info(f"[Reaper] Reaped {record.username} ({record.userId}) on {connection_id}")
        await self.presence.publish()
