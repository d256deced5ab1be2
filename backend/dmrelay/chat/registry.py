"""Connection registry: which identity owns each live connection.

Records are keyed by connectionId. A secondary index (userId -> connection
ids in registration order) is updated in the same step as the primary table,
so resolving a user to a connection does not scan every record.

Thread Safety:
    Designed for a single asyncio event loop. Every method is synchronous
    and completes without awaiting, so no locking is needed.
"""
import logging
import time
from typing import Dict, List, Optional

from .schemas import UserPresence

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Maps connection ids to UserPresence records."""

    def __init__(self) -> None:
        # connection_id -> presence record (dict keeps registration order)
        self._records: Dict[str, UserPresence] = {}

        # user_id -> [connection_id, ...], oldest registration first
        self._by_user: Dict[str, List[str]] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._records

    def register(self, connection_id: str, user_id: str, username: str) -> UserPresence:
        """Insert or overwrite the record for ``connection_id``.

        No deduplication by user id: the same user on two connections
        gets two records.
        """
        previous = self._records.pop(connection_id, None)
        if previous is not None:
            self._unindex(previous.userId, connection_id)

        record = UserPresence(
            connectionId=connection_id,
            userId=user_id,
            username=username,
            isOnline=True,
            lastSeen=time.time(),
        )
        self._records[connection_id] = record
        self._by_user.setdefault(user_id, []).append(connection_id)
        logger.info(f"[Registry] {username} ({user_id}) registered on {connection_id}")
        return record

    def mark_offline(self, connection_id: str) -> Optional[UserPresence]:
        """Flag a record offline; it stays in the snapshot until removed."""
        record = self._records.get(connection_id)
        if record is None:
            return None
        record.isOnline = False
        record.lastSeen = time.time()
        return record

    def remove(self, connection_id: str) -> Optional[UserPresence]:
        """Delete a record entirely. Returns it, or None if unknown."""
        record = self._records.pop(connection_id, None)
        if record is not None:
            self._unindex(record.userId, connection_id)
        return record

    def get(self, connection_id: str) -> Optional[UserPresence]:
        return self._records.get(connection_id)

    def find_by_user_id(self, user_id: str) -> Optional[UserPresence]:
        """Resolve a user to its most recently registered online record."""
        for connection_id in reversed(self._by_user.get(user_id, [])):
            record = self._records[connection_id]
            if record.isOnline:
                return record
        return None

    def records_for_user(self, user_id: str) -> List[UserPresence]:
        """All records for a user, online or pending removal."""
        return [self._records[cid] for cid in self._by_user.get(user_id, [])]

    def snapshot(self) -> List[UserPresence]:
        """Every known record, including ones waiting to be reaped."""
        return list(self._records.values())

    def clear(self) -> None:
        self._records.clear()
        self._by_user.clear()

    def _unindex(self, user_id: str, connection_id: str) -> None:
        connection_ids = self._by_user.get(user_id)
        if not connection_ids:
            return
        if connection_id in connection_ids:
            connection_ids.remove(connection_id)
        if not connection_ids:
            del self._by_user[user_id]
