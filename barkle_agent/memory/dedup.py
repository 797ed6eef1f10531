from __future__ import annotations

import logging
import time
from typing import Any

from ..barkle.common import KeyedLocks, RecentIdCache

logger = logging.getLogger("barkle_agent")

SECONDS_PER_DAY = 86400


class Deduplicator:
    """At-most-once gate keyed by platform event id, persisted in the store."""

    def __init__(self, store: Any, *, retention_days: int = 7, recent_capacity: int = 1000) -> None:
        self.store = store
        self.retention_days = max(1, int(retention_days))
        self._recent = RecentIdCache(capacity=max(1, int(recent_capacity)))
        self._locks = KeyedLocks()

    async def is_processed(self, event_id: str) -> bool:
        if event_id in self._recent:
            return True
        return await self.store.is_event_processed(event_id)

    async def mark_processed(self, event_id: str, kind: str = "notification", user_id: str = "") -> None:
        await self.store.insert_processed_event(event_id, kind, user_id)
        self._recent.add(event_id)

    async def claim(self, event_id: str, kind: str = "notification", user_id: str = "") -> bool:
        """Atomically check and mark; exactly one caller per id gets True."""
        if not event_id:
            return False
        if event_id in self._recent:
            logger.debug("Event %s already handled (cache)", event_id)
            return False
        async with self._locks.hold(event_id):
            if event_id in self._recent:
                return False
            inserted = await self.store.insert_processed_event(event_id, kind, user_id)
            self._recent.add(event_id)
        if not inserted:
            logger.debug("Event %s already handled (store)", event_id)
        return inserted

    async def sweep(self, retention_days: int | None = None, *, now: float | None = None) -> int:
        days = self.retention_days if retention_days is None else max(0, int(retention_days))
        cutoff = float(now if now is not None else time.time()) - days * SECONDS_PER_DAY
        deleted = await self.store.delete_processed_events_before(cutoff)
        if deleted:
            logger.info("Cleaned up %s old processed event records", deleted)
        return deleted
