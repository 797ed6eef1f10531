from __future__ import annotations

from .utils import _sqlite_connection, _utc_now


class MemoryProcessedEventsMixin:
    async def is_event_processed(self, event_id: str) -> bool:
        async with _sqlite_connection(self.db_path) as db:
            async with db.execute(
                "SELECT 1 FROM processed_events WHERE event_id = ? LIMIT 1",
                (str(event_id),),
            ) as cursor:
                row = await cursor.fetchone()
        return row is not None

    async def insert_processed_event(
        self,
        event_id: str,
        kind: str,
        user_id: str,
        *,
        now: float | None = None,
    ) -> bool:
        """Record an event id; returns False when it was already recorded."""
        async with _sqlite_connection(self.db_path) as db:
            cursor = await db.execute(
                """
                INSERT OR IGNORE INTO processed_events (event_id, kind, user_id, processed_at)
                VALUES (?, ?, ?, ?)
                """,
                (str(event_id), str(kind or "notification"), str(user_id or ""), float(now if now is not None else _utc_now())),
            )
            await db.commit()
            return int(cursor.rowcount) > 0

    async def delete_processed_events_before(self, cutoff: float) -> int:
        async with _sqlite_connection(self.db_path) as db:
            cursor = await db.execute(
                "DELETE FROM processed_events WHERE processed_at < ?",
                (float(cutoff),),
            )
            await db.commit()
            return max(0, int(cursor.rowcount))

    async def count_processed_events(self) -> int:
        async with _sqlite_connection(self.db_path) as db:
            async with db.execute("SELECT COUNT(*) FROM processed_events") as cursor:
                row = await cursor.fetchone()
        return int(row[0]) if row else 0
