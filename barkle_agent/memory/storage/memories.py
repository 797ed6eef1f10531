from __future__ import annotations

import logging
from typing import Dict, List

import aiosqlite

from .utils import _clamp, _sqlite_connection, _utc_now, memory_row_to_dict

logger = logging.getLogger("barkle_agent")

MEMORY_TYPES = (
    "preference",
    "fact",
    "conversation",
    "relationship",
    "interest",
    "goal",
    "experience",
    "reminder",
)


class MemoryMemoriesMixin:
    async def upsert_memory(
        self,
        user_id: str,
        memory_key: str,
        memory_value: str,
        memory_type: str = "fact",
        importance: int = 5,
        *,
        now: float | None = None,
    ) -> None:
        if memory_type not in MEMORY_TYPES:
            raise ValueError(f"Unsupported memory type: {memory_type!r}")
        key = str(memory_key or "").strip()
        if not key:
            raise ValueError("Memory key must not be empty")
        stamp = float(now if now is not None else _utc_now())
        score = int(_clamp(int(importance), 1, 10))
        async with _sqlite_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO memories (
                    user_id, memory_key, memory_value, memory_type, importance, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, memory_key) DO UPDATE SET
                    memory_value = excluded.memory_value,
                    memory_type = excluded.memory_type,
                    importance = excluded.importance,
                    updated_at = excluded.updated_at
                """,
                (str(user_id), key, str(memory_value), memory_type, score, stamp, stamp),
            )
            await db.commit()

    async def get_memory(self, user_id: str, memory_key: str) -> Dict[str, object] | None:
        async with _sqlite_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT memory_key, memory_value, memory_type, importance, created_at, updated_at
                FROM memories
                WHERE user_id = ? AND memory_key = ?
                """,
                (str(user_id), str(memory_key)),
            ) as cursor:
                row = await cursor.fetchone()
        return memory_row_to_dict(row) if row is not None else None

    async def list_memories(
        self,
        user_id: str,
        *,
        limit: int = 0,
        memory_type: str | None = None,
    ) -> List[Dict[str, object]]:
        clauses = ["user_id = ?"]
        params: list[object] = [str(user_id)]
        if memory_type:
            clauses.append("memory_type = ?")
            params.append(memory_type)
        query = f"""
            SELECT memory_key, memory_value, memory_type, importance, created_at, updated_at
            FROM memories
            WHERE {' AND '.join(clauses)}
            ORDER BY importance DESC, updated_at DESC, memory_id DESC
        """
        if limit > 0:
            query += " LIMIT ?"
            params.append(int(limit))
        async with _sqlite_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(query, tuple(params)) as cursor:
                rows = await cursor.fetchall()
        return [memory_row_to_dict(row) for row in rows]

    async def delete_memories(self, user_id: str) -> int:
        async with _sqlite_connection(self.db_path) as db:
            cursor = await db.execute("DELETE FROM memories WHERE user_id = ?", (str(user_id),))
            await db.commit()
            return max(0, int(cursor.rowcount))

    async def memory_user_ids(self) -> List[str]:
        async with _sqlite_connection(self.db_path) as db:
            async with db.execute("SELECT DISTINCT user_id FROM memories ORDER BY user_id") as cursor:
                rows = await cursor.fetchall()
        return [str(row[0]) for row in rows]

    async def evict_memories(self, user_id: str, *, max_count: int, protected_importance: int) -> int:
        """Drop low-importance rows that fall past ``max_count`` in rank order."""
        async with _sqlite_connection(self.db_path) as db:
            async with db.execute(
                """
                SELECT memory_id, importance
                FROM memories
                WHERE user_id = ?
                ORDER BY importance DESC, updated_at DESC, memory_id DESC
                """,
                (str(user_id),),
            ) as cursor:
                rows = await cursor.fetchall()

            doomed = [
                int(row[0])
                for row in rows[max(0, int(max_count)):]
                if int(row[1]) < int(protected_importance)
            ]
            if not doomed:
                return 0
            placeholders = ",".join("?" for _ in doomed)
            await db.execute(f"DELETE FROM memories WHERE memory_id IN ({placeholders})", tuple(doomed))
            await db.commit()
        logger.debug("Evicted %s memories for user %s", len(doomed), user_id)
        return len(doomed)

    async def memory_stats(self, user_id: str) -> Dict[str, object]:
        async with _sqlite_connection(self.db_path) as db:
            async with db.execute(
                """
                SELECT memory_type, COUNT(*), AVG(importance)
                FROM memories
                WHERE user_id = ?
                GROUP BY memory_type
                ORDER BY memory_type
                """,
                (str(user_id),),
            ) as cursor:
                rows = await cursor.fetchall()

        by_type = {str(row[0]): int(row[1]) for row in rows}
        total = sum(by_type.values())
        weighted = sum(float(row[2] or 0.0) * int(row[1]) for row in rows)
        return {
            "total": total,
            "by_type": by_type,
            "average_importance": round(weighted / total, 2) if total else 0.0,
        }
