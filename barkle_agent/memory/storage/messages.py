from __future__ import annotations

from typing import Dict, List

import aiosqlite

from .utils import _sqlite_connection, _utc_now

VALID_ROLES = ("user", "assistant")


class MemoryMessagesMixin:
    async def append_message(self, user_id: str, role: str, content: str, *, now: float | None = None) -> int:
        if role not in VALID_ROLES:
            raise ValueError(f"Unsupported message role: {role!r}")
        async with _sqlite_connection(self.db_path) as db:
            cursor = await db.execute(
                """
                INSERT INTO messages (user_id, role, content, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (str(user_id), role, str(content), float(now if now is not None else _utc_now())),
            )
            await db.commit()
            return int(cursor.lastrowid)

    async def get_history(
        self,
        user_id: str,
        *,
        seed_message: str = "",
        limit: int = 0,
    ) -> List[Dict[str, object]]:
        """Messages for one user in causal order.

        An empty log is seeded once with ``seed_message`` (role user) when one is
        given. ``limit`` keeps only the newest messages; 0 returns everything.
        """
        async with _sqlite_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            if seed_message:
                async with db.execute(
                    "SELECT 1 FROM messages WHERE user_id = ? LIMIT 1",
                    (str(user_id),),
                ) as cursor:
                    exists = await cursor.fetchone()
                if exists is None:
                    await db.execute(
                        """
                        INSERT INTO messages (user_id, role, content, created_at)
                        VALUES (?, 'user', ?, ?)
                        """,
                        (str(user_id), seed_message, _utc_now()),
                    )
                    await db.commit()

            if limit > 0:
                query = """
                    SELECT sequence, role, content, created_at
                    FROM (
                        SELECT sequence, role, content, created_at
                        FROM messages
                        WHERE user_id = ?
                        ORDER BY sequence DESC
                        LIMIT ?
                    )
                    ORDER BY sequence ASC
                """
                params: tuple[object, ...] = (str(user_id), int(limit))
            else:
                query = """
                    SELECT sequence, role, content, created_at
                    FROM messages
                    WHERE user_id = ?
                    ORDER BY sequence ASC
                """
                params = (str(user_id),)
            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()

        return [
            {
                "sequence": int(row["sequence"]),
                "role": str(row["role"]),
                "content": str(row["content"]),
                "created_at": float(row["created_at"]),
            }
            for row in rows
        ]

    async def clear_history(self, user_id: str) -> int:
        async with _sqlite_connection(self.db_path) as db:
            cursor = await db.execute("DELETE FROM messages WHERE user_id = ?", (str(user_id),))
            await db.commit()
            return max(0, int(cursor.rowcount))

    async def count_messages(self, user_id: str) -> int:
        async with _sqlite_connection(self.db_path) as db:
            async with db.execute("SELECT COUNT(*) FROM messages WHERE user_id = ?", (str(user_id),)) as cursor:
                row = await cursor.fetchone()
        return int(row[0]) if row else 0
