from __future__ import annotations

from dataclasses import dataclass

from ...barkle.common import KeyedLocks
from .utils import _sqlite_connection, _utc_now


@dataclass(slots=True)
class RateDecision:
    allowed: bool
    count: int
    reset_at: float | None = None


class MemoryRateLimitsMixin:
    rate_limit_max_messages = 15
    rate_limit_window_seconds = 3600

    @property
    def rate_locks(self) -> KeyedLocks:
        locks = getattr(self, "_rate_locks", None)
        if locks is None:
            locks = KeyedLocks()
            self._rate_locks = locks
        return locks

    async def check_and_increment_rate(
        self,
        user_id: str,
        *,
        is_exempt: bool = False,
        now: float | None = None,
    ) -> RateDecision:
        """Count one message against the user's fixed window.

        The window starts at the first message after the previous one expired;
        a blocked decision carries ``reset_at = window_start + window``.
        """
        if is_exempt:
            return RateDecision(allowed=True, count=0)

        current = float(now if now is not None else _utc_now())
        window = float(self.rate_limit_window_seconds)
        limit = int(self.rate_limit_max_messages)

        async with self.rate_locks.hold(str(user_id)):
            async with _sqlite_connection(self.db_path) as db:
                await db.execute("BEGIN IMMEDIATE")
                try:
                    async with db.execute(
                        "SELECT message_count, window_start FROM rate_limits WHERE user_id = ?",
                        (str(user_id),),
                    ) as cursor:
                        row = await cursor.fetchone()

                    if row is None or current - float(row[1]) >= window:
                        await db.execute(
                            """
                            INSERT INTO rate_limits (user_id, message_count, window_start)
                            VALUES (?, 1, ?)
                            ON CONFLICT(user_id) DO UPDATE SET
                                message_count = 1,
                                window_start = excluded.window_start
                            """,
                            (str(user_id), current),
                        )
                        await db.commit()
                        return RateDecision(allowed=True, count=1)

                    count = int(row[0])
                    window_start = float(row[1])
                    if count >= limit:
                        await db.rollback()
                        return RateDecision(allowed=False, count=count, reset_at=window_start + window)

                    await db.execute(
                        "UPDATE rate_limits SET message_count = message_count + 1 WHERE user_id = ?",
                        (str(user_id),),
                    )
                    await db.commit()
                    return RateDecision(allowed=True, count=count + 1)
                except BaseException:
                    await db.rollback()
                    raise

    async def get_rate_window(self, user_id: str) -> tuple[int, float] | None:
        async with _sqlite_connection(self.db_path) as db:
            async with db.execute(
                "SELECT message_count, window_start FROM rate_limits WHERE user_id = ?",
                (str(user_id),),
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return int(row[0]), float(row[1])
