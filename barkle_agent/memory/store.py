from __future__ import annotations

from pathlib import Path

from .storage.memories import MemoryMemoriesMixin
from .storage.messages import MemoryMessagesMixin
from .storage.processed_events import MemoryProcessedEventsMixin
from .storage.rate_limits import MemoryRateLimitsMixin
from .storage.schema import MemorySchemaMixin
from .storage.utils import _sqlite_connection


class MemoryStore(
    MemorySchemaMixin,
    MemoryMessagesMixin,
    MemoryRateLimitsMixin,
    MemoryProcessedEventsMixin,
    MemoryMemoriesMixin,
):
    """Durable per-user conversation log, rate windows, processed events and memories."""

    backend_name = "sqlite"

    def __init__(
        self,
        db_path: Path | str,
        *,
        rate_limit_max_messages: int = 15,
        rate_limit_window_seconds: int = 3600,
    ) -> None:
        super().__init__(Path(db_path))
        self.rate_limit_max_messages = max(1, int(rate_limit_max_messages))
        self.rate_limit_window_seconds = max(1, int(rate_limit_window_seconds))

    async def ping(self) -> None:
        async with _sqlite_connection(self.db_path) as db:
            await db.execute("SELECT 1")
