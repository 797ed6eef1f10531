from __future__ import annotations

import os
import re
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _utc_now() -> float:
    return time.time()


def _sqlite_busy_timeout_ms() -> int:
    raw = os.getenv("MEMORY_SQLITE_BUSY_TIMEOUT_MS", "5000").strip()
    try:
        timeout = int(raw)
    except ValueError:
        timeout = 5000
    return max(0, min(timeout, 60000))


@asynccontextmanager
async def _sqlite_connection(db_path: str | Path) -> AsyncIterator[aiosqlite.Connection]:
    async with aiosqlite.connect(db_path) as db:
        timeout_ms = _sqlite_busy_timeout_ms()
        if timeout_ms > 0:
            await db.execute(f"PRAGMA busy_timeout={timeout_ms}")
        yield db


def normalize_memory_key(text: str, limit: int = 50) -> str:
    lowered = (text or "").casefold()
    cleaned = re.sub(r"[^a-z0-9\s]", "", lowered)
    return re.sub(r"\s+", "_", cleaned)[:limit]


def memory_row_to_dict(row: aiosqlite.Row) -> dict[str, object]:
    return {
        "memory_key": str(row["memory_key"]),
        "memory_value": str(row["memory_value"]),
        "memory_type": str(row["memory_type"]),
        "importance": int(row["importance"]),
        "created_at": float(row["created_at"]),
        "updated_at": float(row["updated_at"]),
    }
