from __future__ import annotations

import os
from pathlib import Path

import aiosqlite

from .utils import _sqlite_connection


class MemorySchemaMixin:
    SCHEMA_VERSION = 2

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _allow_destructive_reset_on_mismatch() -> bool:
        raw = os.getenv("MEMORY_SQLITE_RESET_ON_SCHEMA_MISMATCH", "")
        return raw.strip().lower() in {"1", "true", "yes", "y", "on"}

    async def _has_user_tables(self, db: aiosqlite.Connection) -> bool:
        async with db.execute(
            """
            SELECT 1
            FROM sqlite_master
            WHERE type = 'table'
              AND name NOT LIKE 'sqlite_%'
            LIMIT 1
            """
        ) as cursor:
            row = await cursor.fetchone()
        return bool(row)

    async def init(self) -> None:
        async with _sqlite_connection(self.db_path) as db:
            await db.execute("PRAGMA journal_mode=WAL")
            async with db.execute("PRAGMA user_version") as cursor:
                row = await cursor.fetchone()
            version = int(row[0]) if row else 0
            has_tables = await self._has_user_tables(db)

            if version > self.SCHEMA_VERSION:
                if has_tables and self._allow_destructive_reset_on_mismatch():
                    await self._reset_schema(db)
                    await db.execute(f"PRAGMA user_version = {self.SCHEMA_VERSION}")
                    await db.commit()
                    return
                raise RuntimeError(
                    "SQLite schema version mismatch detected (database is newer than this bot build). "
                    f"Found user_version={version}, supported={self.SCHEMA_VERSION}. "
                    "Set MEMORY_SQLITE_RESET_ON_SCHEMA_MISMATCH=1 to allow destructive reset."
                )

            await self._create_schema(db)
            if has_tables and version < self.SCHEMA_VERSION:
                await self._migrate_schema(db, version)
            if version != self.SCHEMA_VERSION:
                await db.execute(f"PRAGMA user_version = {self.SCHEMA_VERSION}")
            await db.commit()

    async def _reset_schema(self, db: aiosqlite.Connection) -> None:
        for table in ("messages", "rate_limits", "processed_events", "memories"):
            await db.execute(f"DROP TABLE IF EXISTS {table}")
        await self._create_schema(db)

    async def _table_columns(self, db: aiosqlite.Connection, table_name: str) -> set[str]:
        async with db.execute(f"PRAGMA table_info({table_name})") as cursor:
            rows = await cursor.fetchall()
        return {str(row[1]) for row in rows}

    async def _add_column_if_missing(self, db: aiosqlite.Connection, table_name: str, column_sql: str) -> None:
        column_name = str(column_sql.split()[0]).strip()
        if not column_name:
            return
        cols = await self._table_columns(db, table_name)
        if column_name in cols:
            return
        await db.execute(f"ALTER TABLE {table_name} ADD COLUMN {column_sql}")

    async def _migrate_schema(self, db: aiosqlite.Connection, from_version: int) -> None:
        if from_version < 2:
            await self._add_column_if_missing(db, "processed_events", "kind TEXT NOT NULL DEFAULT 'notification'")

    async def _create_schema(self, db: aiosqlite.Connection) -> None:
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS messages (
                sequence INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
                content TEXT NOT NULL,
                created_at REAL NOT NULL
            )
            """
        )
        await db.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_messages_user_sequence
            ON messages(user_id, sequence)
            """
        )
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS rate_limits (
                user_id TEXT PRIMARY KEY,
                message_count INTEGER NOT NULL DEFAULT 0,
                window_start REAL NOT NULL
            )
            """
        )
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS processed_events (
                event_id TEXT PRIMARY KEY,
                kind TEXT NOT NULL DEFAULT 'notification',
                user_id TEXT NOT NULL DEFAULT '',
                processed_at REAL NOT NULL
            )
            """
        )
        await db.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_processed_events_processed_at
            ON processed_events(processed_at)
            """
        )
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS memories (
                memory_id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                memory_key TEXT NOT NULL,
                memory_value TEXT NOT NULL,
                memory_type TEXT NOT NULL DEFAULT 'fact',
                importance INTEGER NOT NULL DEFAULT 5 CHECK (importance BETWEEN 1 AND 10),
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL,
                UNIQUE (user_id, memory_key)
            )
            """
        )
        await db.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_memories_user_rank
            ON memories(user_id, importance DESC, updated_at DESC)
            """
        )
