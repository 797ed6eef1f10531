from __future__ import annotations

import asyncio
import sqlite3
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from barkle_agent.memory.storage.schema import MemorySchemaMixin  # noqa: E402
from barkle_agent.memory.store import MemoryStore  # noqa: E402


def _store(tmp_path: Path, **kwargs) -> MemoryStore:
    store = MemoryStore(tmp_path / "agent.db", **kwargs)
    asyncio.run(store.init())
    return store


def test_schema_mismatch_raises_without_opt_in(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MEMORY_SQLITE_RESET_ON_SCHEMA_MISMATCH", raising=False)
    db_path = tmp_path / "agent.db"

    asyncio.run(MemorySchemaMixin(db_path).init())
    with sqlite3.connect(db_path) as conn:
        conn.execute("PRAGMA user_version = 999")
        conn.commit()

    with pytest.raises(RuntimeError, match="schema version mismatch"):
        asyncio.run(MemorySchemaMixin(db_path).init())


def test_schema_mismatch_can_reset_with_explicit_opt_in(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    db_path = tmp_path / "agent.db"
    store = MemoryStore(db_path)
    asyncio.run(store.init())
    asyncio.run(store.append_message("u1", "user", "hello"))

    with sqlite3.connect(db_path) as conn:
        conn.execute("PRAGMA user_version = 999")
        conn.commit()

    monkeypatch.setenv("MEMORY_SQLITE_RESET_ON_SCHEMA_MISMATCH", "1")
    asyncio.run(MemoryStore(db_path).init())

    with sqlite3.connect(db_path) as conn:
        version = conn.execute("PRAGMA user_version").fetchone()[0]
        rows = conn.execute("SELECT COUNT(*) FROM messages").fetchone()[0]
    assert version == MemorySchemaMixin.SCHEMA_VERSION
    assert rows == 0


def test_old_processed_events_table_gains_kind_column(tmp_path: Path) -> None:
    db_path = tmp_path / "agent.db"
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            "CREATE TABLE processed_events (event_id TEXT PRIMARY KEY, user_id TEXT NOT NULL DEFAULT '', "
            "processed_at REAL NOT NULL)"
        )
        conn.execute("INSERT INTO processed_events (event_id, processed_at) VALUES ('old', 1.0)")
        conn.execute("PRAGMA user_version = 1")
        conn.commit()

    asyncio.run(MemoryStore(db_path).init())

    with sqlite3.connect(db_path) as conn:
        columns = {row[1] for row in conn.execute("PRAGMA table_info(processed_events)")}
        kind = conn.execute("SELECT kind FROM processed_events WHERE event_id = 'old'").fetchone()[0]
    assert "kind" in columns
    assert kind == "notification"


def test_history_is_returned_in_causal_order(tmp_path: Path) -> None:
    store = _store(tmp_path)

    async def _run() -> list[dict[str, object]]:
        await store.append_message("u1", "user", "first")
        await store.append_message("u2", "user", "other user")
        await store.append_message("u1", "assistant", "second")
        await store.append_message("u1", "user", "third")
        return await store.get_history("u1")

    history = asyncio.run(_run())

    assert [row["content"] for row in history] == ["first", "second", "third"]
    assert [row["role"] for row in history] == ["user", "assistant", "user"]
    assert history[0]["sequence"] < history[1]["sequence"] < history[2]["sequence"]


def test_history_limit_keeps_newest_messages(tmp_path: Path) -> None:
    store = _store(tmp_path)

    async def _run() -> list[dict[str, object]]:
        for index in range(6):
            await store.append_message("u1", "user" if index % 2 == 0 else "assistant", f"m{index}")
        return await store.get_history("u1", limit=3)

    assert [row["content"] for row in asyncio.run(_run())] == ["m3", "m4", "m5"]


def test_seed_message_is_inserted_once_before_first_message(tmp_path: Path) -> None:
    store = _store(tmp_path)

    async def _run() -> list[dict[str, object]]:
        await store.get_history("u1", seed_message="You are chatting with Ada.")
        await store.get_history("u1", seed_message="You are chatting with Ada.")
        await store.append_message("u1", "user", "hi")
        return await store.get_history("u1", seed_message="You are chatting with Ada.")

    history = asyncio.run(_run())

    assert [(row["role"], row["content"]) for row in history] == [
        ("user", "You are chatting with Ada."),
        ("user", "hi"),
    ]


def test_clear_history_only_touches_one_user(tmp_path: Path) -> None:
    store = _store(tmp_path)

    async def _run() -> tuple[int, int, int]:
        await store.append_message("u1", "user", "a")
        await store.append_message("u1", "assistant", "b")
        await store.append_message("u2", "user", "c")
        removed = await store.clear_history("u1")
        return removed, await store.count_messages("u1"), await store.count_messages("u2")

    assert asyncio.run(_run()) == (2, 0, 1)


def test_append_rejects_unknown_role(tmp_path: Path) -> None:
    store = _store(tmp_path)

    with pytest.raises(ValueError, match="role"):
        asyncio.run(store.append_message("u1", "system", "nope"))


def test_rate_limit_blocks_sixteenth_message_and_resets_after_window(tmp_path: Path) -> None:
    store = _store(tmp_path)
    start = 1_000_000.0

    async def _run():
        decisions = []
        for offset in range(16):
            decisions.append(await store.check_and_increment_rate("u1", now=start + offset))
        after_window = await store.check_and_increment_rate("u1", now=start + 3600)
        return decisions, after_window

    decisions, after_window = asyncio.run(_run())

    assert all(decision.allowed for decision in decisions[:15])
    assert [decision.count for decision in decisions[:15]] == list(range(1, 16))
    blocked = decisions[15]
    assert blocked.allowed is False
    assert blocked.reset_at == start + 3600
    assert blocked.reset_at > start + 15
    assert after_window.allowed is True
    assert after_window.count == 1
    assert asyncio.run(store.get_rate_window("u1")) == (1, start + 3600)


def test_rate_limit_exempt_user_bypasses_and_leaves_no_row(tmp_path: Path) -> None:
    store = _store(tmp_path, rate_limit_max_messages=1)

    async def _run():
        results = [await store.check_and_increment_rate("vip", is_exempt=True) for _ in range(5)]
        return results, await store.get_rate_window("vip")

    results, window = asyncio.run(_run())

    assert all(result.allowed for result in results)
    assert window is None


def test_rate_limit_is_atomic_under_concurrency(tmp_path: Path) -> None:
    store = _store(tmp_path, rate_limit_max_messages=5, rate_limit_window_seconds=60)

    async def _run():
        return await asyncio.gather(
            *(store.check_and_increment_rate("u1", now=500.0) for _ in range(12))
        )

    decisions = asyncio.run(_run())

    assert sum(1 for decision in decisions if decision.allowed) == 5
    assert asyncio.run(store.get_rate_window("u1")) == (5, 500.0)


def test_rate_windows_are_independent_per_user(tmp_path: Path) -> None:
    store = _store(tmp_path, rate_limit_max_messages=1)

    async def _run():
        first = await store.check_and_increment_rate("u1", now=10.0)
        second = await store.check_and_increment_rate("u1", now=11.0)
        other = await store.check_and_increment_rate("u2", now=11.0)
        return first, second, other

    first, second, other = asyncio.run(_run())

    assert first.allowed and other.allowed
    assert not second.allowed
