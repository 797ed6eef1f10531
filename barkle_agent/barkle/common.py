from __future__ import annotations

import asyncio
import contextlib
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator


def collapse_spaces(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    if limit <= 3:
        return text[:limit]

    window = text[:limit]
    cut = window.rfind(" ")
    if cut >= int(limit * 0.7):
        return window[:cut].strip()

    return (window[: limit - 3].rstrip() + "...").strip()


def as_int(value: object, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        with contextlib.suppress(ValueError):
            return int(value.strip())
    return default


def as_str(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip()


class EventOutcome(str, Enum):
    IGNORED = "ignored"
    SKIPPED = "skipped"
    COMMAND = "command"
    BLOCKED = "blocked"
    STORED = "stored"
    FAILED = "failed"


@dataclass(slots=True)
class PendingMemoryUpdate:
    user_id: str
    event_id: str
    text: str


@dataclass(slots=True)
class UserContext:
    username: str
    display_name: str
    context: str
    profile: Any = None
    is_plus: bool = False


@dataclass(slots=True)
class RecentIdCache:
    """Bounded insertion-ordered set of recently handled ids."""

    capacity: int = 1000
    _items: dict[str, None] = field(default_factory=dict)

    def __contains__(self, item: object) -> bool:
        return item in self._items

    def __len__(self) -> int:
        return len(self._items)

    def add(self, item: str) -> None:
        self._items.pop(item, None)
        self._items[item] = None
        while len(self._items) > self.capacity:
            self._items.pop(next(iter(self._items)))


class KeyedLocks:
    """Per-key asyncio locks, dropped once no task holds or waits on them."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._locks

    def __len__(self) -> int:
        return len(self._locks)

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._users[key] - 1
            if remaining <= 0:
                self._users.pop(key, None)
                self._locks.pop(key, None)
            else:
                self._users[key] = remaining
