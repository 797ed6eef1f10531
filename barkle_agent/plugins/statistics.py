from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping

from ..config import read_text_with_fallback
from .hooks import AFTER_RESPONSE, BEFORE_RESPONSE, ON_NOTIFICATION, BasePlugin, HookHandler

logger = logging.getLogger("barkle_agent")

_COUNTERS = ("messages_processed", "responses_generated", "mentions_received", "direct_messages")


class StatisticsPlugin(BasePlugin):
    """Usage counters kept in memory and persisted as JSON on cleanup."""

    name = "Statistics"
    version = "1.0.0"
    description = "Tracks bot usage statistics and provides insights"

    def __init__(self, stats_path: Path | None = None, *, clock: Callable[[], float] = time.time) -> None:
        self.stats_path = stats_path
        self._clock = clock
        self.started_at = clock()
        self.counters: Dict[str, int] = {name: 0 for name in _COUNTERS}
        self.notifications: Dict[str, int] = {}
        self.users: Dict[str, Dict[str, Any]] = {}
        self.hourly: Dict[str, Dict[str, int]] = {}

    def hooks(self) -> Dict[str, HookHandler]:
        return {
            BEFORE_RESPONSE: self.track_message,
            AFTER_RESPONSE: self.track_response,
            ON_NOTIFICATION: self.track_notification,
        }

    async def initialize(self) -> None:
        self.load()

    async def cleanup(self) -> None:
        self.save()

    def _hour_bucket(self, now: float) -> Dict[str, int]:
        hour = str(datetime.fromtimestamp(now, timezone.utc).hour)
        return self.hourly.setdefault(hour, {"messages": 0, "responses": 0})

    async def track_message(self, data: Any, context: Mapping[str, Any]) -> None:
        now = self._clock()
        self.counters["messages_processed"] += 1
        self._hour_bucket(now)["messages"] += 1

        event = data.get("event") if isinstance(data, dict) else None
        if event is None:
            return
        if event.kind.value == "mention":
            self.counters["mentions_received"] += 1
        if event.is_direct:
            self.counters["direct_messages"] += 1

        user = self.users.setdefault(
            event.author_user_id,
            {"username": event.author_username, "message_count": 0, "first_interaction": now},
        )
        user["username"] = event.author_username or user.get("username", "")
        user["message_count"] = int(user.get("message_count", 0)) + 1
        user["last_interaction"] = now

    async def track_response(self, data: Any, context: Mapping[str, Any]) -> None:
        self.counters["responses_generated"] += 1
        self._hour_bucket(self._clock())["responses"] += 1

    async def track_notification(self, data: Any, context: Mapping[str, Any]) -> None:
        kind = str(data.get("type") or "unknown") if isinstance(data, dict) else "unknown"
        self.notifications[kind] = self.notifications.get(kind, 0) + 1

    def top_users(self, limit: int = 5) -> List[Dict[str, Any]]:
        ranked = sorted(self.users.items(), key=lambda item: int(item[1].get("message_count", 0)), reverse=True)
        return [{"user_id": user_id, **data} for user_id, data in ranked[: max(0, limit)]]

    def peak_hours(self, limit: int = 3) -> List[Dict[str, Any]]:
        ranked = sorted(self.hourly.items(), key=lambda item: item[1].get("messages", 0), reverse=True)
        return [{"hour": int(hour), **data} for hour, data in ranked[: max(0, limit)]]

    def snapshot(self) -> Dict[str, Any]:
        uptime = max(0.0, self._clock() - self.started_at)
        hours, remainder = divmod(int(uptime), 3600)
        return {
            **self.counters,
            "notifications": dict(self.notifications),
            "uptime_seconds": uptime,
            "uptime_formatted": f"{hours}h {remainder // 60}m",
            "top_users": self.top_users(),
            "peak_hours": self.peak_hours(),
        }

    def load(self) -> None:
        if self.stats_path is None or not self.stats_path.exists():
            return
        try:
            payload = json.loads(read_text_with_fallback(self.stats_path))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning("Failed to load statistics from %s: %s", self.stats_path, exc)
            return
        if not isinstance(payload, dict):
            logger.warning("Statistics file %s does not hold an object; starting fresh", self.stats_path)
            return

        for name in _COUNTERS:
            try:
                self.counters[name] = int(payload.get(name, 0))
            except (TypeError, ValueError):
                self.counters[name] = 0
        for field, target in (("notifications", self.notifications), ("users", self.users), ("hourly", self.hourly)):
            value = payload.get(field)
            if isinstance(value, dict):
                target.update(value)
        logger.debug("Statistics loaded from %s", self.stats_path)

    def save(self) -> None:
        if self.stats_path is None:
            return
        payload = {
            **self.counters,
            "notifications": self.notifications,
            "users": self.users,
            "hourly": self.hourly,
        }
        try:
            self.stats_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.stats_path.with_suffix(self.stats_path.suffix + ".tmp")
            tmp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
            tmp_path.replace(self.stats_path)
        except OSError as exc:
            logger.error("Failed to save statistics to %s: %s", self.stats_path, exc)
            return
        logger.debug("Statistics saved to %s", self.stats_path)
