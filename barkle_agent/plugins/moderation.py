from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Mapping

from ..prompts.dialogue import moderation_slow_down_message, moderation_spam_message
from .hooks import AFTER_RESPONSE, BEFORE_RESPONSE, BasePlugin, HookHandler

logger = logging.getLogger("barkle_agent")

DEFAULT_SPAM_KEYWORDS = ("spam", "scam", "free money", "click here", "winner", "congratulations")


class ModerationPlugin(BasePlugin):
    """Answers spam and message bursts with a canned reply instead of a completion."""

    name = "Moderation"
    version = "1.0.0"
    description = "Spam keyword detection and short-window burst limiting"

    def __init__(
        self,
        *,
        spam_keywords: Iterable[str] = DEFAULT_SPAM_KEYWORDS,
        max_messages: int = 10,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.spam_keywords: List[str] = []
        for keyword in spam_keywords:
            self.add_spam_keyword(keyword)
        self.max_messages = max(1, int(max_messages))
        self.window_seconds = max(1.0, float(window_seconds))
        self._clock = clock
        self._recent: Dict[str, List[float]] = {}

    def hooks(self) -> Dict[str, HookHandler]:
        return {
            BEFORE_RESPONSE: self.before_response,
            AFTER_RESPONSE: self.after_response,
        }

    async def initialize(self) -> None:
        logger.info("Moderation plugin initialized with %s spam keywords", len(self.spam_keywords))

    async def before_response(self, data: Any, context: Mapping[str, Any]) -> Any:
        if not isinstance(data, dict):
            return None
        event = data.get("event")
        user_id = str(getattr(event, "author_user_id", "") or "")
        username = getattr(event, "author_username", "") or user_id
        if not user_id:
            return None

        now = self._clock()
        if self.is_rate_limited(user_id, now):
            logger.warning("Burst limit exceeded for @%s", username)
            return {**data, "blocked": True, "reason": "rate_limit", "auto_response": moderation_slow_down_message()}

        if self.is_spam(str(data.get("message") or "")):
            logger.warning("Spam detected from @%s", username)
            return {**data, "blocked": True, "reason": "spam", "auto_response": moderation_spam_message()}

        self._recent.setdefault(user_id, []).append(now)
        return None

    async def after_response(self, data: Any, context: Mapping[str, Any]) -> None:
        event = data.get("event") if isinstance(data, dict) else None
        if event is not None:
            logger.debug("Interaction logged: @%s -> response sent", event.author_username or event.author_user_id)

    def is_rate_limited(self, user_id: str, now: float) -> bool:
        history = self._recent.get(user_id)
        if not history:
            return False
        recent = [stamp for stamp in history if now - stamp < self.window_seconds]
        if recent:
            self._recent[user_id] = recent
        else:
            self._recent.pop(user_id, None)
        return len(recent) >= self.max_messages

    def is_spam(self, text: str) -> bool:
        lowered = (text or "").casefold()
        if not lowered:
            return False
        return any(keyword in lowered for keyword in self.spam_keywords)

    def add_spam_keyword(self, keyword: str) -> None:
        normalized = keyword.strip().casefold()
        if normalized and normalized not in self.spam_keywords:
            self.spam_keywords.append(normalized)

    def remove_spam_keyword(self, keyword: str) -> None:
        normalized = keyword.strip().casefold()
        if normalized in self.spam_keywords:
            self.spam_keywords.remove(normalized)

    def tracked_users(self) -> int:
        return len(self._recent)
