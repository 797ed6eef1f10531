from __future__ import annotations

import itertools
import re
import time
from dataclasses import dataclass
from typing import List

from .storage.utils import normalize_memory_key

_TAIL = r"(?:\.|$|,)"

PREFERENCE_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        rf"\bi (love|like|enjoy|prefer|hate|dislike) (.+?){_TAIL}",
        rf"\bmy favorite (.+?) is (.+?){_TAIL}",
        rf"\bi usually (.+?){_TAIL}",
        rf"\bi always (.+?){_TAIL}",
        rf"\bi never (.+?){_TAIL}",
    )
)

FACT_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        rf"\bi am (.+?){_TAIL}",
        rf"\bi work as (.+?){_TAIL}",
        rf"\bi live in (.+?){_TAIL}",
        rf"\bmy (.+?) is (.+?){_TAIL}",
        rf"\bi have (.+?){_TAIL}",
        rf"\bi'm (.+?){_TAIL}",
    )
)

INTEREST_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        rf"\bi'm into (.+?){_TAIL}",
        rf"\bi play (.+?){_TAIL}",
        rf"\bi collect (.+?){_TAIL}",
        rf"\bi'm learning (.+?){_TAIL}",
        rf"\bi study (.+?){_TAIL}",
    )
)

HIGH_IMPORTANCE_KEYWORDS = (
    "important",
    "remember",
    "never forget",
    "always",
    "love",
    "hate",
    "favorite",
    "birthday",
    "anniversary",
)
MEDIUM_IMPORTANCE_KEYWORDS = ("like", "enjoy", "prefer", "usually", "often", "sometimes", "work", "live", "family")
LOW_IMPORTANCE_KEYWORDS = ("maybe", "perhaps", "might", "could", "sometimes")

CONVERSATION_IMPORTANCE = 8


@dataclass(slots=True)
class MemoryCandidate:
    key: str
    value: str
    memory_type: str
    importance: int


def calculate_importance(text: str) -> int:
    lowered = text.casefold()
    if any(keyword in lowered for keyword in HIGH_IMPORTANCE_KEYWORDS):
        return 9
    if any(keyword in lowered for keyword in MEDIUM_IMPORTANCE_KEYWORDS):
        return 6
    if any(keyword in lowered for keyword in LOW_IMPORTANCE_KEYWORDS):
        return 3
    return 5


class MemoryExtractor:
    """Pattern-based extraction of durable statements a user makes about themselves."""

    _groups = (
        ("preference", PREFERENCE_PATTERNS),
        ("fact", FACT_PATTERNS),
        ("interest", INTEREST_PATTERNS),
    )

    def __init__(self) -> None:
        self._conversation_counter = itertools.count(1)

    def conversation_key(self) -> str:
        return f"conversation_{int(time.time() * 1000)}_{next(self._conversation_counter)}"

    def extract(self, text: str) -> List[MemoryCandidate]:
        content = (text or "").strip()
        if not content:
            return []

        candidates: list[MemoryCandidate] = []
        for memory_type, patterns in self._groups:
            for pattern in patterns:
                for match in pattern.finditer(content):
                    phrase = match.group(0).strip()
                    key_body = normalize_memory_key(phrase)
                    if not key_body:
                        continue
                    candidates.append(
                        MemoryCandidate(
                            key=f"{memory_type}_{key_body}",
                            value=phrase.rstrip(".,").strip() or phrase,
                            memory_type=memory_type,
                            importance=calculate_importance(phrase),
                        )
                    )

        lowered = content.casefold()
        if "remember" in lowered or "important" in lowered:
            candidates.append(
                MemoryCandidate(
                    key=self.conversation_key(),
                    value=content,
                    memory_type="conversation",
                    importance=CONVERSATION_IMPORTANCE,
                )
            )
        return candidates
