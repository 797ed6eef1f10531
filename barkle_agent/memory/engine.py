from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List

from .extractor import MemoryCandidate, MemoryExtractor
from .storage.memories import MEMORY_TYPES
from .storage.utils import normalize_memory_key

logger = logging.getLogger("barkle_agent")

IMPORTANT_MARK_THRESHOLD = 7


def text_overlap(memory_text: str, current_text: str) -> float:
    """Fraction of memory words that contain, or are contained in, some message word."""
    memory_words = [word for word in re.split(r"\s+", (memory_text or "").casefold()) if word]
    message_words = [word for word in re.split(r"\s+", (current_text or "").casefold()) if word]
    if not memory_words or not message_words:
        return 0.0
    matched = sum(
        1
        for word in memory_words
        if any(word in other or other in word for other in message_words)
    )
    return matched / len(memory_words)


class MemoryEngine:
    def __init__(
        self,
        store: Any,
        extractor: MemoryExtractor | None = None,
        *,
        max_per_user: int = 200,
        protected_importance: int = 7,
    ) -> None:
        self.store = store
        self.extractor = extractor or MemoryExtractor()
        self.max_per_user = max(1, int(max_per_user))
        self.protected_importance = int(protected_importance)

    def extract(self, text: str) -> List[MemoryCandidate]:
        return self.extractor.extract(text)

    async def extract_and_store(self, user_id: str, text: str) -> List[MemoryCandidate]:
        try:
            candidates = self.extract(text)
            for candidate in candidates:
                await self.store.upsert_memory(
                    user_id,
                    candidate.key,
                    candidate.value,
                    candidate.memory_type,
                    candidate.importance,
                )
        except Exception as exc:
            logger.error("Memory extraction failed for user %s: %s", user_id, exc)
            return []
        if candidates:
            logger.info("Stored %s memories for user %s", len(candidates), user_id)
        return candidates

    async def relevant_memories(self, user_id: str, current_text: str = "", limit: int = 10) -> List[Dict[str, object]]:
        """Top memories for a message, scored by word overlap weighted by importance.

        Storage order is importance then recency, so a stable sort on score keeps
        that order for ties and for an empty message.
        """
        try:
            memories = await self.store.list_memories(user_id)
        except Exception as exc:
            logger.error("Failed to load memories for user %s: %s", user_id, exc)
            return []
        if not memories:
            return []
        limit = max(1, int(limit))
        if not (current_text or "").strip():
            return memories[:limit]

        scored = []
        for memory in memories:
            overlap = text_overlap(str(memory["memory_value"]), current_text)
            scored.append({**memory, "relevance_score": overlap * int(memory["importance"])})
        scored.sort(key=lambda item: (-float(item["relevance_score"]), -float(item["updated_at"])))
        return scored[:limit]

    async def evict(
        self,
        user_id: str,
        max_count: int | None = None,
        protected_importance: int | None = None,
    ) -> int:
        deleted = await self.store.evict_memories(
            user_id,
            max_count=self.max_per_user if max_count is None else max_count,
            protected_importance=self.protected_importance if protected_importance is None else protected_importance,
        )
        if deleted:
            logger.info("Cleaned up %s old memories for user %s", deleted, user_id)
        return deleted

    async def evict_all(self) -> int:
        total = 0
        for user_id in await self.store.memory_user_ids():
            try:
                total += await self.evict(user_id)
            except Exception as exc:
                logger.error("Memory eviction failed for user %s: %s", user_id, exc)
        return total

    async def store_explicit(
        self,
        user_id: str,
        key: str,
        value: str,
        memory_type: str = "fact",
        importance: int = 5,
    ) -> str:
        memory_key = " ".join((key or "").split())[:100] or normalize_memory_key(value)
        if not memory_key:
            raise ValueError("Memory key must contain letters or digits")
        if memory_type not in MEMORY_TYPES:
            raise ValueError(f"Unsupported memory type: {memory_type!r}")
        await self.store.upsert_memory(user_id, memory_key, value, memory_type, importance)
        logger.info("Manually stored memory for user %s: %s", user_id, memory_key)
        return memory_key

    async def get(self, user_id: str, key: str) -> Dict[str, object] | None:
        memory = await self.store.get_memory(user_id, key)
        if memory is None:
            normalized = normalize_memory_key(key)
            if normalized and normalized != key:
                memory = await self.store.get_memory(user_id, normalized)
        return memory

    async def search(self, user_id: str, query: str, limit: int = 5) -> List[Dict[str, object]]:
        query = (query or "").strip()
        if not query:
            return []
        memories = await self.store.list_memories(user_id)
        hits = []
        for memory in memories:
            haystack = f"{memory['memory_key'].replace('_', ' ')} {memory['memory_value']}"
            overlap = max(text_overlap(query, haystack), text_overlap(str(memory["memory_value"]), query))
            if overlap > 0:
                hits.append({**memory, "relevance_score": overlap * int(memory["importance"])})
        hits.sort(key=lambda item: (-float(item["relevance_score"]), -float(item["updated_at"])))
        return hits[: max(1, int(limit))]

    async def list_memories(self, user_id: str, limit: int = 0) -> List[Dict[str, object]]:
        return await self.store.list_memories(user_id, limit=limit)

    async def clear(self, user_id: str) -> int:
        deleted = await self.store.delete_memories(user_id)
        logger.info("Cleared %s memories for user %s", deleted, user_id)
        return deleted

    async def stats(self, user_id: str) -> Dict[str, object]:
        return await self.store.memory_stats(user_id)

    @staticmethod
    def format_for_context(memories: Iterable[Dict[str, object]]) -> str:
        lines = []
        for memory in memories:
            prefix = "[IMPORTANT] " if int(memory.get("importance", 0)) > IMPORTANT_MARK_THRESHOLD else ""
            lines.append(f"{prefix}{memory.get('memory_value', '')}")
        if not lines:
            return ""
        return "User Memories:\n" + "\n".join(lines)
