from __future__ import annotations

import logging

from ...prompts.dialogue import build_thread_section, build_user_context_section
from ..common import UserContext
from ..events import InboundEvent

logger = logging.getLogger("barkle_agent")


class PromptMixin:
    async def _build_system_prompt(self, event: InboundEvent, text: str, user_context: UserContext) -> str:
        sections = [
            self.settings.system_prompt.strip(),
            build_user_context_section(user_context.context),
        ]
        thread = await self._thread_context(event)
        if thread:
            sections.append(thread)
        memories = await self._memory_context(event.author_user_id, text)
        if memories:
            sections.append(memories)
        return "\n\n".join(section for section in sections if section)

    async def _thread_context(self, event: InboundEvent) -> str:
        depth = int(self.settings.thread_context_depth)
        if not event.in_reply_to_id or depth <= 0 or event.is_direct:
            return ""
        try:
            thread = await self.barkle.get_conversation_thread(event.in_reply_to_id, max_depth=depth)
        except Exception as exc:
            logger.warning("Failed to load thread context for %s: %s", event.id, exc)
            return ""
        return build_thread_section(thread)

    async def _memory_context(self, user_id: str, text: str) -> str:
        if self.memory is None:
            return ""
        memories = await self.memory.relevant_memories(user_id, text, self.settings.memory_top_k)
        return self.memory.format_for_context(memories)
