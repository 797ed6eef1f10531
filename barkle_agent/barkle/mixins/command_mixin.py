from __future__ import annotations

import logging

from ...prompts.dialogue import (
    build_help_message,
    build_memory_cleared_message,
    build_memory_list,
    build_remember_ack,
    context_cleared_message,
    group_goodbye_message,
    group_leave_failed_message,
    memory_disabled_message,
    remember_usage_message,
)
from ...memory.storage.utils import normalize_memory_key
from ..events import InboundEvent

logger = logging.getLogger("barkle_agent")

CLEAR_CONTEXT_COMMANDS = {"!cc", "!clearcontext"}
HELP_COMMANDS = {"help", "!help"}
MEMORY_LIST_COMMANDS = {"!memory", "!mem"}
MEMORY_CLEAR_COMMANDS = {"!clearmemory", "!forgetme"}
REMEMBER_PREFIX = "!remember"
EXPLICIT_MEMORY_IMPORTANCE = 9
MEMORY_LIST_LIMIT = 20


class CommandMixin:
    async def _try_handle_command(self, event: InboundEvent, text: str) -> bool:
        lowered = text.casefold().strip()

        if lowered in CLEAR_CONTEXT_COMMANDS:
            async with self.user_locks.hold(event.author_user_id):
                removed = await self.store.clear_history(event.author_user_id)
            logger.info("Cleared %s messages of context for @%s", removed, event.author_username or event.author_user_id)
            await self._reply_to_command(event, context_cleared_message())
            return True

        if lowered in HELP_COMMANDS:
            await self._reply_to_command(
                event,
                build_help_message(self.settings.bot_name, self.settings.bot_username),
            )
            return True

        if lowered in MEMORY_LIST_COMMANDS:
            if self.memory is None:
                await self._reply_to_command(event, memory_disabled_message())
                return True
            memories = await self.memory.list_memories(event.author_user_id, limit=MEMORY_LIST_LIMIT)
            await self._reply_to_command(event, build_memory_list(memories))
            return True

        if lowered in MEMORY_CLEAR_COMMANDS:
            if self.memory is None:
                await self._reply_to_command(event, memory_disabled_message())
                return True
            removed = await self.memory.clear(event.author_user_id)
            await self._reply_to_command(event, build_memory_cleared_message(removed))
            return True

        if lowered == REMEMBER_PREFIX or lowered.startswith(REMEMBER_PREFIX + " "):
            await self._handle_remember(event, text.strip()[len(REMEMBER_PREFIX):].strip())
            return True

        if "leave" in lowered and "group" in lowered and event.channel_id and not event.is_direct:
            await self._leave_group(event)
            return True

        return False

    async def _handle_remember(self, event: InboundEvent, value: str) -> None:
        if self.memory is None:
            await self._reply_to_command(event, memory_disabled_message())
            return
        if not value:
            await self._reply_to_command(event, remember_usage_message())
            return
        key = f"manual_{normalize_memory_key(value)}"
        await self.memory.store_explicit(
            event.author_user_id,
            key,
            value,
            "fact",
            EXPLICIT_MEMORY_IMPORTANCE,
        )
        await self._reply_to_command(event, build_remember_ack(value))

    async def _leave_group(self, event: InboundEvent) -> None:
        group_id = str(event.channel_id)
        try:
            await self.barkle.send_reply(group_goodbye_message(), reply_to=event.id, channel_id=group_id)
            await self.barkle.leave_group(group_id)
            logger.info("Left group %s at the request of @%s", group_id, event.author_username or event.author_user_id)
        except Exception as exc:
            logger.error("Failed to leave group %s: %s", group_id, exc)
            await self._reply_to_command(event, group_leave_failed_message())

    async def _reply_to_command(self, event: InboundEvent, text: str) -> None:
        try:
            await self._send_response(event, text)
        except Exception as exc:
            logger.error("Failed to send command reply for event %s: %s", event.id, exc)
