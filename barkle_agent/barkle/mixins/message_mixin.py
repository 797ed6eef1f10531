from __future__ import annotations

import logging
import re
from datetime import datetime, timezone

from ...plugins.hooks import AFTER_RESPONSE, BEFORE_RESPONSE, ON_NOTIFICATION
from ...prompts.dialogue import apology_message, build_group_greeting, build_rate_limited_message
from ...tools.base import ToolContext
from ..common import EventOutcome, collapse_spaces, truncate
from ..events import EventKind, InboundEvent

logger = logging.getLogger("barkle_agent")

_OTHER_MENTION_RE = re.compile(r"@\w+")


def format_reset_time(reset_at: float | None) -> str:
    if reset_at is None:
        return "the start of the next window"
    return datetime.fromtimestamp(reset_at, timezone.utc).strftime("%Y-%m-%d %H:%M UTC")


class MessageMixin:
    def _register_handlers(self) -> None:
        self.connection.subscribe(EventKind.MENTION, self.on_mention)
        self.connection.subscribe(EventKind.REPLY, self.on_reply)
        self.connection.subscribe(EventKind.DIRECT_MESSAGE, self.on_direct_message)
        self.connection.subscribe(EventKind.GROUP_INVITE, self.on_group_invite)
        self.connection.subscribe(EventKind.NOTIFICATION, self.on_notification)

    def is_own_event(self, event: InboundEvent) -> bool:
        if self.bot_user_id and event.author_user_id == self.bot_user_id:
            return True
        return bool(event.author_username) and event.author_username.casefold() == self.bot_username

    def is_bot_mentioned(self, event: InboundEvent) -> bool:
        if self.bot_user_id and self.bot_user_id in event.mention_ids:
            return True
        return bool(self.bot_username) and f"@{self.bot_username}" in event.text.casefold()

    def strip_mentions(self, text: str) -> str:
        cleaned = text or ""
        if self.bot_username:
            cleaned = re.sub(rf"@{re.escape(self.bot_username)}\b", "", cleaned, flags=re.IGNORECASE)
        cleaned = _OTHER_MENTION_RE.sub("", cleaned)
        return collapse_spaces(cleaned)

    async def on_mention(self, event: InboundEvent) -> EventOutcome:
        return await self.process_event(event)

    async def on_reply(self, event: InboundEvent) -> EventOutcome:
        if not self.is_bot_mentioned(event):
            logger.debug("Reply %s does not mention the bot; ignoring", event.id)
            return EventOutcome.IGNORED
        return await self.process_event(event)

    async def on_direct_message(self, event: InboundEvent) -> EventOutcome:
        return await self.process_event(event)

    async def on_group_invite(self, event: InboundEvent) -> EventOutcome:
        if not event.group_id:
            logger.warning("Group invite %s carries no group id", event.id)
            return EventOutcome.IGNORED
        if not await self.dedup.claim(event.id, event.kind.value, event.author_user_id):
            return EventOutcome.SKIPPED
        logger.info("Received group invitation to %s from @%s", event.group_id, event.author_username or "?")
        try:
            await self.barkle.join_group(event.group_id)
            await self.barkle.send_reply(build_group_greeting(self.settings.bot_name), channel_id=event.group_id)
        except Exception as exc:
            logger.error("Failed to handle group invitation %s: %s", event.group_id, exc)
            return EventOutcome.FAILED
        return EventOutcome.COMMAND

    async def on_notification(self, event: InboundEvent) -> EventOutcome:
        await self.hooks.execute(ON_NOTIFICATION, dict(event.raw), {"event": event})
        if event.source == "timeline" and event.has_note and not self.is_own_event(event):
            if self.is_bot_mentioned(event):
                logger.info("Timeline note %s mentions the bot; handling as mention", event.id)
                return await self.process_event(event)
        return EventOutcome.IGNORED

    async def process_event(self, event: InboundEvent) -> EventOutcome:
        """Admit one note-carrying event and carry it to a stored reply.

        The dedup claim happens before any reply work, so a failure after
        admission is never retried for the same event id.
        """
        if not event.id or not event.has_note:
            return EventOutcome.IGNORED
        if self.is_own_event(event):
            return EventOutcome.IGNORED
        if not await self.dedup.claim(event.id, event.kind.value, event.author_user_id):
            return EventOutcome.SKIPPED

        user_id = event.author_user_id
        text = self.strip_mentions(event.text)
        if not text:
            logger.debug("Event %s has no text after removing mentions", event.id)
            return EventOutcome.IGNORED

        logger.info(
            "Processing %s from @%s: \"%s\"",
            event.kind.value,
            event.author_username or user_id,
            truncate(text, 120),
        )

        try:
            if await self._try_handle_command(event, text):
                return EventOutcome.COMMAND

            user_context = await self.profiles.get_context(user_id)
            exempt = (
                event.author_is_plus
                or user_context.is_plus
                or user_id in self.settings.rate_limit_exempt_user_ids
            )
            decision = await self.store.check_and_increment_rate(user_id, is_exempt=exempt)
        except Exception as exc:
            logger.exception("Failed to admit event %s: %s", event.id, exc)
            await self._send_apology(event)
            return EventOutcome.FAILED

        if not decision.allowed:
            logger.info("Rate limit reached for @%s (%s messages)", event.author_username or user_id, decision.count)
            notice = build_rate_limited_message(
                self.settings.bot_name,
                self.settings.upgrade_url,
                format_reset_time(decision.reset_at),
            )
            try:
                await self._send_response(event, notice)
            except Exception as exc:
                logger.error("Failed to send rate limit notice for event %s: %s", event.id, exc)
            return EventOutcome.BLOCKED

        async with self.user_locks.hold(user_id):
            return await self._respond(event, text, user_context)

    async def _respond(self, event: InboundEvent, text: str, user_context) -> EventOutcome:
        user_id = event.author_user_id
        try:
            if self.settings.conversation_seed_message:
                await self.store.get_history(user_id, seed_message=self.settings.conversation_seed_message, limit=1)
            await self.store.append_message(user_id, "user", text)
            self._enqueue_memory_update(user_id, event.id, text)

            system_prompt = await self._build_system_prompt(event, text, user_context)
            history = await self.store.get_history(user_id, limit=self.settings.max_history_messages)
            messages = [{"role": row["role"], "content": row["content"]} for row in history]

            response_data = await self.hooks.execute(
                BEFORE_RESPONSE,
                {
                    "message": text,
                    "event": event,
                    "context": messages,
                    "user_context": user_context,
                    "system_prompt": system_prompt,
                },
            )
            auto_response = None
            if isinstance(response_data, dict):
                auto_response = response_data.get("auto_response")
                system_prompt = str(response_data.get("system_prompt") or system_prompt)
            if isinstance(auto_response, str) and auto_response.strip():
                logger.info("Using plugin auto-response for event %s", event.id)
                response = auto_response.strip()
            else:
                tool_context = ToolContext(
                    barkle=self.barkle,
                    user_id=user_id,
                    username=event.author_username,
                    event=event,
                    memory=self.memory,
                )
                response = await self._generate_agent_response(messages, system_prompt, tool_context)

            final_data = await self.hooks.execute(
                AFTER_RESPONSE,
                {
                    "original_message": text,
                    "response": response,
                    "event": event,
                    "context": messages,
                    "user_context": user_context,
                },
            )
            if isinstance(final_data, dict) and isinstance(final_data.get("response"), str):
                response = final_data["response"].strip() or response
        except Exception as exc:
            logger.exception("Failed to generate a reply for event %s: %s", event.id, exc)
            await self._send_apology(event)
            return EventOutcome.FAILED

        try:
            await self._send_response(event, response)
        except Exception as exc:
            logger.error("Failed to send reply for event %s: %s", event.id, exc)
            await self._send_apology(event)
            return EventOutcome.FAILED

        await self.store.append_message(user_id, "assistant", response)
        logger.info(
            "Responded to %s from @%s: \"%s\"",
            event.kind.value,
            event.author_username or user_id,
            truncate(response, 120),
        )
        return EventOutcome.STORED

    async def _send_response(self, event: InboundEvent, text: str) -> None:
        if event.is_direct:
            await self.barkle.send_direct_message(text, event.author_user_id)
        else:
            await self.barkle.send_reply(text, reply_to=event.id, channel_id=event.channel_id)

    async def _send_apology(self, event: InboundEvent) -> None:
        try:
            await self._send_response(event, apology_message())
        except Exception as exc:
            logger.error("Failed to send error response for event %s: %s", event.id, exc)
