from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Sequence

from ...services.completion_client import CompletionError, CompletionResult
from ...tools.base import ToolContext

logger = logging.getLogger("barkle_agent")


class AgentMixin:
    def _completion_deadline(self) -> float:
        # The client retries up to three times per call.
        return float(self.settings.completion_timeout_seconds) * 3 + 5.0

    def _tool_schemas(self) -> List[Dict[str, Any]] | None:
        if self.tools is None or not self.settings.tools_enabled or not len(self.tools):
            return None
        return self.tools.schemas()

    async def _complete(
        self,
        messages: Sequence[Dict[str, Any]],
        system_prompt: str,
        tools: Sequence[Dict[str, Any]] | None = None,
    ) -> CompletionResult:
        return await asyncio.wait_for(
            self.llm.complete(list(messages), system_prompt, tools),
            timeout=self._completion_deadline(),
        )

    async def _generate_agent_response(
        self,
        messages: Sequence[Dict[str, Any]],
        system_prompt: str,
        tool_context: ToolContext,
    ) -> str:
        """One tool round at most, then a plain retry if anything in the loop fails."""
        try:
            return await self._run_agent_loop(messages, system_prompt, tool_context)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Agent response generation failed, retrying without tools: %s", exc)

        fallback = await self._complete(messages, system_prompt)
        if not fallback.content:
            raise CompletionError("Completion service returned an empty reply")
        return fallback.content

    async def _run_agent_loop(
        self,
        messages: Sequence[Dict[str, Any]],
        system_prompt: str,
        tool_context: ToolContext,
    ) -> str:
        schemas = self._tool_schemas()
        first = await self._complete(messages, system_prompt, schemas)
        if not first.tool_calls or schemas is None:
            if not first.content:
                raise CompletionError("Completion service returned an empty reply")
            return first.content

        logger.info(
            "Model requested %s tool calls: %s",
            len(first.tool_calls),
            ", ".join(call.tool_name for call in first.tool_calls),
        )
        results = await self.tools.execute_calls(first.tool_calls, tool_context)

        follow_up: List[Dict[str, Any]] = list(messages)
        follow_up.append(
            {
                "role": "assistant",
                "content": first.content or "",
                "tool_calls": [call.as_message_entry() for call in first.tool_calls],
            }
        )
        for result in results:
            body = result.result if result.success else {"error": result.error}
            follow_up.append(
                {
                    "role": "tool",
                    "tool_call_id": result.call_id,
                    "content": json.dumps(body, ensure_ascii=False, default=str),
                }
            )

        final = await self._complete(follow_up, system_prompt)
        if final.tool_calls:
            logger.info("Ignoring %s tool calls requested after the tool round", len(final.tool_calls))
        if not final.content:
            raise CompletionError("Completion service returned an empty reply after tool execution")
        return final.content
