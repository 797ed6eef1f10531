from __future__ import annotations

import asyncio
import json
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

import aiohttp

logger = logging.getLogger("barkle_agent")

RETRIABLE_STATUSES = {408, 409, 429, 500, 502, 503, 504}


class CompletionError(RuntimeError):
    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


@dataclass(slots=True)
class ToolCall:
    call_id: str
    tool_name: str
    arguments_json: str = "{}"

    def as_message_entry(self) -> Dict[str, Any]:
        return {
            "id": self.call_id,
            "type": "function",
            "function": {"name": self.tool_name, "arguments": self.arguments_json},
        }


@dataclass(slots=True)
class CompletionResult:
    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    finish_reason: str = ""

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)


class CompletionClient:
    """OpenAI-compatible chat completions over aiohttp."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str,
        timeout_seconds: int = 30,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.temperature = temperature
        self.max_tokens = int(max_tokens) if int(max_tokens) > 0 else None
        self._session: aiohttp.ClientSession | None = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self.timeout,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
            )

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    def _endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    async def _request(self, payload: Dict[str, Any], retries: int = 3) -> Dict[str, Any]:
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None

        url = self._endpoint()
        last_error: Exception | None = None

        for attempt in range(1, retries + 1):
            try:
                async with self._session.post(url, json=payload) as response:
                    text = await response.text()
                    if response.status == 200:
                        return json.loads(text)

                    retriable = response.status in RETRIABLE_STATUSES
                    if not retriable:
                        raise CompletionError(f"Completion error {response.status}: {text}", response.status)
                    last_error = CompletionError(
                        f"Completion retriable error {response.status}: {text}",
                        response.status,
                    )
            except asyncio.CancelledError:
                raise
            except CompletionError:
                raise
            except Exception as exc:
                last_error = exc

            if attempt < retries:
                await asyncio.sleep(min(4.0, 0.35 * attempt + random.random() * 0.2))

        if last_error is not None:
            status = last_error.status if isinstance(last_error, CompletionError) else None
            raise CompletionError(f"Completion request failed after retries: {last_error}", status)
        raise CompletionError("Completion request failed without explicit error")

    @staticmethod
    def _parse_result(data: Dict[str, Any]) -> CompletionResult:
        choices = data.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            raise CompletionError("Invalid response format from completion API")
        first = choices[0]
        message = first.get("message")
        if not isinstance(message, dict):
            raise CompletionError("Invalid response format from completion API")

        tool_calls: List[ToolCall] = []
        for index, raw in enumerate(message.get("tool_calls") or []):
            if not isinstance(raw, dict):
                continue
            function = raw.get("function") or {}
            name = str(function.get("name") or "").strip()
            if not name:
                continue
            arguments = function.get("arguments")
            if isinstance(arguments, (dict, list)):
                arguments = json.dumps(arguments)
            tool_calls.append(
                ToolCall(
                    call_id=str(raw.get("id") or f"call_{index}"),
                    tool_name=name,
                    arguments_json=str(arguments) if arguments else "{}",
                )
            )

        content = message.get("content")
        return CompletionResult(
            content=content.strip() if isinstance(content, str) else "",
            tool_calls=tool_calls,
            finish_reason=str(first.get("finish_reason") or ""),
        )

    async def complete(
        self,
        messages: Sequence[Dict[str, Any]],
        system_prompt: str | None = None,
        tools: Sequence[Dict[str, Any]] | None = None,
    ) -> CompletionResult:
        request_messages: List[Dict[str, Any]] = []
        if system_prompt:
            request_messages.append({"role": "system", "content": system_prompt})
        request_messages.extend(messages)

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": request_messages,
            "temperature": self.temperature,
            "stream": False,
        }
        if self.max_tokens is not None:
            payload["max_tokens"] = self.max_tokens
        if tools:
            payload["tools"] = [{"type": "function", "function": schema} for schema in tools]
            payload["tool_choice"] = "auto"

        logger.debug("Completion request: %s messages, %s tools", len(request_messages), len(tools or ()))
        data = await self._request(payload)
        return self._parse_result(data)
