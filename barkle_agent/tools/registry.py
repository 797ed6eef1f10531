from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from ..services.barkle_client import BarkleAPIError
from .base import BaseTool, ToolContext, ToolError, ToolResult

logger = logging.getLogger("barkle_agent")


class ToolRegistry:
    def __init__(self, tools: Iterable[BaseTool] = (), *, timeout_seconds: float = 20.0) -> None:
        self.timeout_seconds = max(0.1, float(timeout_seconds))
        self._tools: Dict[str, BaseTool] = {}
        for tool in tools:
            self.register(tool)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def register(self, tool: BaseTool) -> None:
        if not tool.name:
            raise ValueError(f"Tool {type(tool).__name__} has no name")
        self._tools[tool.name] = tool
        logger.debug("Registered tool: %s", tool.name)

    def get(self, name: str) -> BaseTool | None:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def schemas(self) -> List[Dict[str, Any]]:
        return [tool.schema() for tool in self._tools.values()]

    @staticmethod
    def _parse_arguments(raw: Any) -> Dict[str, Any]:
        if raw is None or raw == "":
            return {}
        if isinstance(raw, Mapping):
            return dict(raw)
        if isinstance(raw, str):
            try:
                parsed = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise ToolError(f"Malformed arguments: {exc.msg}") from exc
            if not isinstance(parsed, dict):
                raise ToolError("Malformed arguments: expected a JSON object")
            return parsed
        raise ToolError("Malformed arguments: expected a JSON object")

    async def execute(self, name: str, args: Any, context: ToolContext, *, call_id: str = "") -> ToolResult:
        tool = self._tools.get(name)
        if tool is None:
            logger.warning("Model requested unknown tool: %s", name)
            return ToolResult(tool=name, success=False, error=f"Tool not found: {name}", call_id=call_id)

        try:
            parsed = self._parse_arguments(args)
        except ToolError as exc:
            return ToolResult(tool=name, success=False, error=str(exc), call_id=call_id)

        errors = tool.validate(parsed)
        if errors:
            return ToolResult(
                tool=name,
                success=False,
                error=f"Invalid parameters: {', '.join(errors)}",
                call_id=call_id,
            )

        logger.info("Executing tool %s for @%s", name, context.username or context.user_id)
        try:
            result = await asyncio.wait_for(tool.run(parsed, context), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("Tool %s timed out after %.1fs", name, self.timeout_seconds)
            return ToolResult(
                tool=name,
                success=False,
                error=f"Tool timed out after {self.timeout_seconds:g}s",
                call_id=call_id,
            )
        except ToolError as exc:
            logger.info("Tool %s failed: %s", name, exc)
            return ToolResult(tool=name, success=False, error=str(exc), call_id=call_id)
        except BarkleAPIError as exc:
            logger.error("Tool %s platform error: %s", name, exc)
            return ToolResult(tool=name, success=False, error=str(exc), call_id=call_id)
        except Exception as exc:
            logger.exception("Tool %s execution failed", name)
            return ToolResult(tool=name, success=False, error=str(exc) or type(exc).__name__, call_id=call_id)

        logger.debug("Tool %s executed successfully", name)
        return ToolResult(tool=name, success=True, result=result, call_id=call_id)

    async def execute_calls(self, calls: Sequence[Any], context: ToolContext) -> List[ToolResult]:
        """Run a batch in order; one failure never stops the rest."""
        results: List[ToolResult] = []
        for call in calls:
            results.append(
                await self.execute(call.tool_name, call.arguments_json, context, call_id=call.call_id)
            )
        return results
