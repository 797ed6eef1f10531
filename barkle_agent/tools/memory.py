from __future__ import annotations

import logging
from typing import Any, Dict, Mapping

from ..memory.storage.memories import MEMORY_TYPES
from .base import BaseTool, ToolContext, ToolError, ToolParameter

logger = logging.getLogger("barkle_agent")

ACTIONS = ("store", "retrieve", "search")


def _public_memory(memory: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "key": memory.get("memory_key"),
        "value": memory.get("memory_value"),
        "type": memory.get("memory_type"),
        "importance": memory.get("importance"),
        "created": memory.get("created_at"),
        "updated": memory.get("updated_at"),
    }


class MemoryTool(BaseTool):
    name = "memory"
    description = (
        "Store or retrieve user memories. Use this to remember important information about users "
        "or recall what you know about them."
    )
    parameters = (
        ToolParameter(
            "action",
            "string",
            'Action to perform: "store", "retrieve", or "search"',
            required=True,
            enum=ACTIONS,
        ),
        ToolParameter("memoryKey", "string", "Unique key for the memory (required for store/retrieve)"),
        ToolParameter("memoryValue", "string", "Memory content to store (required for store action)"),
        ToolParameter(
            "memoryType",
            "string",
            "Type of memory: " + ", ".join(MEMORY_TYPES),
            enum=MEMORY_TYPES,
        ),
        ToolParameter(
            "importance",
            "number",
            "Importance level 1-10 (higher is more important, default 5)",
            minimum=1,
            maximum=10,
        ),
        ToolParameter("searchQuery", "string", "Search term for finding memories (required for search action)"),
        ToolParameter(
            "limit",
            "number",
            "Maximum number of memories to return (default 5)",
            minimum=1,
            maximum=20,
        ),
    )

    def validate(self, args: Mapping[str, Any]) -> list[str]:
        errors = super().validate(args)
        action = args.get("action")
        if action == "store":
            if not args.get("memoryKey"):
                errors.append("memoryKey is required for store action")
            if not args.get("memoryValue"):
                errors.append("memoryValue is required for store action")
        elif action == "retrieve" and not args.get("memoryKey"):
            errors.append("memoryKey is required for retrieve action")
        elif action == "search" and not args.get("searchQuery"):
            errors.append("searchQuery is required for search action")
        return errors

    async def run(self, args: Mapping[str, Any], context: ToolContext) -> Dict[str, Any]:
        if context.memory is None:
            raise ToolError("Memory is disabled")
        if not context.user_id:
            raise ToolError("User ID not available in context")

        action = args["action"]
        if action == "store":
            value = str(args["memoryValue"]).strip()
            memory_type = str(args.get("memoryType") or "fact")
            importance = int(args.get("importance") or 5)
            key = await context.memory.store_explicit(
                context.user_id,
                str(args["memoryKey"]),
                value,
                memory_type,
                importance,
            )
            return {
                "action": "store",
                "memoryKey": key,
                "memoryValue": value,
                "memoryType": memory_type,
                "importance": importance,
                "message": f'Successfully stored memory: "{value}"',
            }

        if action == "retrieve":
            key = str(args["memoryKey"])
            memory = await context.memory.get(context.user_id, key)
            if memory is None:
                matches = await context.memory.search(context.user_id, key, 1)
                memory = matches[0] if matches else None
            if memory is None:
                raise ToolError(f'No memory found for key: "{key}"')
            return {
                "action": "retrieve",
                "memoryKey": key,
                "memory": _public_memory(memory),
                "message": f'Found memory: "{memory["memory_value"]}"',
            }

        query = str(args["searchQuery"])
        limit = int(args.get("limit") or 5)
        memories = await context.memory.search(context.user_id, query, limit)
        logger.info('Searched memories for user %s: "%s" - found %s', context.user_id, query, len(memories))
        return {
            "action": "search",
            "searchQuery": query,
            "memoriesFound": len(memories),
            "memories": [_public_memory(memory) for memory in memories],
            "message": f'Found {len(memories)} memories matching "{query}"',
        }
