from __future__ import annotations

from .base import BaseTool, ToolContext, ToolError, ToolParameter, ToolResult, UserReferenceTool
from .dm import DirectMessageTool
from .lookup_user import LookupUserTool
from .memory import MemoryTool
from .registry import ToolRegistry
from .search import SearchBarksTool
from .social import BlockTool, FollowTool, UnblockTool, UnfollowTool


def default_tools(*, include_memory: bool = True) -> list[BaseTool]:
    tools: list[BaseTool] = [
        SearchBarksTool(),
        FollowTool(),
        UnfollowTool(),
        BlockTool(),
        UnblockTool(),
        DirectMessageTool(),
        LookupUserTool(),
    ]
    if include_memory:
        tools.append(MemoryTool())
    return tools


__all__ = [
    "BaseTool",
    "BlockTool",
    "DirectMessageTool",
    "FollowTool",
    "LookupUserTool",
    "MemoryTool",
    "SearchBarksTool",
    "ToolContext",
    "ToolError",
    "ToolParameter",
    "ToolRegistry",
    "ToolResult",
    "UnblockTool",
    "UnfollowTool",
    "UserReferenceTool",
    "default_tools",
]
