from .barkle_client import BarkleAPIError, BarkleClient
from .completion_client import CompletionClient, CompletionError, CompletionResult, ToolCall
from .user_context import UserContextCache, UserProfileSnapshot

__all__ = [
    "BarkleAPIError",
    "BarkleClient",
    "CompletionClient",
    "CompletionError",
    "CompletionResult",
    "ToolCall",
    "UserContextCache",
    "UserProfileSnapshot",
]
