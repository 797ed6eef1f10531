from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Mapping, Sequence

from ..services.barkle_client import BarkleAPIError

logger = logging.getLogger("barkle_agent")

PARAMETER_TYPES = ("string", "number", "integer", "boolean", "object", "array")


class ToolError(Exception):
    """Expected tool failure; the message is reported back to the model."""


@dataclass(frozen=True, slots=True)
class ToolParameter:
    name: str
    type: str
    description: str
    required: bool = False
    enum: tuple[Any, ...] | None = None
    minimum: float | None = None
    maximum: float | None = None

    def __post_init__(self) -> None:
        if self.type not in PARAMETER_TYPES:
            raise ValueError(f"Unsupported parameter type for {self.name}: {self.type!r}")

    def schema(self) -> Dict[str, Any]:
        entry: Dict[str, Any] = {"type": self.type, "description": self.description}
        if self.enum:
            entry["enum"] = list(self.enum)
        if self.minimum is not None:
            entry["minimum"] = self.minimum
        if self.maximum is not None:
            entry["maximum"] = self.maximum
        return entry

    def accepts(self, value: Any) -> bool:
        if self.type == "string":
            return isinstance(value, str)
        if self.type == "boolean":
            return isinstance(value, bool)
        if self.type == "integer":
            return isinstance(value, int) and not isinstance(value, bool)
        if self.type == "number":
            return isinstance(value, (int, float)) and not isinstance(value, bool)
        if self.type == "object":
            return isinstance(value, dict)
        if self.type == "array":
            return isinstance(value, list)
        return True


@dataclass(slots=True)
class ToolResult:
    tool: str
    success: bool
    result: Any = None
    error: str | None = None
    call_id: str = ""

    def payload(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, "tool": self.tool, "result": self.result}
        return {"success": False, "tool": self.tool, "error": self.error or "Unknown error"}


@dataclass(slots=True)
class ToolContext:
    barkle: Any
    user_id: str
    username: str = ""
    event: Any = None
    memory: Any = None
    extras: Dict[str, Any] = field(default_factory=dict)


class BaseTool:
    name: ClassVar[str] = ""
    description: ClassVar[str] = ""
    parameters: ClassVar[Sequence[ToolParameter]] = ()

    def schema(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": {
                "type": "object",
                "properties": {param.name: param.schema() for param in self.parameters},
                "required": [param.name for param in self.parameters if param.required],
            },
        }

    def validate(self, args: Mapping[str, Any]) -> List[str]:
        errors: List[str] = []
        for param in self.parameters:
            present = param.name in args and args[param.name] is not None
            if param.required and not present:
                errors.append(f"Missing required parameter: {param.name}")
                continue
            if not present:
                continue
            value = args[param.name]
            if not param.accepts(value):
                errors.append(f"Parameter {param.name} must be of type {param.type}")
                continue
            if param.enum and value not in param.enum:
                allowed = ", ".join(str(item) for item in param.enum)
                errors.append(f"Parameter {param.name} must be one of: {allowed}")
            if param.minimum is not None and isinstance(value, (int, float)) and value < param.minimum:
                errors.append(f"Parameter {param.name} must be >= {param.minimum:g}")
            if param.maximum is not None and isinstance(value, (int, float)) and value > param.maximum:
                errors.append(f"Parameter {param.name} must be <= {param.maximum:g}")
        return errors

    async def run(self, args: Mapping[str, Any], context: ToolContext) -> Any:
        raise NotImplementedError


USER_PARAMETERS = (
    ToolParameter("userId", "string", "User ID"),
    ToolParameter(
        "username",
        "string",
        "Username (without @ symbol) - will be converted to user ID automatically",
    ),
)


def _clean_username(value: str) -> str:
    return value.strip().lstrip("@")


async def find_user_by_username(barkle: Any, username: str) -> Dict[str, Any] | None:
    """Resolve a handle through note search; the platform has no direct lookup."""
    clean = _clean_username(username)
    if not clean:
        return None
    wanted = clean.casefold()
    try:
        results = await barkle.search_posts({"query": f"from:{clean}", "limit": 1})
        for note in results[:1]:
            user = note.get("user")
            if isinstance(user, dict) and str(user.get("username", "")).casefold() == wanted:
                return user

        results = await barkle.search_posts({"query": clean, "limit": 10})
        for note in results:
            user = note.get("user")
            if isinstance(user, dict) and str(user.get("username", "")).casefold() == wanted:
                return user
    except BarkleAPIError as exc:
        logger.debug("Username search for %s failed: %s", clean, exc)
    return None


class UserReferenceTool(BaseTool):
    """Tool addressed at a user given either ``userId`` or ``username``."""

    def validate(self, args: Mapping[str, Any]) -> List[str]:
        errors = super().validate(args)
        if not args.get("userId") and not args.get("username"):
            errors.append("Must provide either username or userId")
        return errors

    async def resolve_user_id(self, args: Mapping[str, Any], context: ToolContext) -> str:
        user_id = str(args.get("userId") or "").strip()
        if user_id:
            return user_id
        username = str(args.get("username") or "")
        user = await find_user_by_username(context.barkle, username)
        if not user or not user.get("id"):
            raise ToolError("User not found")
        logger.debug("Resolved @%s to user id %s", _clean_username(username), user["id"])
        return str(user["id"])

    async def user_label(self, user_id: str, context: ToolContext) -> Dict[str, str]:
        try:
            info = await context.barkle.get_user_info(user_id)
        except BarkleAPIError as exc:
            if exc.status == 404:
                raise ToolError("User not found") from exc
            raise
        username = str(info.get("username") or user_id)
        return {"username": username, "displayName": str(info.get("name") or username)}
