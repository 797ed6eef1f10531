from __future__ import annotations

from typing import Any, Dict, Mapping

from ..services.barkle_client import BarkleAPIError
from .base import USER_PARAMETERS, ToolContext, ToolError, UserReferenceTool, find_user_by_username


class LookupUserTool(UserReferenceTool):
    name = "lookup_user"
    description = "Look up user information by username or user ID"
    parameters = USER_PARAMETERS

    async def run(self, args: Mapping[str, Any], context: ToolContext) -> Dict[str, Any]:
        user_id = str(args.get("userId") or "").strip()
        if user_id:
            method = "userId"
            try:
                user = await context.barkle.get_user_info(user_id)
            except BarkleAPIError as exc:
                if exc.status == 404:
                    raise ToolError("User not found") from exc
                raise
        else:
            method = "username"
            user = await find_user_by_username(context.barkle, str(args.get("username") or ""))
        if not user:
            raise ToolError("User not found")

        return {
            "method": method,
            "user": {
                "id": user.get("id"),
                "username": user.get("username"),
                "displayName": user.get("name") or user.get("username"),
                "description": user.get("description"),
                "followersCount": user.get("followersCount") or 0,
                "followingCount": user.get("followingCount") or 0,
                "notesCount": user.get("notesCount") or 0,
                "isBot": bool(user.get("isBot", False)),
                "isLocked": bool(user.get("isLocked", False)),
                "isVerified": bool(user.get("isVerified", False)),
                "createdAt": user.get("createdAt"),
            },
        }
