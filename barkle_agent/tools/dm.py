from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping

from ..barkle.common import truncate
from ..services.barkle_client import BarkleAPIError
from .base import USER_PARAMETERS, ToolContext, ToolError, ToolParameter, UserReferenceTool

logger = logging.getLogger("barkle_agent")


class DirectMessageTool(UserReferenceTool):
    name = "dm"
    description = "Send a direct message to a user on Barkle"
    parameters = USER_PARAMETERS + (
        ToolParameter("message", "string", "Message content to send", required=True),
    )

    async def run(self, args: Mapping[str, Any], context: ToolContext) -> Dict[str, Any]:
        message = str(args["message"]).strip()
        if not message:
            raise ToolError("Message must not be empty")
        user_id = await self.resolve_user_id(args, context)
        label = await self.user_label(user_id, context)
        try:
            sent = await context.barkle.send_direct_message(message, user_id)
        except BarkleAPIError as exc:
            if exc.status == 404:
                raise ToolError("User not found") from exc
            if exc.status == 403:
                raise ToolError("Cannot send DM to this user (may be blocked or have DMs disabled)") from exc
            raise
        logger.info("Sent DM to @%s", label["username"])
        note_id = sent.get("id") if isinstance(sent, dict) else None
        if note_id is None and isinstance(sent, dict) and isinstance(sent.get("createdNote"), dict):
            note_id = sent["createdNote"].get("id")
        return {
            "action": "dm",
            "userId": user_id,
            "username": label["username"],
            "displayName": label["displayName"],
            "message": message,
            "sentAt": datetime.now(timezone.utc).isoformat(),
            "noteId": note_id,
            "response": f'Successfully sent DM to @{label["username"]}: "{truncate(message, 50)}"',
        }
