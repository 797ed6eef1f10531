from __future__ import annotations

import logging
from typing import Any, ClassVar, Dict, Mapping

from ..services.barkle_client import BarkleAPIError
from .base import USER_PARAMETERS, ToolContext, ToolError, UserReferenceTool

logger = logging.getLogger("barkle_agent")


class _RelationshipTool(UserReferenceTool):
    action: ClassVar[str] = ""
    client_method: ClassVar[str] = ""
    past_tense: ClassVar[str] = ""
    conflict_message: ClassVar[str] = ""

    parameters = USER_PARAMETERS

    async def run(self, args: Mapping[str, Any], context: ToolContext) -> Dict[str, Any]:
        user_id = await self.resolve_user_id(args, context)
        try:
            await getattr(context.barkle, self.client_method)(user_id)
        except BarkleAPIError as exc:
            if exc.status == 404:
                raise ToolError("User not found") from exc
            if exc.status == 409:
                raise ToolError(self.conflict_message) from exc
            raise
        label = await self.user_label(user_id, context)
        logger.info("%s @%s", self.past_tense.capitalize(), label["username"])
        return {
            "action": self.action,
            "userId": user_id,
            "username": label["username"],
            "displayName": label["displayName"],
            "message": f"Successfully {self.past_tense} @{label['username']}",
        }


class FollowTool(_RelationshipTool):
    name = "follow"
    description = "Follow a user on Barkle"
    action = "follow"
    client_method = "follow_user"
    past_tense = "followed"
    conflict_message = "Already following this user"


class UnfollowTool(_RelationshipTool):
    name = "unfollow"
    description = "Unfollow a user on Barkle"
    action = "unfollow"
    client_method = "unfollow_user"
    past_tense = "unfollowed"
    conflict_message = "Not following this user"


class BlockTool(_RelationshipTool):
    name = "block"
    description = "Block a user on Barkle so they can no longer interact with the bot"
    action = "block"
    client_method = "block_user"
    past_tense = "blocked"
    conflict_message = "User is already blocked"


class UnblockTool(_RelationshipTool):
    name = "unblock"
    description = "Unblock a previously blocked user on Barkle"
    action = "unblock"
    client_method = "unblock_user"
    past_tense = "unblocked"
    conflict_message = "User is not blocked"
