from __future__ import annotations

import logging
from typing import Any, Dict, Mapping

from .base import BaseTool, ToolContext, ToolParameter

logger = logging.getLogger("barkle_agent")

MAX_SEARCH_RESULTS = 100
NOTE_URL_TEMPLATE = "https://barkle.chat/barks/{note_id}"


def _reaction_total(note: Mapping[str, Any]) -> int:
    reactions = note.get("reactions")
    if not isinstance(reactions, dict):
        return 0
    return sum(int(count) for count in reactions.values() if isinstance(count, (int, float)))


class SearchBarksTool(BaseTool):
    name = "search_barks"
    description = "Search for posts/notes on Barkle using keywords or phrases"
    parameters = (
        ToolParameter("query", "string", "Search query - keywords or phrases to search for", required=True),
        ToolParameter(
            "limit",
            "number",
            "Maximum number of results to return (default: 10, max: 100)",
            minimum=1,
        ),
        ToolParameter("offset", "number", "Offset for pagination (default: 0)", minimum=0),
        ToolParameter("userId", "string", "Filter results by specific user ID"),
        ToolParameter("channelId", "string", "Filter results by specific channel/group ID"),
    )

    async def run(self, args: Mapping[str, Any], context: ToolContext) -> Dict[str, Any]:
        query = str(args["query"]).strip()
        limit = min(int(args.get("limit") or 10), MAX_SEARCH_RESULTS)
        params: Dict[str, Any] = {"query": query, "limit": limit, "offset": int(args.get("offset") or 0)}
        for key in ("userId", "channelId"):
            if args.get(key):
                params[key] = args[key]

        notes = await context.barkle.search_posts(params)
        results = []
        for note in notes:
            user = note.get("user") if isinstance(note.get("user"), dict) else {}
            results.append(
                {
                    "id": note.get("id"),
                    "text": note.get("text"),
                    "user": {
                        "id": user.get("id"),
                        "username": user.get("username"),
                        "displayName": user.get("name") or user.get("username"),
                    },
                    "createdAt": note.get("createdAt"),
                    "repliesCount": note.get("repliesCount") or 0,
                    "reactionsCount": _reaction_total(note),
                    "url": note.get("url") or NOTE_URL_TEMPLATE.format(note_id=note.get("id")),
                }
            )
        logger.info('Found %s results for query: "%s"', len(results), query)
        return {
            "query": query,
            "results": results,
            "totalFound": len(results),
            "hasMore": len(results) == limit,
        }
