from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Mapping

import aiohttp

from .user_context import UserProfileSnapshot

logger = logging.getLogger("barkle_agent")

ME_ENDPOINTS = ("/i", "/users/me", "/me", "/auth/session")


class BarkleAPIError(RuntimeError):
    def __init__(self, status: int, detail: str = "") -> None:
        super().__init__(f"Barkle API error {status}: {detail}" if detail else f"Barkle API error {status}")
        self.status = int(status)
        self.detail = detail


class BarkleClient:
    """REST client for the Barkle platform API."""

    def __init__(self, base_url: str, api_key: str, timeout_seconds: int = 10) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
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

    async def _post(self, endpoint: str, payload: Mapping[str, Any] | None = None) -> Any:
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None

        url = f"{self.base_url}{endpoint}"
        try:
            async with self._session.post(url, json=dict(payload or {})) as response:
                text = await response.text()
                status = response.status
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise BarkleAPIError(0, f"{endpoint}: {exc}") from exc

        if not 200 <= status < 300:
            logger.debug("Barkle API %s returned %s: %s", endpoint, status, text[:300])
            raise BarkleAPIError(status, text[:300])
        if not text.strip():
            return {}
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise BarkleAPIError(status, f"{endpoint}: invalid JSON body") from exc

    async def get_me(self) -> Dict[str, Any]:
        for endpoint in ME_ENDPOINTS:
            try:
                data = await self._post(endpoint)
            except BarkleAPIError as exc:
                logger.debug("Failed to get own user info from %s: %s", endpoint, exc.status)
                continue
            if isinstance(data, dict) and data:
                logger.debug("Resolved own user info from %s", endpoint)
                return data
        raise BarkleAPIError(0, "No valid endpoint found for getting user info")

    async def get_user_info(self, user_id: str) -> Dict[str, Any]:
        data = await self._post("/users/show", {"userId": user_id})
        if not isinstance(data, dict):
            raise BarkleAPIError(404, f"user {user_id} not found")
        return data

    async def get_user_profile(self, user_id: str) -> UserProfileSnapshot:
        return UserProfileSnapshot.from_api(await self.get_user_info(user_id))

    async def send_reply(self, text: str, reply_to: str | None = None, channel_id: str | None = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"text": text}
        if reply_to:
            payload["replyId"] = reply_to
        if channel_id:
            payload["channelId"] = channel_id
        logger.debug("Sending note reply_to=%s channel=%s", reply_to, channel_id)
        return await self._post("/notes", payload)

    async def send_direct_message(self, text: str, user_id: str) -> Dict[str, Any]:
        payload = {
            "text": text,
            "visibility": "specified",
            "visibleUserIds": [user_id],
        }
        logger.debug("Sending direct message to %s", user_id)
        return await self._post("/notes", payload)

    async def get_note(self, note_id: str) -> Dict[str, Any]:
        return await self._post("/notes/show", {"noteId": note_id})

    async def get_conversation_thread(self, root_id: str, max_depth: int = 10) -> List[Dict[str, Any]]:
        """Walk ``replyId`` links upward and return the notes oldest first.

        A failure part way up returns whatever was collected so far.
        """
        thread: List[Dict[str, Any]] = []
        next_id: str | None = root_id
        depth = 0
        while next_id and depth < max(1, int(max_depth)):
            try:
                note = await self.get_note(next_id)
            except BarkleAPIError as exc:
                logger.warning("Failed to fetch note %s for thread: %s", next_id, exc)
                break
            if not isinstance(note, dict) or not note:
                break
            thread.insert(
                0,
                {
                    "id": note.get("id"),
                    "text": note.get("text") or "",
                    "user": note.get("user") or {},
                    "createdAt": note.get("createdAt"),
                },
            )
            next_id = note.get("replyId")
            depth += 1
        return thread

    async def search_posts(self, params: Mapping[str, Any]) -> List[Dict[str, Any]]:
        data = await self._post("/notes/search", params)
        if isinstance(data, list):
            return [item for item in data if isinstance(item, dict)]
        if isinstance(data, dict):
            for key in ("notes", "results", "items"):
                items = data.get(key)
                if isinstance(items, list):
                    return [item for item in items if isinstance(item, dict)]
        return []

    async def follow_user(self, user_id: str) -> Any:
        return await self._post("/following/create", {"userId": user_id})

    async def unfollow_user(self, user_id: str) -> Any:
        return await self._post("/following/delete", {"userId": user_id})

    async def block_user(self, user_id: str) -> Any:
        return await self._post("/blocking/create", {"userId": user_id})

    async def unblock_user(self, user_id: str) -> Any:
        return await self._post("/blocking/delete", {"userId": user_id})

    async def join_group(self, group_id: str) -> Any:
        return await self._post(f"/channels/{group_id}/join")

    async def leave_group(self, group_id: str) -> Any:
        return await self._post(f"/channels/{group_id}/leave")
