from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping

from ..barkle.common import UserContext, as_int, as_str

logger = logging.getLogger("barkle_agent")

UNKNOWN_USER_CONTEXT = "No profile information available."


def _account_age_days(created_at: str, now: datetime | None = None) -> int | None:
    if not created_at:
        return None
    try:
        created = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
    except ValueError:
        return None
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    current = now or datetime.now(timezone.utc)
    return max(0, (current - created).days)


@dataclass(slots=True)
class UserProfileSnapshot:
    id: str
    username: str
    display_name: str = ""
    description: str = ""
    account_age_days: int | None = None
    birthday: str = ""
    location: str = ""
    website: str = ""
    followers_count: int = 0
    following_count: int = 0
    notes_count: int = 0
    is_bot: bool = False
    is_locked: bool = False
    is_verified: bool = False
    is_staff: bool = False
    is_plus: bool = False
    created_at: str = ""
    fields: List[Any] = field(default_factory=list)

    @classmethod
    def from_api(cls, user: Mapping[str, Any]) -> "UserProfileSnapshot":
        username = as_str(user.get("username"))
        created_at = as_str(user.get("createdAt"))
        return cls(
            id=as_str(user.get("id")),
            username=username,
            display_name=as_str(user.get("name")) or username,
            description=as_str(user.get("description")),
            account_age_days=_account_age_days(created_at),
            birthday=as_str(user.get("birthday")),
            location=as_str(user.get("location")),
            website=as_str(user.get("url")),
            followers_count=as_int(user.get("followersCount")),
            following_count=as_int(user.get("followingCount")),
            notes_count=as_int(user.get("notesCount")),
            is_bot=bool(user.get("isBot", False)),
            is_locked=bool(user.get("isLocked", False)),
            is_verified=bool(user.get("isVerified", False)),
            is_staff=bool(user.get("isStaff", False) or user.get("isAdmin", False)),
            is_plus=bool(user.get("isPlus", False)),
            created_at=created_at,
            fields=list(user.get("fields") or []),
        )

    @property
    def account_age_label(self) -> str:
        return f"{self.account_age_days} days" if self.account_age_days else ""

    def context_lines(self) -> List[str]:
        lines = [f"User: @{self.username}"]
        if self.display_name and self.display_name != self.username:
            lines.append(f"Display Name: {self.display_name}")
        if self.description:
            lines.append(f"Bio: {self.description}")
        if self.account_age_label:
            lines.append(f"Account Age: {self.account_age_label}")
        if self.birthday:
            lines.append(f"Birthday: {self.birthday}")
        if self.location:
            lines.append(f"Location: {self.location}")
        if self.website:
            lines.append(f"Website: {self.website}")
        lines.append(
            f"Posts: {self.notes_count}, Followers: {self.followers_count}, Following: {self.following_count}"
        )
        if self.is_bot:
            lines.append("This user is a bot.")
        if self.is_locked:
            lines.append("This user has a private account.")
        if self.is_verified:
            lines.append("This user is verified.")
        if self.is_staff:
            lines.append("This user is a Barkle staff member.")
        if self.id:
            lines.append(f"User ID: {self.id}")
        return lines


@dataclass(slots=True)
class _CacheEntry:
    profile: UserProfileSnapshot
    fetched_at: float


class UserContextCache:
    """TTL cache of profile snapshots; a failed refresh serves the last known value."""

    def __init__(
        self,
        client: Any,
        *,
        ttl_seconds: float = 1800.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.ttl_seconds = max(0.0, float(ttl_seconds))
        self._clock = clock
        self._entries: Dict[str, _CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _is_fresh(self, entry: _CacheEntry) -> bool:
        return (self._clock() - entry.fetched_at) < self.ttl_seconds

    async def get_profile(self, user_id: str) -> UserProfileSnapshot | None:
        cached = self._entries.get(user_id)
        if cached is not None and self._is_fresh(cached):
            return cached.profile

        try:
            profile = await self.client.get_user_profile(user_id)
        except Exception as exc:
            logger.error("Failed to fetch user profile for %s: %s", user_id, exc)
            if cached is not None:
                logger.warning("Using expired profile cache for user %s", user_id)
                return cached.profile
            return None

        self._entries[user_id] = _CacheEntry(profile=profile, fetched_at=self._clock())
        return profile

    async def get_context(self, user_id: str) -> UserContext:
        profile = await self.get_profile(user_id)
        if profile is None:
            return UserContext(username="unknown", display_name="Unknown User", context=UNKNOWN_USER_CONTEXT)
        return UserContext(
            username=profile.username,
            display_name=profile.display_name,
            context="\n".join(profile.context_lines()),
            profile=profile,
            is_plus=profile.is_plus,
        )

    def invalidate(self, user_id: str) -> None:
        self._entries.pop(user_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def cleanup(self) -> int:
        expired = [user_id for user_id, entry in self._entries.items() if not self._is_fresh(entry)]
        for user_id in expired:
            del self._entries[user_id]
        if expired:
            logger.debug("Cleaned up %s expired user cache entries", len(expired))
        return len(expired)
