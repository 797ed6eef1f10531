from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from .common import as_str

logger = logging.getLogger("barkle_agent")


class EventKind(str, Enum):
    MENTION = "mention"
    REPLY = "reply"
    DIRECT_MESSAGE = "direct_message"
    GROUP_INVITE = "group_invite"
    NOTIFICATION = "notification"


NOTIFICATION_KIND_MAP = {
    "mention": EventKind.MENTION,
    "reply": EventKind.REPLY,
    "groupInvited": EventKind.GROUP_INVITE,
}

CHANNEL_NOTE_KIND_MAP = {
    "mention": EventKind.MENTION,
    "reply": EventKind.REPLY,
}

DIRECT_MESSAGE_TYPES = {"messagingMessage", "message", "directMessage"}


@dataclass(frozen=True, slots=True)
class InboundEvent:
    id: str
    kind: EventKind
    author_user_id: str
    text: str
    created_at: str = ""
    channel_id: str | None = None
    in_reply_to_id: str | None = None
    author_username: str = ""
    author_is_plus: bool = False
    mention_ids: tuple[str, ...] = ()
    visibility: str = ""
    group_id: str | None = None
    source: str = ""
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def has_note(self) -> bool:
        return bool(self.text) and bool(self.author_user_id)

    @property
    def is_direct(self) -> bool:
        return self.kind is EventKind.DIRECT_MESSAGE or self.visibility == "specified"


def _event_from_note(
    note: Mapping[str, Any],
    kind: EventKind,
    *,
    source: str,
    fallback_id: str = "",
    raw: Mapping[str, Any] | None = None,
) -> InboundEvent:
    user = note.get("user") if isinstance(note.get("user"), Mapping) else {}
    author_id = as_str(note.get("userId")) or as_str(user.get("id"))
    mentions = note.get("mentions") or []
    mention_ids: list[str] = []
    if isinstance(mentions, list):
        for item in mentions:
            if isinstance(item, Mapping):
                mention_ids.append(as_str(item.get("id")))
            else:
                mention_ids.append(as_str(item))
    visibility = as_str(note.get("visibility"))
    if kind is EventKind.DIRECT_MESSAGE:
        visibility = visibility or "specified"
    return InboundEvent(
        id=as_str(note.get("id")) or fallback_id,
        kind=kind,
        author_user_id=author_id,
        text=note.get("text") if isinstance(note.get("text"), str) else "",
        created_at=as_str(note.get("createdAt")),
        channel_id=as_str(note.get("channelId")) or None,
        in_reply_to_id=as_str(note.get("replyId")) or None,
        author_username=as_str(user.get("username")),
        author_is_plus=bool(user.get("isPlus", False)),
        mention_ids=tuple(item for item in mention_ids if item),
        visibility=visibility,
        source=source,
        raw=raw if raw is not None else note,
    )


def _generic_event(body: Mapping[str, Any], *, source: str, raw: Mapping[str, Any]) -> InboundEvent:
    user = body.get("user") if isinstance(body.get("user"), Mapping) else {}
    return InboundEvent(
        id=as_str(body.get("id")),
        kind=EventKind.NOTIFICATION,
        author_user_id=as_str(body.get("userId")) or as_str(user.get("id")),
        text="",
        created_at=as_str(body.get("createdAt")),
        author_username=as_str(user.get("username")),
        source=source,
        raw=raw,
    )


def classify_notification(notification: Mapping[str, Any], *, source: str = "notification") -> InboundEvent:
    kind = NOTIFICATION_KIND_MAP.get(as_str(notification.get("type")), EventKind.NOTIFICATION)
    notification_id = as_str(notification.get("id"))

    if kind is EventKind.GROUP_INVITE:
        invite = notification.get("invite") if isinstance(notification.get("invite"), Mapping) else {}
        group = invite.get("group") if isinstance(invite.get("group"), Mapping) else {}
        user = notification.get("user") if isinstance(notification.get("user"), Mapping) else {}
        return InboundEvent(
            id=notification_id or f"group-invite:{as_str(group.get('id'))}",
            kind=kind,
            author_user_id=as_str(notification.get("userId")) or as_str(user.get("id")),
            text="",
            created_at=as_str(notification.get("createdAt")),
            author_username=as_str(user.get("username")),
            group_id=as_str(group.get("id")) or None,
            source=source,
            raw=notification,
        )

    note = notification.get("note")
    if isinstance(note, Mapping):
        return _event_from_note(note, kind, source=source, fallback_id=notification_id, raw=notification)
    return _generic_event(notification, source=source, raw=notification)


def classify_frame(frame: Mapping[str, Any]) -> InboundEvent | None:
    """Turn a decoded stream frame into an InboundEvent.

    Unknown shapes become generic notifications. Only frames without any
    mapping body (keep-alives, acks) yield None.
    """
    frame_type = as_str(frame.get("type"))
    body = frame.get("body")
    if not isinstance(body, Mapping):
        if frame_type:
            logger.debug("Stream frame without body: %s", frame_type)
        return None

    if frame_type == "notification":
        return classify_notification(body)

    if frame_type == "noteUpdated":
        return _generic_event(body, source="note_updated", raw=frame)

    if frame_type != "channel":
        return _generic_event(body, source=frame_type or "unknown", raw=frame)

    inner_type = as_str(body.get("type"))
    payload = body.get("body")
    if not isinstance(payload, Mapping):
        return _generic_event(body, source=f"channel:{inner_type or 'unknown'}", raw=frame)

    if inner_type == "notification":
        return classify_notification(payload, source="channel:notification")
    if inner_type in CHANNEL_NOTE_KIND_MAP:
        return _event_from_note(payload, CHANNEL_NOTE_KIND_MAP[inner_type], source=f"channel:{inner_type}")
    if inner_type in DIRECT_MESSAGE_TYPES:
        return _event_from_note(payload, EventKind.DIRECT_MESSAGE, source=f"channel:{inner_type}")
    if inner_type == "note":
        if as_str(payload.get("visibility")) == "specified":
            return _event_from_note(payload, EventKind.DIRECT_MESSAGE, source="timeline")
        return _event_from_note(payload, EventKind.NOTIFICATION, source="timeline")
    return _generic_event(payload, source=f"channel:{inner_type or 'unknown'}", raw=frame)
