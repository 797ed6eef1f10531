from __future__ import annotations

from typing import Any, Iterable, Mapping

from .json_loader import load_prompt_json

_DEFAULTS: dict[str, Any] = {
    "help_template": (
        "Hello! I'm {bot_name}. Here's what I can do:\n"
        "\n"
        "• Chat with me by mentioning me (@{bot_username}) or sending me a DM\n"
        "• Ask me questions and I'll do my best to help\n"
        "• I can see conversation context when replying to threads\n"
        "• Invite me to groups and I'll join automatically\n"
        '• Ask me to "leave group" if you want me to leave\n'
        '• Type "help" for this message\n'
        '• Type "!cc" or "!clearcontext" to clear our conversation history\n'
        '• Type "!memory" to see what I remember about you, "!forgetme" to erase it\n'
        '• Type "!remember <something>" to make sure I keep it in mind\n'
        "\n"
        "I'm powered by AI and here to assist! 🤖"
    ),
    "context_cleared": "Context cleared! 🧹",
    "group_greeting_template": (
        "Hello everyone! I'm {bot_name}, thanks for inviting me to the group. I'm here to help and chat! 🤖"
    ),
    "group_goodbye": "Goodbye everyone! Thanks for having me. 👋",
    "group_leave_failed": "I'm sorry, I couldn't leave the group right now.",
    "rate_limited_template": (
        "Message limit reached. **Subscribe to Barkle+ to get unlimited messages to {bot_name}.**\n"
        "Subscribe here: {upgrade_url} You can send messages again at {reset_at}."
    ),
    "apology": "I'm sorry, I'm having trouble processing your message right now.",
    "moderation_spam": "That looks like spam, so I'm going to skip it.",
    "moderation_slow_down": "You're sending messages very quickly. Please slow down a little and try again in a minute.",
    "memory_empty": "I don't have any memories about you yet.",
    "memory_list_header": "Here's what I remember about you ({count}):",
    "memory_line_template": "• [{memory_type}] {memory_value}",
    "memory_cleared_template": "Done! I've forgotten {count} memories about you. 🧽",
    "memory_disabled": "Memory is turned off for this bot.",
    "remember_usage": "Tell me what to remember, for example: !remember my birthday is May 3",
    "remember_ack_template": "Got it, I'll remember that: \"{value}\"",
    "user_context_header": "User Context:",
    "thread_context_header": "Conversation thread (oldest first):",
    "thread_line_template": "@{username}: {text}",
}


def _cfg() -> dict[str, Any]:
    return load_prompt_json("dialogue.json", _DEFAULTS)


def _text(key: str) -> str:
    return str(_cfg().get(key, _DEFAULTS[key]))


def build_help_message(bot_name: str, bot_username: str) -> str:
    return _text("help_template").format(bot_name=bot_name, bot_username=bot_username)


def context_cleared_message() -> str:
    return _text("context_cleared")


def build_group_greeting(bot_name: str) -> str:
    return _text("group_greeting_template").format(bot_name=bot_name)


def group_goodbye_message() -> str:
    return _text("group_goodbye")


def group_leave_failed_message() -> str:
    return _text("group_leave_failed")


def build_rate_limited_message(bot_name: str, upgrade_url: str, reset_at: str) -> str:
    return _text("rate_limited_template").format(bot_name=bot_name, upgrade_url=upgrade_url, reset_at=reset_at)


def apology_message() -> str:
    return _text("apology")


def moderation_spam_message() -> str:
    return _text("moderation_spam")


def moderation_slow_down_message() -> str:
    return _text("moderation_slow_down")


def memory_disabled_message() -> str:
    return _text("memory_disabled")


def remember_usage_message() -> str:
    return _text("remember_usage")


def build_remember_ack(value: str) -> str:
    return _text("remember_ack_template").format(value=value)


def build_memory_cleared_message(count: int) -> str:
    return _text("memory_cleared_template").format(count=count)


def build_memory_list(memories: Iterable[Mapping[str, Any]]) -> str:
    rows = list(memories)
    if not rows:
        return _text("memory_empty")
    template = _text("memory_line_template")
    lines = [_text("memory_list_header").format(count=len(rows))]
    lines.extend(
        template.format(memory_type=row.get("memory_type", "fact"), memory_value=row.get("memory_value", ""))
        for row in rows
    )
    return "\n".join(lines)


def build_user_context_section(context: str) -> str:
    return f"{_text('user_context_header')}\n{context}"


def build_thread_section(thread: Iterable[Mapping[str, Any]]) -> str:
    template = _text("thread_line_template")
    lines = []
    for note in thread:
        text = str(note.get("text") or "").strip()
        if not text:
            continue
        user = note.get("user") if isinstance(note.get("user"), Mapping) else {}
        lines.append(template.format(username=user.get("username") or "unknown", text=text))
    if not lines:
        return ""
    return "\n".join([_text("thread_context_header"), *lines])
