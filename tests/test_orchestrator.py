from __future__ import annotations

import asyncio
import dataclasses
import json
import sqlite3
import sys
from pathlib import Path
from typing import Any

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from barkle_agent.barkle.client import BarkleAgentBot  # noqa: E402
from barkle_agent.barkle.common import EventOutcome  # noqa: E402
from barkle_agent.barkle.connection import EventConnection  # noqa: E402
from barkle_agent.barkle.events import EventKind, InboundEvent  # noqa: E402
from barkle_agent.barkle.mixins.message_mixin import format_reset_time  # noqa: E402
from barkle_agent.config import Settings  # noqa: E402
from barkle_agent.memory.engine import MemoryEngine  # noqa: E402
from barkle_agent.memory.store import MemoryStore  # noqa: E402
from barkle_agent.plugins.hooks import AFTER_RESPONSE, BEFORE_RESPONSE, HookRegistry  # noqa: E402
from barkle_agent.services.completion_client import CompletionError, CompletionResult, ToolCall  # noqa: E402
from barkle_agent.services.user_context import UserProfileSnapshot  # noqa: E402
from barkle_agent.tools import BaseTool, ToolParameter, ToolRegistry  # noqa: E402

APOLOGY = "I'm sorry, I'm having trouble processing your message right now."


def _settings(tmp_path: Path, **overrides: Any) -> Settings:
    settings = Settings(
        barkle_api_url="https://barkle.test/api",
        barkle_wss_url="wss://barkle.test/streaming",
        barkle_api_key="barkle-key",
        barkle_timeout_seconds=10,
        completion_url="https://llm.test/v1",
        completion_api_key="llm-key",
        completion_model="test-model",
        completion_timeout_seconds=5,
        completion_temperature=0.7,
        completion_max_tokens=100,
        bot_username="ada",
        bot_name="Ada Bot",
        system_prompt_path=tmp_path / "system.txt",
        system_prompt="You are Ada.",
        log_level="INFO",
        reconnect_interval_seconds=0.0,
        reconnect_backoff_factor=1.0,
        reconnect_max_delay_seconds=1.0,
        max_reconnect_attempts=1,
        sqlite_path=tmp_path / "agent.db",
        max_history_messages=0,
        conversation_seed_message="",
        rate_limit_max_messages=15,
        rate_limit_window_seconds=3600,
        rate_limit_exempt_user_ids=set(),
        upgrade_url="https://barkle.test/plus",
        dedup_retention_days=7,
        maintenance_interval_seconds=300,
        memory_enabled=True,
        memory_top_k=10,
        memory_max_per_user=200,
        memory_protected_importance=7,
        profile_cache_ttl_seconds=1800,
        thread_context_depth=5,
        tools_enabled=True,
        tool_timeout_seconds=2.0,
        plugins_enabled=True,
        plugin_names=(),
        stats_path=tmp_path / "stats.json",
    )
    return dataclasses.replace(settings, **overrides)


class _FakeBarkle:
    def __init__(self, *, plus: bool = False) -> None:
        self.plus = plus
        self.replies: list[tuple[str, str | None, str | None]] = []
        self.dms: list[tuple[str, str]] = []
        self.joined: list[str] = []
        self.left: list[str] = []
        self.thread: list[dict[str, Any]] = []
        self.thread_requests: list[tuple[str, int]] = []
        self.failing_sends = 0
        self.started = False
        self.closed = False

    async def start(self) -> None:
        self.started = True

    async def close(self) -> None:
        self.closed = True

    async def get_me(self) -> dict[str, Any]:
        return {"id": "bot-id", "username": "Ada"}

    async def get_user_profile(self, user_id: str) -> UserProfileSnapshot:
        return UserProfileSnapshot(id=user_id, username="alice", display_name="Alice", is_plus=self.plus)

    async def get_conversation_thread(self, root_id: str, max_depth: int = 10) -> list[dict[str, Any]]:
        self.thread_requests.append((root_id, max_depth))
        return list(self.thread)

    async def send_reply(self, text: str, reply_to: str | None = None, channel_id: str | None = None) -> dict:
        if self.failing_sends > 0:
            self.failing_sends -= 1
            raise RuntimeError("platform down")
        self.replies.append((text, reply_to, channel_id))
        return {"createdNote": {"id": f"reply-{len(self.replies)}"}}

    async def send_direct_message(self, text: str, user_id: str) -> dict:
        self.dms.append((text, user_id))
        return {"createdNote": {"id": f"dm-{len(self.dms)}"}}

    async def join_group(self, group_id: str) -> dict:
        self.joined.append(group_id)
        return {}

    async def leave_group(self, group_id: str) -> dict:
        self.left.append(group_id)
        return {}


class _FakeLLM:
    def __init__(self, script: list[Any] | None = None) -> None:
        self.script = list(script or [])
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    async def start(self) -> None:
        return None

    async def close(self) -> None:
        self.closed = True

    async def complete(self, messages, system_prompt=None, tools=None) -> CompletionResult:
        self.calls.append(
            {
                "messages": [dict(message) for message in messages],
                "system_prompt": system_prompt,
                "tools": tools,
            }
        )
        step = self.script.pop(0) if self.script else CompletionResult(content="ok")
        if isinstance(step, Exception):
            raise step
        return step


class _EchoTool(BaseTool):
    name = "echo"
    description = "Echo text back"
    parameters = (ToolParameter("text", "string", "Text to echo", required=True),)

    def __init__(self) -> None:
        self.runs = 0

    async def run(self, args, context):
        self.runs += 1
        return {"text": args["text"]}


async def _bot(
    tmp_path: Path,
    llm: _FakeLLM,
    barkle: _FakeBarkle | None = None,
    *,
    tools: ToolRegistry | None = None,
    hooks: HookRegistry | None = None,
    **overrides: Any,
) -> BarkleAgentBot:
    settings = _settings(tmp_path, **overrides)
    store = MemoryStore(
        settings.sqlite_path,
        rate_limit_max_messages=settings.rate_limit_max_messages,
        rate_limit_window_seconds=settings.rate_limit_window_seconds,
    )
    await store.init()
    bot = BarkleAgentBot(
        settings,
        store,
        barkle or _FakeBarkle(),
        llm,
        EventConnection(settings.barkle_wss_url, settings.barkle_api_key),
        memory=MemoryEngine(store),
        tools=tools,
        hooks=hooks,
    )
    bot.bot_user_id = "bot-id"
    return bot


def _event(
    event_id: str = "note-1",
    text: str = "@ada hello there",
    *,
    kind: EventKind = EventKind.MENTION,
    user_id: str = "u1",
    **kwargs: Any,
) -> InboundEvent:
    kwargs.setdefault("mention_ids", ("bot-id",))
    return InboundEvent(
        id=event_id,
        kind=kind,
        author_user_id=user_id,
        text=text,
        author_username="alice",
        **kwargs,
    )


async def _history(bot: BarkleAgentBot, user_id: str = "u1") -> list[tuple[str, str]]:
    return [(row["role"], row["content"]) for row in await bot.store.get_history(user_id)]


def test_mention_reply_is_sent_and_stored(tmp_path: Path) -> None:
    llm = _FakeLLM([CompletionResult(content="Hi Alice!")])
    barkle = _FakeBarkle()

    async def _run():
        bot = await _bot(tmp_path, llm, barkle, tools=ToolRegistry([_EchoTool()]))
        return await bot.process_event(_event()), await _history(bot)

    outcome, history = asyncio.run(_run())

    assert outcome is EventOutcome.STORED
    assert barkle.replies == [("Hi Alice!", "note-1", None)]
    assert history == [("user", "hello there"), ("assistant", "Hi Alice!")]
    call = llm.calls[0]
    assert call["messages"] == [{"role": "user", "content": "hello there"}]
    assert call["tools"][0]["name"] == "echo"
    assert call["system_prompt"].startswith("You are Ada.")
    assert "User Context:\nUser: @alice" in call["system_prompt"]


def test_duplicate_deliveries_reply_exactly_once(tmp_path: Path) -> None:
    llm = _FakeLLM([CompletionResult(content="once")])
    barkle = _FakeBarkle()

    async def _run():
        bot = await _bot(tmp_path, llm, barkle)
        event = _event()
        timeline_copy = dataclasses.replace(event, kind=EventKind.NOTIFICATION, source="timeline")
        outcomes = await asyncio.gather(
            bot.process_event(event),
            bot.on_mention(event),
            bot.on_notification(timeline_copy),
        )
        later = await bot.process_event(event)
        return outcomes, later

    outcomes, later = asyncio.run(_run())

    assert outcomes.count(EventOutcome.STORED) == 1
    assert outcomes.count(EventOutcome.SKIPPED) == 2
    assert later is EventOutcome.SKIPPED
    assert len(llm.calls) == 1
    assert len(barkle.replies) == 1


def test_agent_loop_runs_one_tool_round_then_stops(tmp_path: Path) -> None:
    echo = _EchoTool()
    llm = _FakeLLM(
        [
            CompletionResult(content="", tool_calls=[ToolCall("c1", "echo", '{"text": "pong"}')]),
            CompletionResult(content="Echoed pong", tool_calls=[ToolCall("c2", "echo", '{"text": "again"}')]),
        ]
    )
    barkle = _FakeBarkle()

    async def _run():
        bot = await _bot(tmp_path, llm, barkle, tools=ToolRegistry([echo]))
        return await bot.process_event(_event(text="@ada ping")), await _history(bot)

    outcome, history = asyncio.run(_run())

    assert outcome is EventOutcome.STORED
    assert barkle.replies == [("Echoed pong", "note-1", None)]
    assert len(llm.calls) == 2
    assert echo.runs == 1
    follow_up = llm.calls[1]
    assert follow_up["tools"] is None
    assert follow_up["messages"][0] == {"role": "user", "content": "ping"}
    assert follow_up["messages"][1]["role"] == "assistant"
    assert follow_up["messages"][1]["tool_calls"][0]["id"] == "c1"
    assert follow_up["messages"][2]["role"] == "tool"
    assert follow_up["messages"][2]["tool_call_id"] == "c1"
    assert json.loads(follow_up["messages"][2]["content"]) == {"text": "pong"}
    assert history == [("user", "ping"), ("assistant", "Echoed pong")]


def test_tool_failures_are_fed_back_to_the_model(tmp_path: Path) -> None:
    llm = _FakeLLM(
        [
            CompletionResult(tool_calls=[ToolCall("c1", "nope", "{}"), ToolCall("c2", "echo", "{}")]),
            CompletionResult(content="Sorry, that did not work"),
        ]
    )

    async def _run():
        bot = await _bot(tmp_path, llm, tools=ToolRegistry([_EchoTool()]))
        return await bot.process_event(_event())

    assert asyncio.run(_run()) is EventOutcome.STORED
    tool_messages = [message for message in llm.calls[1]["messages"] if message["role"] == "tool"]
    assert [message["tool_call_id"] for message in tool_messages] == ["c1", "c2"]
    assert json.loads(tool_messages[0]["content"]) == {"error": "Tool not found: nope"}
    assert "Missing required parameter: text" in json.loads(tool_messages[1]["content"])["error"]


def test_loop_failure_falls_back_to_plain_completion(tmp_path: Path) -> None:
    llm = _FakeLLM([CompletionError("upstream 500", 500), CompletionResult(content="plain answer")])
    barkle = _FakeBarkle()

    async def _run():
        bot = await _bot(tmp_path, llm, barkle, tools=ToolRegistry([_EchoTool()]))
        return await bot.process_event(_event())

    assert asyncio.run(_run()) is EventOutcome.STORED
    assert barkle.replies == [("plain answer", "note-1", None)]
    assert len(llm.calls) == 2
    assert llm.calls[0]["tools"] is not None
    assert llm.calls[1]["tools"] is None


def test_double_failure_sends_apology_and_stores_no_reply(tmp_path: Path) -> None:
    llm = _FakeLLM([CompletionError("first"), CompletionError("second")])
    barkle = _FakeBarkle()

    async def _run():
        bot = await _bot(tmp_path, llm, barkle)
        return await bot.process_event(_event()), await _history(bot)

    outcome, history = asyncio.run(_run())

    assert outcome is EventOutcome.FAILED
    assert barkle.replies == [(APOLOGY, "note-1", None)]
    assert history == [("user", "hello there")]


def test_send_failure_is_terminal_and_keeps_history_clean(tmp_path: Path) -> None:
    llm = _FakeLLM([CompletionResult(content="lost reply")])
    barkle = _FakeBarkle()
    barkle.failing_sends = 1

    async def _run():
        bot = await _bot(tmp_path, llm, barkle)
        return await bot.process_event(_event()), await _history(bot)

    outcome, history = asyncio.run(_run())

    assert outcome is EventOutcome.FAILED
    assert barkle.replies == [(APOLOGY, "note-1", None)]
    assert history == [("user", "hello there")]


def test_clear_context_command_short_circuits(tmp_path: Path) -> None:
    llm = _FakeLLM()
    barkle = _FakeBarkle()

    async def _run():
        bot = await _bot(tmp_path, llm, barkle)
        await bot.store.append_message("u1", "user", "old question")
        await bot.store.append_message("u1", "assistant", "old answer")
        outcome = await bot.process_event(_event(text="@ada !CC"))
        return outcome, await bot.store.count_messages("u1"), await bot.store.get_rate_window("u1")

    outcome, remaining, window = asyncio.run(_run())

    assert outcome is EventOutcome.COMMAND
    assert remaining == 0
    assert window is None
    assert llm.calls == []
    assert barkle.replies == [("Context cleared! 🧹", "note-1", None)]


def test_help_and_memory_commands(tmp_path: Path) -> None:
    llm = _FakeLLM()
    barkle = _FakeBarkle()

    async def _run():
        bot = await _bot(tmp_path, llm, barkle)
        outcomes = [
            await bot.process_event(_event("n1", "@ada help")),
            await bot.process_event(_event("n2", "@ada !remember my cat is Tom")),
            await bot.process_event(_event("n3", "@ada !mem")),
        ]
        memory = await bot.store.get_memory("u1", "manual_my_cat_is_tom")
        outcomes.append(await bot.process_event(_event("n4", "@ada !forgetme")))
        return outcomes, memory, await bot.store.list_memories("u1")

    outcomes, memory, remaining = asyncio.run(_run())

    assert outcomes == [EventOutcome.COMMAND] * 4
    assert llm.calls == []
    assert barkle.replies[0][0].startswith("Hello! I'm Ada Bot.")
    assert barkle.replies[1][0] == 'Got it, I\'ll remember that: "my cat is Tom"'
    assert "• [fact] my cat is Tom" in barkle.replies[2][0]
    assert memory is not None and memory["importance"] == 9 and memory["memory_type"] == "fact"
    assert "forgotten 1 memories" in barkle.replies[3][0]
    assert remaining == []


def test_rate_limited_user_gets_notice(tmp_path: Path) -> None:
    llm = _FakeLLM([CompletionResult(content="first reply")])
    barkle = _FakeBarkle()

    async def _run():
        bot = await _bot(tmp_path, llm, barkle, rate_limit_max_messages=1)
        first = await bot.process_event(_event("n1"))
        second = await bot.process_event(_event("n2"))
        return first, second

    first, second = asyncio.run(_run())

    assert first is EventOutcome.STORED
    assert second is EventOutcome.BLOCKED
    assert len(llm.calls) == 1
    notice, reply_to, _ = barkle.replies[1]
    assert reply_to == "n2"
    assert notice.startswith("Message limit reached.")
    assert "https://barkle.test/plus" in notice
    assert notice.rstrip(".").endswith("UTC")


def test_plus_and_configured_users_are_exempt(tmp_path: Path) -> None:
    async def _run(barkle: _FakeBarkle, user_id: str, exempt: set[str], folder: str):
        bot = await _bot(
            tmp_path / folder,
            _FakeLLM(),
            barkle,
            rate_limit_max_messages=1,
            rate_limit_exempt_user_ids=exempt,
        )
        outcomes = [await bot.process_event(_event(f"n{index}", user_id=user_id)) for index in range(3)]
        return outcomes, await bot.store.get_rate_window(user_id)

    plus_outcomes, plus_window = asyncio.run(_run(_FakeBarkle(plus=True), "u1", set(), "plus"))
    staff_outcomes, staff_window = asyncio.run(_run(_FakeBarkle(), "u9", {"u9"}, "staff"))

    assert plus_outcomes == [EventOutcome.STORED] * 3
    assert staff_outcomes == [EventOutcome.STORED] * 3
    assert plus_window is None and staff_window is None


def test_reply_without_mention_is_ignored(tmp_path: Path) -> None:
    llm = _FakeLLM()

    async def _run():
        bot = await _bot(tmp_path, llm)
        outcome = await bot.on_reply(_event(text="nice one", kind=EventKind.REPLY, mention_ids=()))
        return outcome, await bot.dedup.is_processed("note-1")

    outcome, processed = asyncio.run(_run())

    assert outcome is EventOutcome.IGNORED
    assert processed is False
    assert llm.calls == []


def test_reply_in_thread_includes_thread_context(tmp_path: Path) -> None:
    llm = _FakeLLM([CompletionResult(content="sure")])
    barkle = _FakeBarkle()
    barkle.thread = [
        {"text": "What is up?", "user": {"username": "carol"}},
        {"text": "@ada thoughts?", "user": {"username": "alice"}},
    ]

    async def _run():
        bot = await _bot(tmp_path, llm, barkle, thread_context_depth=3)
        return await bot.on_reply(
            _event(text="@ada thoughts?", kind=EventKind.REPLY, mention_ids=(), in_reply_to_id="root-1")
        )

    assert asyncio.run(_run()) is EventOutcome.STORED
    assert barkle.thread_requests == [("root-1", 3)]
    assert "@carol: What is up?" in llm.calls[0]["system_prompt"]


def test_relevant_memories_are_added_to_the_prompt(tmp_path: Path) -> None:
    llm = _FakeLLM([CompletionResult(content="Espresso!")])

    async def _run():
        bot = await _bot(tmp_path, llm)
        await bot.store.upsert_memory("u1", "preference_loves_coffee", "loves coffee", "preference", 9)
        return await bot.process_event(_event(text="@ada tell me about coffee"))

    assert asyncio.run(_run()) is EventOutcome.STORED
    assert llm.calls[0]["system_prompt"].endswith("User Memories:\n[IMPORTANT] loves coffee")


def test_own_events_are_ignored(tmp_path: Path) -> None:
    llm = _FakeLLM()

    async def _run():
        bot = await _bot(tmp_path, llm)
        by_id = await bot.process_event(_event(user_id="bot-id"))
        by_name = await bot.process_event(
            InboundEvent(id="n2", kind=EventKind.MENTION, author_user_id="x", text="@ada hi", author_username="ADA")
        )
        return by_id, by_name

    assert asyncio.run(_run()) == (EventOutcome.IGNORED, EventOutcome.IGNORED)
    assert llm.calls == []


def test_direct_message_is_answered_privately(tmp_path: Path) -> None:
    llm = _FakeLLM([CompletionResult(content="psst")])
    barkle = _FakeBarkle()

    async def _run():
        bot = await _bot(tmp_path, llm, barkle)
        return await bot.on_direct_message(
            _event("dm-1", "secret question", kind=EventKind.DIRECT_MESSAGE, mention_ids=(), visibility="specified")
        )

    assert asyncio.run(_run()) is EventOutcome.STORED
    assert barkle.dms == [("psst", "u1")]
    assert barkle.replies == []


def test_hooks_can_answer_and_rewrite(tmp_path: Path) -> None:
    llm = _FakeLLM()
    barkle = _FakeBarkle()
    hooks = HookRegistry()
    hooks.register_hook(BEFORE_RESPONSE, lambda data, ctx: {**data, "auto_response": "canned"}, "auto")

    async def _shout(data, ctx):
        return {**data, "response": data["response"].upper()}

    hooks.register_hook(AFTER_RESPONSE, _shout, "shout")

    async def _run():
        bot = await _bot(tmp_path, llm, barkle, hooks=hooks)
        return await bot.process_event(_event()), await _history(bot)

    outcome, history = asyncio.run(_run())

    assert outcome is EventOutcome.STORED
    assert llm.calls == []
    assert barkle.replies == [("CANNED", "note-1", None)]
    assert history[-1] == ("assistant", "CANNED")


def test_group_invite_joins_and_greets_once(tmp_path: Path) -> None:
    barkle = _FakeBarkle()
    invite = InboundEvent(id="inv-1", kind=EventKind.GROUP_INVITE, author_user_id="u2", text="", group_id="g1")

    async def _run():
        bot = await _bot(tmp_path, _FakeLLM(), barkle)
        return await bot.on_group_invite(invite), await bot.on_group_invite(invite)

    first, second = asyncio.run(_run())

    assert first is EventOutcome.COMMAND
    assert second is EventOutcome.SKIPPED
    assert barkle.joined == ["g1"]
    assert len(barkle.replies) == 1
    greeting, reply_to, channel_id = barkle.replies[0]
    assert greeting.startswith("Hello everyone! I'm Ada Bot")
    assert reply_to is None and channel_id == "g1"


def test_leave_group_request_inside_group(tmp_path: Path) -> None:
    barkle = _FakeBarkle()

    async def _run():
        bot = await _bot(tmp_path, _FakeLLM(), barkle)
        return await bot.process_event(_event(text="@ada please leave this group", channel_id="g1"))

    assert asyncio.run(_run()) is EventOutcome.COMMAND
    assert barkle.left == ["g1"]
    assert barkle.replies == [("Goodbye everyone! Thanks for having me. 👋", "note-1", "g1")]


def test_setup_resolves_identity_runs_memory_worker_and_closes(tmp_path: Path) -> None:
    llm = _FakeLLM([CompletionResult(content="Noted")])
    barkle = _FakeBarkle()

    async def _run():
        bot = await _bot(tmp_path, llm, barkle)
        bot.bot_user_id = ""
        await bot.setup()
        identity = (bot.bot_user_id, bot.bot_username)
        outcome = await bot.process_event(_event(text="@ada I love coffee"))
        await asyncio.wait_for(bot.memory_queue.join(), timeout=2.0)
        memories = await bot.store.list_memories("u1")
        await bot.close()
        return identity, outcome, memories, bot

    identity, outcome, memories, bot = asyncio.run(_run())

    assert identity == ("bot-id", "ada")
    assert outcome is EventOutcome.STORED
    assert [memory["memory_key"] for memory in memories] == ["preference_i_love_coffee"]
    assert bot.is_closed()
    assert barkle.closed and llm.closed
    assert bot.memory_worker_task is None and bot.maintenance_task is None


def test_run_maintenance_sweeps_and_evicts(tmp_path: Path) -> None:
    async def _run():
        bot = await _bot(tmp_path, _FakeLLM())
        await bot.store.insert_processed_event("ancient", "mention", "u1", now=1.0)
        for index in range(3):
            await bot.store.upsert_memory("u1", f"k{index}", "v", "fact", 2, now=float(index))
        bot.memory.max_per_user = 1
        await bot.run_maintenance()
        return await bot.store.is_event_processed("ancient"), len(await bot.store.list_memories("u1"))

    assert asyncio.run(_run()) == (False, 1)


def test_format_reset_time() -> None:
    assert format_reset_time(0) == "1970-01-01 00:00 UTC"
    assert format_reset_time(None) == "the start of the next window"


@pytest.mark.parametrize("text", ["@ada", "@ada @bob"])
def test_mention_only_messages_are_ignored(tmp_path: Path, text: str) -> None:
    llm = _FakeLLM()

    async def _run():
        bot = await _bot(tmp_path, llm)
        return await bot.process_event(_event(text=text))

    assert asyncio.run(_run()) is EventOutcome.IGNORED
    assert llm.calls == []


def test_admission_failures_still_answer_with_apology(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    llm = _FakeLLM()
    barkle = _FakeBarkle()

    async def _locked(*args, **kwargs):
        raise sqlite3.OperationalError("database is locked")

    async def _run():
        bot = await _bot(tmp_path, llm, barkle)
        monkeypatch.setattr(bot.store, "check_and_increment_rate", _locked)
        monkeypatch.setattr(bot.memory, "list_memories", _locked)
        chat = await bot.process_event(_event("n1"))
        command = await bot.process_event(_event("n2", "@ada !memory"))
        return chat, command, await _history(bot)

    chat, command, history = asyncio.run(_run())

    assert chat is EventOutcome.FAILED
    assert command is EventOutcome.FAILED
    assert barkle.replies == [(APOLOGY, "n1", None), (APOLOGY, "n2", None)]
    assert llm.calls == []
    assert history == []


class _HangingLLM(_FakeLLM):
    def __init__(self, hangs: int, script: list[Any] | None = None) -> None:
        super().__init__(script)
        self.hangs = hangs
        self.hung_with_tools: list[bool] = []

    async def complete(self, messages, system_prompt=None, tools=None) -> CompletionResult:
        if self.hangs > 0:
            self.hangs -= 1
            self.hung_with_tools.append(tools is not None)
            await asyncio.sleep(30)
        return await super().complete(messages, system_prompt, tools)


def test_hung_completion_falls_back_to_plain_call(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(BarkleAgentBot, "_completion_deadline", lambda self: 0.05)
    llm = _HangingLLM(1, [CompletionResult(content="late but here")])
    barkle = _FakeBarkle()

    async def _run():
        bot = await _bot(tmp_path, llm, barkle, tools=ToolRegistry([_EchoTool()]))
        return await asyncio.wait_for(bot.process_event(_event()), timeout=5.0)

    assert asyncio.run(_run()) is EventOutcome.STORED
    assert llm.hung_with_tools == [True]
    assert [call["tools"] for call in llm.calls] == [None]
    assert barkle.replies == [("late but here", "note-1", None)]


def test_hung_completion_and_fallback_end_in_apology(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(BarkleAgentBot, "_completion_deadline", lambda self: 0.05)
    llm = _HangingLLM(2)
    barkle = _FakeBarkle()

    async def _run():
        bot = await _bot(tmp_path, llm, barkle, tools=ToolRegistry([_EchoTool()]))
        return await asyncio.wait_for(bot.process_event(_event()), timeout=5.0), await _history(bot)

    outcome, history = asyncio.run(_run())

    assert outcome is EventOutcome.FAILED
    assert llm.hung_with_tools == [True, False]
    assert barkle.replies == [(APOLOGY, "note-1", None)]
    assert history == [("user", "hello there")]


def test_per_user_locks_are_released_after_use(tmp_path: Path) -> None:
    llm = _FakeLLM([CompletionResult(content=f"reply {index}") for index in range(4)])

    async def _run():
        bot = await _bot(tmp_path, llm)
        outcomes = await asyncio.gather(
            *(bot.process_event(_event(f"n{index}", user_id=f"u{index % 2}")) for index in range(4))
        )
        cleared = await bot.process_event(_event("n9", "@ada !cc"))
        return outcomes, cleared, len(bot.user_locks), len(bot.store.rate_locks)

    outcomes, cleared, user_locks, rate_locks = asyncio.run(_run())

    assert outcomes == [EventOutcome.STORED] * 4
    assert cleared is EventOutcome.COMMAND
    assert user_locks == 0
    assert rate_locks == 0


def test_setup_loads_configured_plugins(tmp_path: Path) -> None:
    llm = _FakeLLM()
    barkle = _FakeBarkle()

    async def _run():
        bot = await _bot(tmp_path, llm, barkle, plugin_names=("moderation", "statistics"))
        await bot.setup()
        names = [plugin.name for plugin in bot.hooks.plugins()]
        outcome = await bot.process_event(_event(text="@ada click here to claim your prize"))
        history = await _history(bot)
        await bot.close()
        return names, outcome, history

    names, outcome, history = asyncio.run(_run())

    assert names == ["Moderation", "Statistics"]
    assert outcome is EventOutcome.STORED
    assert llm.calls == []
    assert barkle.replies == [("That looks like spam, so I'm going to skip it.", "note-1", None)]
    assert history[-1] == ("assistant", "That looks like spam, so I'm going to skip it.")
    saved = json.loads((tmp_path / "stats.json").read_text(encoding="utf-8"))
    assert saved["messages_processed"] == 1
    assert saved["responses_generated"] == 1


def test_plugins_disabled_leaves_hook_chain_empty(tmp_path: Path) -> None:
    async def _run():
        bot = await _bot(tmp_path, _FakeLLM(), plugins_enabled=False, plugin_names=("moderation",))
        await bot.setup()
        plugins = bot.hooks.plugins()
        await bot.close()
        return plugins

    assert asyncio.run(_run()) == []
