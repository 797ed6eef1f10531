from __future__ import annotations

import asyncio
import contextlib
import logging

from ..config import Settings
from ..memory.dedup import Deduplicator
from ..memory.engine import MemoryEngine
from ..memory.store import MemoryStore
from ..plugins.hooks import HookRegistry
from ..plugins.loader import load_plugins
from ..services.barkle_client import BarkleClient
from ..services.completion_client import CompletionClient
from ..services.user_context import UserContextCache
from ..tools.registry import ToolRegistry
from .common import KeyedLocks, PendingMemoryUpdate, as_str
from .connection import EventConnection
from .mixins.agent_mixin import AgentMixin
from .mixins.command_mixin import CommandMixin
from .mixins.message_mixin import MessageMixin
from .mixins.prompt_mixin import PromptMixin
from .mixins.workers_mixin import WorkersMixin

logger = logging.getLogger("barkle_agent")


class BarkleAgentBot(
    MessageMixin,
    CommandMixin,
    PromptMixin,
    AgentMixin,
    WorkersMixin,
):
    def __init__(
        self,
        settings: Settings,
        store: MemoryStore,
        barkle: BarkleClient,
        llm: CompletionClient,
        connection: EventConnection,
        *,
        dedup: Deduplicator | None = None,
        memory: MemoryEngine | None = None,
        profiles: UserContextCache | None = None,
        tools: ToolRegistry | None = None,
        hooks: HookRegistry | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.barkle = barkle
        self.llm = llm
        self.connection = connection
        self.dedup = dedup or Deduplicator(store, retention_days=settings.dedup_retention_days)
        self.memory = memory
        self.profiles = profiles or UserContextCache(barkle, ttl_seconds=settings.profile_cache_ttl_seconds)
        self.tools = tools
        self.hooks = hooks or HookRegistry()

        self.bot_user_id = ""
        self.bot_username = settings.bot_username.casefold()

        self.user_locks = KeyedLocks()
        self.memory_queue: asyncio.Queue[PendingMemoryUpdate] = asyncio.Queue(maxsize=500)
        self.memory_worker_task: asyncio.Task[None] | None = None
        self.maintenance_task: asyncio.Task[None] | None = None
        self._plugins_loaded = False
        self._closed = False

        self._register_handlers()

    def is_closed(self) -> bool:
        return self._closed

    async def setup(self) -> None:
        await self.store.init()
        await self.barkle.start()
        await self.llm.start()
        await self._resolve_identity()
        await self._load_plugins()
        self._start_workers()

    async def _load_plugins(self) -> None:
        if not self.settings.plugins_enabled or self._plugins_loaded:
            return
        self._plugins_loaded = True
        await load_plugins(self.hooks, self.settings.plugin_names, self.settings)

    async def _resolve_identity(self) -> None:
        try:
            me = await self.barkle.get_me()
        except Exception as exc:
            logger.warning("Could not resolve bot identity, falling back to @%s: %s", self.bot_username, exc)
            return
        self.bot_user_id = as_str(me.get("id"))
        username = as_str(me.get("username"))
        if username:
            self.bot_username = username.casefold()
        logger.info("Connected as @%s (%s)", self.bot_username, self.bot_user_id or "unknown id")

    async def start(self) -> None:
        await self.setup()
        await self.connection.run()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._run_shutdown_step("connection.close", self.connection.close(), timeout=6.0)
        await self._run_shutdown_step("event handlers", self.connection.bus.drain(timeout=5.0), timeout=6.0)

        await self._cancel_task(self.maintenance_task)
        await self._cancel_task(self.memory_worker_task)
        self.maintenance_task = None
        self.memory_worker_task = None

        await self._run_shutdown_step("hooks.close", self.hooks.close(), timeout=6.0)
        await self._run_shutdown_step("llm.close", self.llm.close(), timeout=6.0)
        await self._run_shutdown_step("barkle.close", self.barkle.close(), timeout=6.0)

    async def _run_shutdown_step(self, label: str, coro: object, *, timeout: float) -> None:
        try:
            await asyncio.wait_for(coro, timeout=timeout)  # type: ignore[arg-type]
        except asyncio.TimeoutError:
            logger.warning("Shutdown step timed out: %s", label)
        except Exception as exc:
            logger.warning("Shutdown step failed: %s (%s)", label, exc)

    async def _cancel_task(self, task: asyncio.Task[None] | None) -> None:
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
