from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from .barkle.client import BarkleAgentBot
from .barkle.connection import ConnectionGaveUpError, EventConnection
from .config import Settings
from .memory.dedup import Deduplicator
from .memory.engine import MemoryEngine
from .memory.store import MemoryStore
from .plugins.hooks import HookRegistry
from .services.barkle_client import BarkleClient
from .services.completion_client import CompletionClient
from .services.user_context import UserContextCache
from .tools import ToolRegistry, default_tools

logger = logging.getLogger("barkle_agent")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def _is_process_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


def _acquire_instance_lock(lock_path: Path) -> None:
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    if lock_path.exists():
        stale_pid = 0
        with contextlib.suppress(Exception):
            stale_pid = int(lock_path.read_text(encoding="utf-8").strip() or "0")
        if stale_pid > 0 and stale_pid != os.getpid() and _is_process_alive(stale_pid):
            raise RuntimeError(f"Agent is already running (pid={stale_pid}). Stop it before starting a new one.")
        with contextlib.suppress(Exception):
            lock_path.unlink()

    lock_path.write_text(str(os.getpid()), encoding="utf-8")


def _release_instance_lock(lock_path: Path) -> None:
    with contextlib.suppress(Exception):
        if lock_path.exists():
            lock_path.unlink()


def build_bot(settings: Settings) -> BarkleAgentBot:
    store = MemoryStore(
        settings.sqlite_path,
        rate_limit_max_messages=settings.rate_limit_max_messages,
        rate_limit_window_seconds=settings.rate_limit_window_seconds,
    )
    barkle = BarkleClient(
        base_url=settings.barkle_api_url,
        api_key=settings.barkle_api_key,
        timeout_seconds=settings.barkle_timeout_seconds,
    )
    llm = CompletionClient(
        base_url=settings.completion_url,
        api_key=settings.completion_api_key,
        model=settings.completion_model,
        timeout_seconds=settings.completion_timeout_seconds,
        temperature=settings.completion_temperature,
        max_tokens=settings.completion_max_tokens,
    )
    connection = EventConnection(
        settings.barkle_wss_url,
        settings.barkle_api_key,
        reconnect_interval=settings.reconnect_interval_seconds,
        backoff_factor=settings.reconnect_backoff_factor,
        max_delay=settings.reconnect_max_delay_seconds,
        max_reconnect_attempts=settings.max_reconnect_attempts,
    )
    memory = None
    if settings.memory_enabled:
        memory = MemoryEngine(
            store,
            max_per_user=settings.memory_max_per_user,
            protected_importance=settings.memory_protected_importance,
        )
    tools = None
    if settings.tools_enabled:
        tools = ToolRegistry(
            default_tools(include_memory=memory is not None),
            timeout_seconds=settings.tool_timeout_seconds,
        )
    return BarkleAgentBot(
        settings=settings,
        store=store,
        barkle=barkle,
        llm=llm,
        connection=connection,
        dedup=Deduplicator(store, retention_days=settings.dedup_retention_days),
        memory=memory,
        profiles=UserContextCache(barkle, ttl_seconds=settings.profile_cache_ttl_seconds),
        tools=tools,
        hooks=HookRegistry(),
    )


async def _run_bot(settings: Settings) -> None:
    bot = build_bot(settings)
    try:
        await bot.start()
    finally:
        if not bot.is_closed():
            with contextlib.suppress(Exception):
                await asyncio.wait_for(bot.close(), timeout=20.0)


def main() -> None:
    load_dotenv()
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    try:
        settings.validate()
    except ValueError as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(2)
    lock_path = settings.sqlite_path.parent / "barkle_agent.pid"
    _acquire_instance_lock(lock_path)
    try:
        asyncio.run(_run_bot(settings))
    except KeyboardInterrupt:
        logger.info("Shutdown requested, exiting.")
    except ConnectionGaveUpError as exc:
        logger.error("Stopping: %s", exc)
        sys.exit(1)
    finally:
        _release_instance_lock(lock_path)


if __name__ == "__main__":
    main()
