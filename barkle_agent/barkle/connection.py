from __future__ import annotations

import asyncio
import contextlib
import inspect
import json
import logging
import uuid
from collections import defaultdict
from enum import Enum
from typing import Any, Awaitable, Callable, Union

import aiohttp

from .events import EventKind, InboundEvent, classify_frame

logger = logging.getLogger("barkle_agent")

EventHandler = Callable[[InboundEvent], Union[Awaitable[None], None]]

DEFAULT_CHANNELS = ("homeTimeline", "globalTimeline", "main", "mentions", "messaging")


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    GAVE_UP = "gave_up"
    CLOSED = "closed"


class ConnectionGaveUpError(RuntimeError):
    """Raised when the stream stays down after the configured reconnect attempts."""


class EventBus:
    """Routes events to handlers by kind; every handler runs on its own task."""

    def __init__(self) -> None:
        self._handlers: dict[EventKind, list[EventHandler]] = defaultdict(list)
        self._tasks: set[asyncio.Task[None]] = set()

    def subscribe(self, kind: EventKind, handler: EventHandler) -> None:
        if handler not in self._handlers[kind]:
            self._handlers[kind].append(handler)

    def unsubscribe(self, kind: EventKind, handler: EventHandler) -> None:
        with contextlib.suppress(ValueError):
            self._handlers[kind].remove(handler)

    def handlers(self, kind: EventKind) -> list[EventHandler]:
        return list(self._handlers.get(kind, ()))

    @property
    def pending_tasks(self) -> set[asyncio.Task[None]]:
        return set(self._tasks)

    def publish(self, event: InboundEvent) -> int:
        scheduled = 0
        for handler in self.handlers(event.kind):
            try:
                result = handler(event)
            except Exception:
                logger.exception("Event handler %r failed for %s event %s", handler, event.kind.value, event.id)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(self._guard(handler, event, result))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
                scheduled += 1
        return scheduled

    async def _guard(self, handler: EventHandler, event: InboundEvent, awaitable: Awaitable[None]) -> None:
        try:
            await awaitable
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Event handler %r failed for %s event %s", handler, event.kind.value, event.id)

    async def drain(self, timeout: float = 10.0) -> None:
        tasks = self.pending_tasks
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        for task in pending:
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task


class EventConnection:
    """Persistent streaming connection with capped reconnects."""

    def __init__(
        self,
        url: str,
        api_key: str,
        *,
        bus: EventBus | None = None,
        channels: tuple[str, ...] = DEFAULT_CHANNELS,
        reconnect_interval: float = 5.0,
        backoff_factor: float = 1.0,
        max_delay: float = 60.0,
        max_reconnect_attempts: int = 10,
        heartbeat_seconds: float = 30.0,
    ) -> None:
        self.url = url
        self.api_key = api_key
        self.bus = bus or EventBus()
        self.channels = channels
        self.reconnect_interval = max(0.0, reconnect_interval)
        self.backoff_factor = max(1.0, backoff_factor)
        self.max_delay = max(self.reconnect_interval, max_delay)
        self.max_reconnect_attempts = max(0, max_reconnect_attempts)
        self.heartbeat_seconds = heartbeat_seconds

        self.state = ConnectionState.IDLE
        self.reconnect_attempts = 0
        self.connect_calls = 0
        self._session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._stopping = False

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def subscribe(self, kind: EventKind, handler: EventHandler) -> None:
        self.bus.subscribe(kind, handler)

    def reconnect_delay(self, attempt: int) -> float:
        delay = self.reconnect_interval * (self.backoff_factor ** max(0, attempt - 1))
        return min(delay, self.max_delay)

    async def _open_socket(self) -> Any:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return await self._session.ws_connect(
            self.url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            heartbeat=self.heartbeat_seconds,
        )

    async def _subscribe_channels(self, ws: Any) -> None:
        for channel in self.channels:
            await ws.send_json({"type": "connect", "body": {"channel": channel, "id": str(uuid.uuid4())}})
            logger.debug("Subscribed to stream channel %s", channel)

    def _handle_text(self, data: str) -> None:
        try:
            frame = json.loads(data)
        except json.JSONDecodeError as exc:
            logger.error("Failed to parse stream frame: %s", exc)
            return
        if not isinstance(frame, dict):
            logger.debug("Ignoring non-object stream frame")
            return
        event = classify_frame(frame)
        if event is None:
            return
        if event.kind is EventKind.NOTIFICATION:
            logger.debug("Stream notification (%s) id=%s", event.source, event.id)
        else:
            logger.info("Stream event %s id=%s from=%s", event.kind.value, event.id, event.author_username or "?")
        self.bus.publish(event)

    async def _read_loop(self, ws: Any) -> None:
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                self._handle_text(msg.data)
            elif msg.type == aiohttp.WSMsgType.BINARY:
                self._handle_text(msg.data.decode("utf-8", errors="replace"))
            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise ConnectionError(f"Stream error: {ws.exception()}")

    async def _connect_once(self) -> None:
        self.connect_calls += 1
        self.state = ConnectionState.CONNECTING
        logger.info("Connecting to Barkle stream...")
        ws = await self._open_socket()
        self._ws = ws
        try:
            self.state = ConnectionState.CONNECTED
            self.reconnect_attempts = 0
            logger.info("Stream connected")
            await self._subscribe_channels(ws)
            await self._read_loop(ws)
        finally:
            self._ws = None
            with contextlib.suppress(Exception):
                await ws.close()

    async def run(self) -> None:
        """Keep the stream open until close() or until reconnects are exhausted."""
        self._stopping = False
        while not self._stopping:
            try:
                await self._connect_once()
                if self._stopping:
                    break
                logger.warning("Stream closed by server")
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if self._stopping:
                    break
                logger.error("Stream failure: %s", exc)

            if self.reconnect_attempts >= self.max_reconnect_attempts:
                self.state = ConnectionState.GAVE_UP
                logger.error("Max reconnection attempts reached (%s). Giving up.", self.max_reconnect_attempts)
                raise ConnectionGaveUpError(
                    f"Stream unavailable after {self.max_reconnect_attempts} reconnect attempts"
                )

            self.reconnect_attempts += 1
            self.state = ConnectionState.RECONNECTING
            delay = self.reconnect_delay(self.reconnect_attempts)
            logger.info(
                "Attempting to reconnect (%s/%s) in %.1fs...",
                self.reconnect_attempts,
                self.max_reconnect_attempts,
                delay,
            )
            await asyncio.sleep(delay)

        self.state = ConnectionState.CLOSED

    async def send(self, payload: dict[str, Any]) -> bool:
        if self._ws is None or self._ws.closed:
            logger.warning("Cannot send frame: stream not connected")
            return False
        await self._ws.send_json(payload)
        return True

    async def close(self) -> None:
        self._stopping = True
        if self._ws is not None:
            with contextlib.suppress(Exception):
                await self._ws.close()
        if self._session is not None and not self._session.closed:
            await self._session.close()
        await self.bus.drain()
        if self.state is not ConnectionState.GAVE_UP:
            self.state = ConnectionState.CLOSED
