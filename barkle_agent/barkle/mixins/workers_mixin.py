from __future__ import annotations

import asyncio
import logging

from ..common import PendingMemoryUpdate

logger = logging.getLogger("barkle_agent")


class WorkersMixin:
    def _enqueue_memory_update(self, user_id: str, event_id: str, text: str) -> None:
        if self.memory is None or not self.settings.memory_enabled:
            return
        item = PendingMemoryUpdate(user_id=user_id, event_id=event_id, text=text)
        if self.memory_queue.full():
            try:
                self.memory_queue.get_nowait()
                self.memory_queue.task_done()
                logger.warning("Memory queue full; dropped oldest pending update")
            except asyncio.QueueEmpty:
                pass
        try:
            self.memory_queue.put_nowait(item)
        except asyncio.QueueFull:
            logger.warning("Memory queue full; dropping update for event %s", event_id)

    async def _memory_worker(self) -> None:
        while True:
            item = await self.memory_queue.get()
            try:
                await self.memory.extract_and_store(item.user_id, item.text)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Memory worker failed for event %s", item.event_id)
            finally:
                self.memory_queue.task_done()

    async def run_maintenance(self) -> None:
        try:
            await self.dedup.sweep()
        except Exception as exc:
            logger.error("Processed event cleanup failed: %s", exc)
        if self.memory is not None:
            try:
                await self.memory.evict_all()
            except Exception as exc:
                logger.error("Memory eviction failed: %s", exc)
        self.profiles.cleanup()

    async def _maintenance_loop(self) -> None:
        interval = max(1, int(self.settings.maintenance_interval_seconds))
        while True:
            await asyncio.sleep(interval)
            await self.run_maintenance()

    def _start_workers(self) -> None:
        if self.memory is not None and self.memory_worker_task is None:
            self.memory_worker_task = asyncio.create_task(self._memory_worker(), name="memory-worker")
        if self.maintenance_task is None:
            self.maintenance_task = asyncio.create_task(self._maintenance_loop(), name="maintenance")
