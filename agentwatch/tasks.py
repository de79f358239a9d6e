"""Supervised fire-and-forget tasks owned by the engine."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger("agentwatch.tasks")

CoroFactory = Callable[[], Awaitable[object]]


class BackgroundTaskRunner:
    """Runs detached coroutines while keeping a reference to each task.

    Failures are logged, never raised to the submitter. ``drain()`` waits for
    everything outstanding; ``stop()`` cancels it.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    async def submit(self, factory: CoroFactory, name: str = "") -> None:
        task = asyncio.create_task(self._supervise(factory, name), name=name or None)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @staticmethod
    async def _supervise(factory: CoroFactory, name: str) -> None:
        try:
            await factory()
        except asyncio.CancelledError:
            logger.debug("Background task %s cancelled", name or "<unnamed>")
            raise
        except Exception as e:  # noqa: BLE001
            logger.error("Background task %s failed: %s", name or "<unnamed>", e)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def stop(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()


class InlineTaskRunner(BackgroundTaskRunner):
    """Awaits each submitted coroutine immediately. Used by tests and the CLI."""

    async def submit(self, factory: CoroFactory, name: str = "") -> None:
        await self._supervise(factory, name)
