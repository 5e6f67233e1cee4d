"""
core/tasks.py -- Supervised background asyncio tasks.

TaskSupervisor owns every long-running coroutine the application starts (today
only the periodic token cleanup). Each task is registered under a name, its
completion is observed through a done-callback that logs crashes, and shutdown
cancels and awaits every task so nothing outlives the lifespan.

Usage:
    supervisor = TaskSupervisor()
    supervisor.start("token-cleanup", periodic(3600, sweep))
    ...
    await supervisor.cancel_all()

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

logger = logging.getLogger("tokenguard.tasks")


class TaskSupervisor:
    """Registry of named background tasks with cancellation and completion observation."""

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task] = {}

    def start(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Schedule coro on the running loop under name.

        Raises ValueError if a task with the same name is still running.
        """
        existing = self._tasks.get(name)
        if existing is not None and not existing.done():
            coro.close()
            raise ValueError(f"Task {name!r} is already running.")
        task = asyncio.create_task(coro, name=name)
        task.add_done_callback(self._on_done)
        self._tasks[name] = task
        logger.info("Background task %s started", name)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        name = task.get_name()
        if self._tasks.get(name) is task:
            del self._tasks[name]
        if task.cancelled():
            logger.info("Background task %s cancelled", name)
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task %s crashed", name, exc_info=exc)
        else:
            logger.info("Background task %s finished", name)

    def running(self) -> list[str]:
        return sorted(name for name, task in self._tasks.items() if not task.done())

    def is_running(self, name: str) -> bool:
        task = self._tasks.get(name)
        return task is not None and not task.done()

    async def cancel(self, name: str) -> bool:
        """Cancel one task and wait for it to unwind. Returns False if no such task."""
        task = self._tasks.get(name)
        if task is None:
            return False
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await asyncio.gather(task, return_exceptions=True)
        return True

    async def cancel_all(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()


async def periodic(interval_seconds: float, job: Callable[[], Awaitable[Any]], *, name: str = "job") -> None:
    """Run job every interval_seconds until cancelled.

    A failing iteration is logged and the loop keeps going; the next run is
    another chance. CancelledError propagates out of asyncio.sleep and ends
    the loop.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Periodic job %s failed", name)
