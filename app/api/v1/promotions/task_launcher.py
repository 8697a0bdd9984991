"""Detached background execution for batch processing on the running event loop."""

import asyncio
import logging
from typing import Coroutine, Optional, Set

logger = logging.getLogger(__name__)


class AsyncioTaskLauncher:
    """
    Schedules coroutines as asyncio tasks and returns the task handle.

    Handles are kept until the task finishes so the loop does not garbage-collect
    running work. Callers may ignore the handle (fire-and-forget) or await it.
    """

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    def launch(self, coro: Coroutine, name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    @property
    def running(self) -> int:
        return len(self._tasks)

    async def wait_all(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Background task %s was cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task %s failed", task.get_name(), exc_info=exc)
