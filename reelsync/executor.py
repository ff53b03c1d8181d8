"""Background task runner bound to the application's event loop."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Any, Coroutine

logger = logging.getLogger(__name__)


class TaskExecutor:
    """Runs fetch and write coroutines as fire-and-forget asyncio tasks.

    All tasks share the loop that owns the movie state, so completions mutate
    the store one at a time without locking.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background task %s failed: %s",
                task.get_name(),
                exc,
                exc_info=exc,
            )

    async def drain(self) -> None:
        """Wait until every submitted task, including ones they spawn, is done."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel outstanding work. Only used when the application stops."""

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError, Exception):
                await task
        self._tasks.clear()
