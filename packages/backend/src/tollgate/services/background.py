"""Best-effort background work.

Learn: Some side effects must never block or fail the request that
triggered them — the last-used timestamp, audit delivery. They run as
detached asyncio tasks. A strong reference is kept until each task ends
(the event loop only holds weak ones), failures are logged and dropped,
and ``drain()`` lets shutdown and tests wait for stragglers.
"""

import asyncio
from typing import Any, Coroutine

import structlog

logger = structlog.get_logger()


class BackgroundTasks:
    """Fire-and-forget task runner with failure logging."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], label: str) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._finished(t, label))
        return task

    def _finished(self, task: asyncio.Task, label: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                "background.failed",
                task=label,
                error=str(exc),
                error_type=type(exc).__name__,
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait for in-flight tasks; cancel whatever outlives the timeout."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
