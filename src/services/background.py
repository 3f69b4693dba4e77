"""In-process background job registry.

Escalation chains outlive the HTTP request that starts them.  Every
detached chain is submitted here as an ``asyncio.Task``:

* the registry holds a strong reference until the task finishes (the
  event loop only keeps weak references);
* failures are logged from a done-callback, since nobody awaits the task;
* :meth:`shutdown` cancels whatever is still running when the
  application stops.  Cancelled chains resume from their checkpoints on
  the next start.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class BackgroundJobs:
    """Tracks detached ``asyncio`` tasks for the lifetime of the process."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

    @property
    def active_count(self) -> int:
        return sum(1 for task in self._tasks if not task.done())

    @property
    def active_names(self) -> list[str]:
        return sorted(task.get_name() for task in self._tasks if not task.done())

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any]:
        """Schedule *coro* on the running loop and return immediately."""
        if self._closed:
            coro.close()
            raise RuntimeError("BackgroundJobs is shut down; cannot spawn new work")

        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.debug("background.spawned", job=name, active=self.active_count)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.info("background.cancelled", job=task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "background.failed",
                job=task.get_name(),
                error=str(exc),
                exc_info=exc,
            )

    async def wait_idle(self, timeout: float | None = None) -> None:
        """Wait until every job (including ones spawned meanwhile) is done."""
        async with asyncio.timeout(timeout):
            while self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Cancel running jobs and wait (bounded) for them to unwind."""
        self._closed = True
        pending = [task for task in self._tasks if not task.done()]
        if not pending:
            return

        logger.info("background.shutdown", pending=len(pending))
        for task in pending:
            task.cancel()
        try:
            await asyncio.wait_for(
                asyncio.gather(*pending, return_exceptions=True),
                timeout=timeout,
            )
        except TimeoutError:
            logger.warning("background.shutdown_timeout", pending=self.active_count)
