"""Bounded fire-and-forget task runner for embedding and extraction work."""

import asyncio
import logging
from typing import Awaitable, Optional

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """Runs coroutines off the caller's path, at most `concurrency` at once.

    Failures are logged and dropped; nothing is retried. Tasks may carry a
    key (a memory or entity id) so a later delete can cancel them.
    """

    def __init__(self, concurrency: int = 5):
        self.concurrency = concurrency
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._tasks: set[asyncio.Task] = set()
        self._keyed: dict[str, set[asyncio.Task]] = {}

    def _get_semaphore(self) -> asyncio.Semaphore:
        # Created lazily so it binds to the loop that runs the work
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.concurrency)
        return self._semaphore

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, work: Awaitable, key: Optional[str] = None, label: str = "task") -> bool:
        """Schedule work; returns False if there is no running event loop."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; dropping background %s %s", label, key)
            if asyncio.iscoroutine(work):
                work.close()
            return False

        task = loop.create_task(self._run(work, key, label))
        self._tasks.add(task)
        if key is not None:
            self._keyed.setdefault(key, set()).add(task)
        task.add_done_callback(lambda t: self._forget(t, key, work))
        return True

    async def _run(self, work: Awaitable, key: Optional[str], label: str) -> None:
        async with self._get_semaphore():
            try:
                await work
            except asyncio.CancelledError:
                logger.debug("Background %s for %s cancelled", label, key)
                raise
            except Exception as e:
                logger.warning("Background %s for %s failed: %s", label, key, e)

    def _forget(self, task: asyncio.Task, key: Optional[str], work: Awaitable) -> None:
        self._tasks.discard(task)
        if task.cancelled() and asyncio.iscoroutine(work):
            # Cancelled before it started
            work.close()
        if key is not None and key in self._keyed:
            self._keyed[key].discard(task)
            if not self._keyed[key]:
                del self._keyed[key]

    def cancel(self, key: str) -> int:
        """Cancel all outstanding work for key; returns how many were cancelled."""
        tasks = self._keyed.pop(key, set())
        for task in tasks:
            task.cancel()
        return len(tasks)

    async def drain(self) -> None:
        """Wait until every submitted task (and any it submits) is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
