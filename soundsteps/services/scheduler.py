"""
Deferred sends.

The SMS engine sends a lesson intro right away and the first question a
moment later. Each deferred send is a named asyncio task: scheduling the
same key again cancels the old one, failures are logged when the task
finishes, and everything pending is cancelled on shutdown.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List

logger = logging.getLogger(__name__)


class DeferredTasks:

    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}

    def schedule(
        self,
        key: str,
        delay: float,
        factory: Callable[[], Awaitable[None]]
    ) -> asyncio.Task:
        """Run `factory()` after `delay` seconds under the name `key`."""
        self.cancel(key)

        async def runner():
            await asyncio.sleep(delay)
            await factory()

        task = asyncio.create_task(runner(), name=key)
        self._tasks[key] = task
        task.add_done_callback(lambda t: self._finished(key, t))
        return task

    def _finished(self, key: str, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if task.cancelled():
            logger.info("[Deferred] %s cancelled", key)
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "[Deferred] %s failed: %s", key, error,
                exc_info=(type(error), error, error.__traceback__)
            )

    def cancel(self, key: str) -> bool:
        task = self._tasks.pop(key, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def pending(self) -> List[str]:
        return [key for key, task in self._tasks.items() if not task.done()]

    async def drain(self) -> None:
        """Wait for every scheduled task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel whatever is still waiting."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
