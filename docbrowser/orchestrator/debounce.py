from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger("docbrowser.debounce")


class Debouncer:
    """
    Cancellable delayed execution. Scheduling cancels whatever is still
    pending, so only the last call inside the window ever runs.
    """

    def __init__(self, delay: float) -> None:
        self.delay = float(delay)
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self, factory: Callable[[], Awaitable[Any]]) -> asyncio.Task:
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(self._run(factory))
        return self._task

    def cancel(self) -> None:
        task = self._task
        if task is None or task.done():
            return
        # a run that reschedules from inside must finish, not cancel itself
        if task is not asyncio.current_task():
            task.cancel()

    async def wait(self) -> None:
        """Wait until the most recently scheduled run has settled (ran or was cancelled)."""
        while self._task is not None:
            task = self._task
            await asyncio.wait({task})
            if task is self._task:
                return

    async def _run(self, factory: Callable[[], Awaitable[Any]]) -> None:
        await asyncio.sleep(self.delay)
        try:
            await factory()
        except Exception:
            logger.exception("debounced call failed")
