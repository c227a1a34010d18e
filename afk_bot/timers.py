"""
timers.py - Cancellable background tasks owned by one slot.

Each slot keeps its loops and delayed actions as named asyncio tasks.
Cancelling everything bumps a generation counter, so a coroutine that
was already past its last suspension point can still tell it belongs to
a discarded generation and must not touch the session.
"""

import asyncio
import logging
from typing import Awaitable, Dict, Optional

logger = logging.getLogger(__name__)


class SlotTimers:
    """
    Named task registry for a single slot.

    Usage:
        timers = SlotTimers("Slot 1")
        timers.spawn("anti_afk", loop.run())
        gen = timers.generation
        ...
        if not timers.is_current(gen):
            return
        timers.cancel_all()
    """

    def __init__(self, label: str):
        self.label = label
        self.generation = 0
        self._tasks: Dict[str, asyncio.Task] = {}

    def spawn(self, name: str, coro: Awaitable[None]) -> asyncio.Task:
        """
        Start a task under ``name``, replacing any task with that name.

        Args:
            name: Registry key (e.g., "anti_afk", "reconnect")
            coro: Coroutine to run

        Returns:
            The created task
        """
        self.cancel(name)
        task = asyncio.ensure_future(coro)
        self._tasks[name] = task
        task.add_done_callback(lambda t, n=name: self._on_done(n, t))
        return task

    def _on_done(self, name: str, task: asyncio.Task) -> None:
        if self._tasks.get(name) is task:
            del self._tasks[name]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"{self.label}: Background task '{name}' crashed: {exc!r}")

    def is_running(self, name: str) -> bool:
        task = self._tasks.get(name)
        return task is not None and not task.done()

    def is_current(self, generation: int) -> bool:
        return generation == self.generation

    def cancel(self, name: str) -> None:
        """Cancel one task. The calling task is never cancelled by itself."""
        task = self._tasks.pop(name, None)
        if task is not None and task is not _current_task():
            task.cancel()

    def cancel_all(self) -> None:
        """Cancel every task and invalidate the current generation."""
        self.generation += 1
        current = _current_task()
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            if task is not current:
                task.cancel()

    def names(self):
        return sorted(name for name, task in self._tasks.items() if not task.done())


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
