"""
notifier.py - Operator notification sink.

Every slot reports alerts, connects and lobby changes here. Delivery is
fire-and-forget: a sink that is slow or raises never blocks or breaks
the slot that sent the message. Chat-platform adapters plug in by
subscribing a callback (plain function or coroutine function).
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, List, Set, Union

logger = logging.getLogger(__name__)

Sink = Callable[[str], Union[None, Awaitable[Any]]]


class Notifier:
    """
    Broadcasts messages to all subscribed sinks.

    Usage:
        notifier = Notifier()
        notifier.subscribe(print)
        notifier.broadcast("[1] connected")
    """

    def __init__(self):
        self._sinks: List[Sink] = []
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, sink: Sink) -> None:
        self._sinks.append(sink)

    def unsubscribe(self, sink: Sink) -> None:
        if sink in self._sinks:
            self._sinks.remove(sink)

    def broadcast(self, message: str) -> None:
        """
        Deliver a message to every sink without waiting for any of them.

        Args:
            message: Human-readable notification text
        """
        for sink in list(self._sinks):
            try:
                result = sink(message)
            except Exception as e:
                logger.error(f"Notification sink {_name(sink)} failed: {e}")
                continue

            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._on_delivered)

    def _on_delivered(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Notification delivery failed: {exc}")

    async def drain(self) -> None:
        """Wait for in-flight deliveries (used on shutdown)."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)


def _name(sink: Sink) -> str:
    return getattr(sink, "__qualname__", repr(sink))
