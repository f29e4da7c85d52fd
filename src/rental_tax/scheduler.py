"""Keyed, trailing-edge debounced tasks on the asyncio event loop."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

logger = logging.getLogger(__name__)

TaskFn = Callable[[], Awaitable[None]]


class TaskHandle:
    """Handle to one scheduled task.

    Cancelling only affects a task that is still waiting out its delay. Once
    the task fired, its work is in flight and runs to completion.
    """

    def __init__(self, key: str):
        self.key = key
        self.fired = False
        self.cancelled = False
        self.task: asyncio.Task[None] | None = None

    def cancel(self) -> bool:
        """Cancel the task if it has not fired yet. Returns True if cancelled."""
        if self.fired or self.cancelled:
            return False
        self.cancelled = True
        if self.task is not None and not self.task.done():
            self.task.cancel()
        return True


class Scheduler(Protocol):
    """Debounced task primitive used by the sync coordinator."""

    def schedule(self, key: str, delay: float, fn: TaskFn) -> TaskHandle:
        """Run *fn* after *delay* seconds, replacing any pending task for *key*."""
        ...

    def cancel(self, key: str) -> bool:
        ...

    def cancel_all(self) -> None:
        ...

    def pending(self) -> set[str]:
        ...

    async def flush(self) -> None:
        """Run pending tasks now and wait for tasks already in flight."""
        ...


class Debouncer:
    """asyncio implementation of :class:`Scheduler`.

    Must be used from a running event loop.
    """

    def __init__(self) -> None:
        self._pending: dict[str, tuple[TaskHandle, TaskFn]] = {}
        self._in_flight: set[asyncio.Task[None]] = set()

    def schedule(self, key: str, delay: float, fn: TaskFn) -> TaskHandle:
        self.cancel(key)

        handle = TaskHandle(key)
        loop = asyncio.get_running_loop()
        handle.task = loop.create_task(
            self._run(handle, delay, fn), name=f"debounce:{key}"
        )
        self._pending[key] = (handle, fn)
        logger.debug(f"Scheduled '{key}' in {delay:.3f}s")
        return handle

    async def _run(self, handle: TaskHandle, delay: float, fn: TaskFn) -> None:
        await asyncio.sleep(delay)

        entry = self._pending.get(handle.key)
        if entry is not None and entry[0] is handle:
            del self._pending[handle.key]
        handle.fired = True

        task = asyncio.current_task()
        if task is not None:
            self._in_flight.add(task)
        try:
            await fn()
        except Exception:
            logger.exception(f"Debounced task '{handle.key}' failed")
        finally:
            if task is not None:
                self._in_flight.discard(task)

    def cancel(self, key: str) -> bool:
        entry = self._pending.pop(key, None)
        if entry is None:
            return False
        logger.debug(f"Cancelled pending '{key}'")
        return entry[0].cancel()

    def cancel_all(self) -> None:
        for key in list(self._pending):
            self.cancel(key)

    def pending(self) -> set[str]:
        return set(self._pending)

    async def flush(self) -> None:
        while self._pending:
            key = next(iter(self._pending))
            handle, fn = self._pending.pop(key)
            handle.cancel()
            handle.fired = True
            await fn()

        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)
