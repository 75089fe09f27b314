"""
Named timers on the asyncio event loop.

A checkout owns one scheduler; every exit path releases all of its timers
with a single ``cancel_all``.
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Protocol

from structlog import get_logger

logger = get_logger(__name__)

TimerCallback = Callable[[], Awaitable[None] | None]


class Scheduler(Protocol):
    """
    Timer abstraction used by the payment confirmation flow.

    Scheduling a name that is already live replaces the previous timer.
    """

    def now(self) -> float:
        """Monotonic time in seconds."""
        ...

    def schedule_once(self, name: str, delay: float, callback: TimerCallback) -> None:
        """Run ``callback`` once after ``delay`` seconds."""
        ...

    def schedule_repeating(self, name: str, interval: float, callback: TimerCallback) -> None:
        """Run ``callback`` every ``interval`` seconds until cancelled."""
        ...

    def cancel(self, name: str) -> None:
        """Cancel one timer; unknown names are ignored."""
        ...

    def cancel_all(self) -> None:
        """Cancel every live timer."""
        ...

    @property
    def active(self) -> frozenset[str]:
        """Names of timers that are still scheduled."""
        ...

    async def drain(self) -> None:
        """Wait for timer callbacks that are still running."""
        ...


class AsyncioScheduler:
    """Scheduler backed by ``loop.call_later``; coroutine callbacks run as tasks."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._handles: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Future[None]] = set()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return self.loop.time()

    def schedule_once(self, name: str, delay: float, callback: TimerCallback) -> None:
        self.cancel(name)

        def fire() -> None:
            self._handles.pop(name, None)
            self._run(name, callback)

        self._handles[name] = self.loop.call_later(delay, fire)

    def schedule_repeating(self, name: str, interval: float, callback: TimerCallback) -> None:
        self.cancel(name)

        def fire() -> None:
            # Re-arm before running so the callback may cancel its own timer
            self._handles[name] = self.loop.call_later(interval, fire)
            self._run(name, callback)

        self._handles[name] = self.loop.call_later(interval, fire)

    def cancel(self, name: str) -> None:
        handle = self._handles.pop(name, None)
        if handle is not None:
            handle.cancel()

    def cancel_all(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()

    @property
    def active(self) -> frozenset[str]:
        return frozenset(self._handles)

    async def drain(self) -> None:
        """Wait for callback tasks that are already running."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def _run(self, name: str, callback: TimerCallback) -> None:
        result = callback()
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done(name))

    def _task_done(self, name: str) -> Callable[[asyncio.Future[None]], None]:
        def done(task: asyncio.Future[None]) -> None:
            self._tasks.discard(task)
            if task.cancelled():
                return
            exc = task.exception()
            if exc is not None:
                logger.error(
                    "timer_callback_failed",
                    timer=name,
                    error=str(exc),
                    exc_info=exc,
                )

        return done
