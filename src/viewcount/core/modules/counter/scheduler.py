import asyncio
import contextlib
from collections.abc import Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)


class CoalescingScheduler:
    """Collapses bursts of requests into one callback run after a quiet interval.

    A request marks the scheduler dirty; a background task waits until no new
    request has arrived for `delay_ms` and then runs the callback once. Requests
    made while the callback is running cause another run afterwards.
    """

    def __init__(self, callback: Callable[[], Awaitable[None]], delay_ms: int, name: str) -> None:
        self._callback = callback
        self._delay = delay_ms / 1000
        self._name = name
        self._dirty = False
        self._last_request = 0.0
        self._task: asyncio.Task[None] | None = None

    @property
    def pending(self) -> bool:
        return self._dirty

    def request(self) -> None:
        loop = asyncio.get_running_loop()
        self._dirty = True
        self._last_request = loop.time()
        if self._task is None or self._task.done():
            self._task = loop.create_task(self._run())

    async def flush(self) -> None:
        """Cancel the pending wait and run the callback now if anything is dirty."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        await self._fire()

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while self._dirty:
            remaining = self._last_request + self._delay - loop.time()
            if remaining > 0:
                await asyncio.sleep(remaining)
                continue
            await self._fire()

    async def _fire(self) -> None:
        if not self._dirty:
            return
        self._dirty = False
        logger.debug("scheduler_fired", scheduler=self._name)
        try:
            await self._callback()
        except asyncio.CancelledError:
            # Interrupted mid-run; leave dirty so a flush repeats the work
            self._dirty = True
            raise
