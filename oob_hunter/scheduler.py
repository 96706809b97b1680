from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

import anyio
import structlog

from .interactions import InteractionHandler

log = structlog.get_logger(__name__)


class PollingScheduler:
    """Background loop that runs one poll cycle every ``interval_ms()`` milliseconds.

    Each :meth:`start` gets its own stop event, so a stopped loop that is still
    finishing an in-flight cycle can never be revived by a later restart.  The
    event is checked before every cycle and after every wait; the wait itself
    is cut short as soon as the event is set.
    """

    def __init__(self, cycle: Callable[[InteractionHandler], Awaitable[object]], interval_ms: Callable[[], int]):
        self.cycle = cycle
        self.interval_ms = interval_ms
        self.cycles = 0
        self._stop: Optional[anyio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._stop is not None and not self._stop.is_set()

    def start(self, handler: InteractionHandler) -> None:
        """Launch the loop on the running event loop.

        Raises :class:`RuntimeError` when there is no running loop, leaving the
        scheduler untouched.
        """
        loop = asyncio.get_running_loop()
        stop = anyio.Event()
        self._task = loop.create_task(self._loop(handler, stop), name="oob-poll-loop")
        self._stop = stop

    def stop(self) -> None:
        if self._stop is not None:
            self._stop.set()

    async def wait_stopped(self) -> None:
        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            await task

    async def _loop(self, handler: InteractionHandler, stop: anyio.Event) -> None:
        log.debug("poll_loop_started")
        while not stop.is_set():
            try:
                await self.cycle(handler)
            except Exception as e:
                # one bad cycle never ends the loop
                log.warning("poll_cycle_failed", error=str(e), error_type=type(e).__name__)
            self.cycles += 1
            if stop.is_set():
                break
            with anyio.move_on_after(self.interval_ms() / 1000):
                await stop.wait()
        log.debug("poll_loop_stopped", cycles=self.cycles)
