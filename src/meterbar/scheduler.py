import asyncio
from typing import AsyncIterator, Protocol

import structlog

logger = structlog.get_logger()

# reference cadence for the recurring refresh
DEFAULT_REFRESH_INTERVAL_SECONDS = 15 * 60


class Scheduler(Protocol):
    """
    Scheduler is a source of "refresh due" ticks consumed by the
    orchestrator's run loop.
    """

    def ticks(self) -> "AsyncIterator[None]": ...

    def stop(self) -> "None": ...


class IntervalScheduler:
    """
    IntervalScheduler ticks once immediately and then every interval
    until stop() is called. Refreshes triggered outside the loop do
    not reset the cadence.
    """

    def __init__(
        self, interval_seconds: "float" = DEFAULT_REFRESH_INTERVAL_SECONDS
    ) -> "None":
        self._interval = interval_seconds
        self._stop_event: "asyncio.Event" = asyncio.Event()

    def stop(self) -> "None":
        self._stop_event.set()

    async def ticks(self) -> "AsyncIterator[None]":
        while not self._stop_event.is_set():
            logger.debug("refresh_due", interval=self._interval)
            yield

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except TimeoutError:
                pass


class ManualScheduler:
    """
    ManualScheduler ticks only when tick() is called, so refresh
    cycles can be driven deterministically.
    """

    def __init__(self) -> "None":
        self._queue: "asyncio.Queue[bool]" = asyncio.Queue()

    def tick(self) -> "None":
        self._queue.put_nowait(True)

    def stop(self) -> "None":
        self._queue.put_nowait(False)

    async def ticks(self) -> "AsyncIterator[None]":
        while await self._queue.get():
            yield
