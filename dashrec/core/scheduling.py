"""Interval and wall-clock scheduled recordings.

Both run as background tasks on top of :class:`CommandDispatcher`, so their
timed recordings get the same session-bound auto-stop as dashboard starts.
"""

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from loguru import logger

from .config import DEFAULT_DURATION
from .dispatcher import CommandDispatcher
from .recording import StartResult, TriggerSource

SleepFunc = Callable[[float], Awaitable[Any]]


class IntervalRecorder:
    """Record for a fixed duration every N seconds.

    The first recording starts immediately. A tick that finds a recording
    already running is skipped. Stopping the recorder also stops the
    current recording.
    """

    def __init__(
        self,
        dispatcher: CommandDispatcher,
        interval_seconds: float,
        duration_seconds: int = DEFAULT_DURATION,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError(f"Interval must be positive: {interval_seconds}")
        if duration_seconds <= 0:
            raise ValueError(f"Interval recording duration must be positive: {duration_seconds}")
        self._dispatcher = dispatcher
        self._interval = interval_seconds
        self._duration = duration_seconds
        self._sleep = sleep
        self._task: Optional['asyncio.Task[None]'] = None
        self.recordings_started = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the interval loop in the background."""
        if self.is_running:
            logger.debug("Interval recording already running")
            return
        logger.info(f"Starting interval recording: every {self._interval}s for {self._duration}s")
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the interval loop and the recording in progress."""
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        await self._dispatcher.stop_recording()
        logger.info("Interval recording stopped")

    async def tick(self) -> None:
        """Run one interval cycle. Never raises."""
        try:
            if await self._dispatcher.engine.is_recording():
                logger.info("Already recording, skipping this interval")
                return
            result = await self._dispatcher.trigger_recording(TriggerSource.INTERVAL, self._duration)
            if result.success and not result.already_recording:
                self.recordings_started += 1
            elif not result.success:
                logger.error(f"Interval recording failed to start: {result.error}")
        except Exception as error:
            logger.error(f"Interval recording cycle failed: {error}")

    async def _run(self) -> None:
        while True:
            await self.tick()
            await self._sleep(self._interval)


def schedule_recording(
    dispatcher: CommandDispatcher,
    start_time: datetime,
    duration_seconds: int = DEFAULT_DURATION,
    sleep: SleepFunc = asyncio.sleep,
    now: Callable[[], datetime] = datetime.now,
) -> 'asyncio.Task[StartResult]':
    """Schedule a recording at a wall-clock time.

    Args:
        dispatcher: Dispatcher that starts the recording
        start_time: When to start; a time in the past starts immediately
        duration_seconds: Recording length, ``0`` for continuous
        sleep: Awaitable sleep used to wait for *start_time*
        now: Current time provider, compared against *start_time*

    Returns:
        Task resolving to the start outcome. Cancel it to drop the schedule.
    """
    delay = (start_time - now()).total_seconds()

    async def _run() -> StartResult:
        if delay > 0:
            await sleep(delay)
        else:
            logger.info("Scheduled time is in the past, recording immediately")
        return await dispatcher.trigger_recording(TriggerSource.SCHEDULED, duration_seconds)

    logger.info(f"Recording scheduled for {start_time:%Y-%m-%d %H:%M:%S} ({max(delay, 0):.0f}s from now)")
    return asyncio.create_task(_run())
