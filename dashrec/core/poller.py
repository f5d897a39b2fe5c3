"""Command polling loop for dashrec."""

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

from loguru import logger

from .channel import CommandChannel
from .commands import NoCommand
from .config import POLL_INTERVAL
from .dispatcher import CommandDispatcher
from .identity import DeviceIdentity


class CommandPoller:
    """Poll the dashboard for commands on a fixed period.

    The first poll runs inside :meth:`start`; later cycles are scheduled
    from the end of the previous one, so cycles never overlap. A cycle
    slower than the period is followed immediately by the next.
    """

    def __init__(
        self,
        identity: DeviceIdentity,
        channel: CommandChannel,
        dispatcher: CommandDispatcher,
        interval: float = POLL_INTERVAL,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._identity = identity
        self._channel = channel
        self._dispatcher = dispatcher
        self._interval = interval
        self._sleep = sleep
        self._clock = clock
        self._device_id: Optional[str] = None
        self._cycle_started = 0.0
        self._task: Optional['asyncio.Task[None]'] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def device_id(self) -> Optional[str]:
        return self._device_id

    async def start(self) -> None:
        """Resolve the device id, poll once, then start the loop task."""
        if self.is_running:
            logger.debug("Command polling already running")
            return
        self._device_id = self._identity.resolve()
        logger.info(f"Starting command polling for device: {self._device_id} (every {self._interval}s)")
        self._cycle_started = self._clock()
        await self.poll_once()
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Cancel the loop task and wait for it to end."""
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Command polling stopped")

    async def poll_once(self) -> None:
        """Fetch and execute at most one command. Never raises."""
        device_id = self._device_id or self._identity.resolve()
        try:
            command = await self._channel.poll(device_id)
            if not isinstance(command, NoCommand):
                await self._dispatcher.dispatch(command)
        except Exception as error:
            logger.error(f"Command poll cycle failed: {error}")

    async def _run(self) -> None:
        while True:
            remaining = self._interval - (self._clock() - self._cycle_started)
            await self._sleep(max(remaining, 0.0))
            self._cycle_started = self._clock()
            await self.poll_once()
