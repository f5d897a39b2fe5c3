"""Command dispatcher for dashrec.

Maps a :data:`~dashrec.core.commands.Command` onto the recording engine and
owns the auto-stop timers of timed recordings. Each timer is bound to the
session it was scheduled for, so a timer that outlives its session never
stops a replacement.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from loguru import logger

from .commands import Command, NoCommand, StartCommand, StopCommand, UnknownCommand
from .config import DEFAULT_DURATION
from .recording import (
    Artifact,
    RecordingEngine,
    RecordingMode,
    RecordingSession,
    StartResult,
    TriggerSource,
)

SleepFunc = Callable[[float], Awaitable[Any]]


@dataclass(eq=False)
class _AutoStop:
    session: RecordingSession
    delay: int
    task: Optional['asyncio.Task[None]'] = None
    fired: bool = False


class CommandDispatcher:
    """Execute commands against a :class:`RecordingEngine`."""

    def __init__(
        self,
        engine: RecordingEngine,
        reporter: Any = None,
        default_duration: int = DEFAULT_DURATION,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            engine: Recording engine to drive
            reporter: Receiver of status events (``notify(event, extra)``)
            default_duration: Seconds used when a start command has no duration
            sleep: Awaitable sleep used by auto-stop timers
        """
        self._engine = engine
        self._reporter = reporter
        self._default_duration = default_duration
        self._sleep = sleep
        self._timers: List[_AutoStop] = []

    @property
    def engine(self) -> RecordingEngine:
        return self._engine

    @property
    def pending_timers(self) -> int:
        """Number of auto-stop timers that have not fired yet."""
        return sum(1 for timer in self._timers if not timer.fired)

    async def dispatch(self, command: Command) -> None:
        """Execute *command*. Never raises."""
        try:
            if isinstance(command, NoCommand):
                return
            if isinstance(command, StartCommand):
                duration = command.duration_seconds
                if duration is None:
                    duration = self._default_duration
                logger.info(f"Dashboard start command ({duration}s)")
                result = await self.trigger_recording(TriggerSource.DASHBOARD, duration)
                if not result.success:
                    logger.error(f"Dashboard start failed: {result.error}")
            elif isinstance(command, StopCommand):
                logger.info("Dashboard stop command")
                await self.stop_recording()
            elif isinstance(command, UnknownCommand):
                logger.warning(f"Unknown command action: '{command.action}'")
        except Exception as error:
            logger.error(f"Error executing command {command}: {error}")

    async def trigger_recording(
        self,
        trigger: TriggerSource,
        duration_seconds: Optional[int] = None,
    ) -> StartResult:
        """Start a recording and schedule its auto-stop.

        Args:
            trigger: Origin of the request
            duration_seconds: Seconds until auto-stop; ``None`` or ``0`` records
                until stopped

        Returns:
            Start outcome from the engine

        Raises:
            ValueError: If *duration_seconds* is negative
        """
        if duration_seconds is not None and duration_seconds < 0:
            raise ValueError(f"Duration must not be negative: {duration_seconds}")

        trigger = TriggerSource(trigger)
        mode = RecordingMode.for_duration(duration_seconds)
        result = await self._engine.start(trigger, duration_seconds)
        if not result.success:
            return result

        if result.already_recording:
            await self._notify('recording_already_active', {'trigger': trigger.value})
            return result

        if mode is RecordingMode.TIMED and result.session is not None:
            self._schedule_auto_stop(result.session, duration_seconds)
        else:
            logger.info("Continuous recording, no auto-stop scheduled")
        await self._notify('recording_started', {'trigger': trigger.value, 'mode': mode.value})
        return result

    async def stop_recording(self) -> Optional[Artifact]:
        """Stop the current recording, if any, and drop its pending auto-stop."""
        session = self._engine.current_session
        if session is not None:
            self._cancel_timers(session)
        artifact = await self._engine.stop()
        if artifact is None:
            logger.info("Stop requested but nothing was recording")
        return artifact

    async def join(self) -> None:
        """Wait until every auto-stop timer has finished."""
        tasks = [timer.task for timer in self._timers if timer.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel every pending auto-stop timer and wait for them to finish."""
        tasks = [timer.task for timer in self._timers if timer.task is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._timers.clear()

    # ------------------------------------------------------------------
    # Auto-stop timers
    # ------------------------------------------------------------------

    def _schedule_auto_stop(self, session: RecordingSession, delay: int) -> None:
        timer = _AutoStop(session=session, delay=delay)
        timer.task = asyncio.create_task(self._auto_stop(timer))
        timer.task.add_done_callback(lambda _task: self._forget(timer))
        self._timers.append(timer)
        logger.info(f"Auto-stop scheduled in {delay}s for session {session.session_id}")

    async def _auto_stop(self, timer: _AutoStop) -> None:
        await self._sleep(timer.delay)
        timer.fired = True
        try:
            if not await self._engine.is_recording(timer.session):
                logger.info(f"Session {timer.session.session_id} already ended, skipping auto-stop")
                return
            logger.info(f"Auto-stopping recording after {timer.delay}s")
            await self._engine.stop(timer.session)
        except Exception as error:
            logger.error(f"Auto-stop failed: {error}")

    def _cancel_timers(self, session: RecordingSession) -> None:
        # Timers already past their sleep are left to finish their stop.
        for timer in list(self._timers):
            if timer.session is session and not timer.fired and timer.task is not None:
                timer.task.cancel()
                self._timers.remove(timer)

    def _forget(self, timer: _AutoStop) -> None:
        if timer in self._timers:
            self._timers.remove(timer)

    async def _notify(self, event_type: str, extra: Dict[str, Any]) -> None:
        if self._reporter is None:
            return
        try:
            await self._reporter.notify(event_type, extra)
        except Exception as error:
            logger.warning(f"Failed to report '{event_type}': {error}")
