"""Recording engine for dashrec.

:class:`RecordingEngine` owns the single recording session of the agent. It
is the only object that touches the capture handle, and every entry point
re-checks the live status of the handle before acting on it:

- ``start()`` on a verified-active session is a successful no-op
  (``already_recording=True``); a handle that no longer records is stale and
  is released before a fresh one is allocated.
- ``start()`` verifies the status after starting, because capture back ends
  can silently fail to start.
- ``stop()`` clears the handle reference before tearing it down, so a second
  stop racing on another task finds nothing to release.

Concurrent ``start()`` calls are serialized with an :class:`asyncio.Lock`.
Neither method raises: failures are logged and reported through
:class:`StartResult` or a ``None`` artifact.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from loguru import logger

from .capture import CaptureProfile, QualityOptions, RecordingCapability
from .errors import PermissionDenied, StaleResourceFailure, VerificationFailure
from .log import RecordingLogger

PERMISSION_NOT_GRANTED = "permission not granted"
VERIFICATION_FAILED = "status verification failed"


class TriggerSource(str, Enum):
    """Origin of a start request."""

    MANUAL = 'manual'
    INTERVAL = 'interval'
    TRIGGER = 'trigger'
    SCHEDULED = 'scheduled'
    DASHBOARD = 'dashboard'


class RecordingMode(str, Enum):
    """Whether a session stops on its own."""

    TIMED = 'timed'
    CONTINUOUS = 'continuous'

    @classmethod
    def for_duration(cls, duration_seconds: Optional[int]) -> 'RecordingMode':
        """Return CONTINUOUS for a missing or zero duration, TIMED otherwise."""
        if duration_seconds is None or duration_seconds == 0:
            return cls.CONTINUOUS
        return cls.TIMED


@dataclass
class RecordingSession:
    """The recording currently owned by the engine."""

    session_id: str
    handle: Any = field(repr=False)
    started_at: datetime
    trigger_source: TriggerSource
    mode: RecordingMode
    planned_duration_seconds: Optional[int] = None
    is_active: bool = True


@dataclass
class StartResult:
    """Outcome of :meth:`RecordingEngine.start`."""

    success: bool
    already_recording: bool = False
    error: Optional[str] = None
    session: Optional[RecordingSession] = None


@dataclass
class Artifact:
    """A finished recording handed off for tagging and upload."""

    uri: str
    duration_seconds: float
    session: Optional[RecordingSession] = None


ArtifactCallback = Callable[[Artifact], Awaitable[None]]


class RecordingEngine:
    """Start/stop coordination around a single capture handle."""

    def __init__(
        self,
        capability: RecordingCapability,
        options: Optional[QualityOptions] = None,
        profile: Optional[CaptureProfile] = None,
        on_artifact: Optional[ArtifactCallback] = None,
        journal: Optional[RecordingLogger] = None,
        device_id: Optional[str] = None,
    ) -> None:
        """Initialize the engine.

        Args:
            capability: Platform recording capability
            options: Encoding profile passed to ``prepare``
            profile: Capture mode passed to ``configure``
            on_artifact: Coroutine receiving every finished recording
            journal: Optional JSONL journal receiving session-start records
            device_id: Device identifier written to the journal
        """
        self._capability = capability
        self._options = options or QualityOptions()
        self._profile = profile or CaptureProfile()
        self._on_artifact = on_artifact
        self._journal = journal
        self._device_id = device_id
        self._handle: Any = None
        self._session: Optional[RecordingSession] = None
        self._start_lock = asyncio.Lock()

    @property
    def current_session(self) -> Optional[RecordingSession]:
        return self._session

    @property
    def options(self) -> QualityOptions:
        return self._options

    @property
    def has_handle(self) -> bool:
        return self._handle is not None

    def set_device_id(self, device_id: str) -> None:
        self._device_id = device_id

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start(
        self,
        trigger: TriggerSource = TriggerSource.MANUAL,
        duration_seconds: Optional[int] = None,
    ) -> StartResult:
        """Start a recording, or report the one already running.

        Args:
            trigger: Origin of the request
            duration_seconds: Planned length; ``None``/``0`` for continuous.
                The engine only records it, auto-stop is scheduled by the
                caller.

        Returns:
            Start outcome
        """
        async with self._start_lock:
            return await self._start(TriggerSource(trigger), duration_seconds)

    async def stop(self, session: Optional[RecordingSession] = None) -> Optional[Artifact]:
        """Stop the current recording and hand off its artifact.

        Args:
            session: When given, only stop if this is still the current
                session.

        Returns:
            The recorded artifact, or None when nothing was recording
        """
        handle = self._handle
        if handle is None:
            logger.info("No recording to stop")
            return None
        if session is not None and session is not self._session:
            logger.info(f"Session {session.session_id} was already replaced, not stopping")
            return None

        active = await self._probe(handle)
        if self._handle is not handle:
            logger.info("Recording was stopped concurrently")
            return None

        current = self._session
        self._clear()

        if not active:
            logger.warning("Recording handle exists but is not recording, releasing it")
            await self._release_quietly(handle)
            return None

        try:
            result = await asyncio.shield(self._capability.stop_and_release(handle))
        except asyncio.CancelledError:
            logger.warning(f"Stop cancelled, {handle!r} is still being released")
            raise
        except Exception as error:
            logger.error(f"Failed to stop recording: {error}")
            return None

        duration = (result.duration_ms or 0) / 1000
        logger.info(f"Recording stopped: {result.uri} ({duration:.1f}s)")
        if not result.uri:
            logger.warning("No file returned from recording, nothing to upload")
            return None

        artifact = Artifact(uri=result.uri, duration_seconds=duration, session=current)
        await self._hand_off(artifact)
        return artifact

    async def is_recording(self, session: Optional[RecordingSession] = None) -> bool:
        """Return True if a (specific) session is live right now."""
        handle = self._handle
        if handle is None:
            return False
        if session is not None and session is not self._session:
            return False
        active = await self._probe(handle)
        return active and self._handle is handle

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _start(self, trigger: TriggerSource, duration_seconds: Optional[int]) -> StartResult:
        handle = self._handle
        if handle is not None:
            active = await self._probe(handle)
            if self._handle is handle:
                if active:
                    logger.info("Recording already in progress, reusing existing session")
                    return StartResult(success=True, already_recording=True, session=self._session)
                logger.info("Cleaning up stale recording handle")
                self._clear()
                await self._release_quietly(handle)

        handle = None
        try:
            if not await self._capability.request_permission():
                raise PermissionDenied(PERMISSION_NOT_GRANTED)
            await self._capability.configure(self._profile)
            handle = await self._capability.create()
            await self._capability.prepare(handle, self._options)
            await self._capability.start(handle)
            status = await self._capability.get_status(handle)
            if not status.is_active:
                raise VerificationFailure(VERIFICATION_FAILED)
        except PermissionDenied as error:
            logger.error(f"Audio recording {error}")
            return StartResult(success=False, error=str(error))
        except Exception as error:
            message = str(error) or "Unknown error starting recording"
            logger.error(f"Failed to start recording: {message}")
            if handle is not None:
                await self._release_quietly(handle)
            return StartResult(success=False, error=message)
        except BaseException:
            # cancelled mid-start: the engine never saw this handle
            if handle is not None:
                await asyncio.shield(self._release_quietly(handle))
            raise

        started_at = datetime.now()
        session = RecordingSession(
            session_id=f"{started_at:%y%m%d%H%M%S}_{uuid.uuid4().hex[:6]}",
            handle=handle,
            started_at=started_at,
            trigger_source=trigger,
            mode=RecordingMode.for_duration(duration_seconds),
            planned_duration_seconds=duration_seconds or None,
        )
        self._handle = handle
        self._session = session
        logger.info(
            f"Recording started: session {session.session_id} "
            f"({trigger.value}, {session.mode.value})"
        )
        self._journal_start(session)
        return StartResult(success=True, session=session)

    async def _probe(self, handle: Any) -> bool:
        try:
            status = await self._capability.get_status(handle)
        except StaleResourceFailure as error:
            logger.info(f"Recording handle is stale: {error}")
            return False
        except Exception as error:
            logger.warning(f"Could not inspect recording status: {error}")
            return False
        return bool(status.is_active)

    async def _release_quietly(self, handle: Any) -> None:
        try:
            await self._capability.stop_and_release(handle)
        except Exception as error:
            logger.debug(f"Cleanup error (non-critical): {error}")

    async def _hand_off(self, artifact: Artifact) -> None:
        if self._on_artifact is None:
            return
        try:
            await self._on_artifact(artifact)
        except Exception as error:
            logger.error(f"Artifact handoff failed for {artifact.uri}: {error}")

    def _clear(self) -> None:
        if self._session is not None:
            self._session.is_active = False
        self._handle = None
        self._session = None

    def _journal_start(self, session: RecordingSession) -> None:
        if self._journal is None:
            return
        try:
            self._journal.write_session_start(
                session_id=session.session_id,
                device_id=self._device_id,
                trigger=session.trigger_source.value,
                mode=session.mode.value,
                planned_duration_sec=session.planned_duration_seconds,
                started_at=session.started_at,
            )
        except OSError as error:
            logger.warning(f"Could not write recording journal: {error}")
