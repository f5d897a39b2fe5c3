"""Shared test fixtures for dashrec tests."""

import asyncio
from typing import List, Optional, Tuple

import pytest
from loguru import logger

from dashrec.core.capture import CaptureResult, CaptureStatus, RecordingCapability
from dashrec.core.errors import StaleResourceFailure
from dashrec.core.identity import DeviceMetadata, PlatformTag
from dashrec.core.recording import RecordingEngine
from dashrec.core.storage import KeyValueStore


async def settle(rounds: int = 50) -> None:
    """Let pending tasks run until they block again."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeHandle:
    def __init__(self, index: int) -> None:
        self.index = index
        self.active = False
        self.released = False
        self.status_error: Optional[Exception] = None


class FakeCapability(RecordingCapability):
    """In-memory recording capability with controllable status."""

    def __init__(self, permission: bool = True, start_active: bool = True) -> None:
        self.permission = permission
        self.start_active = start_active
        self.stop_error: Optional[Exception] = None
        self.yield_in_status = False
        self.start_gate: Optional[asyncio.Event] = None
        self.stop_gate: Optional[asyncio.Event] = None
        self.handles: List[FakeHandle] = []
        self.released: List[FakeHandle] = []

    @property
    def creates(self) -> int:
        return len(self.handles)

    async def request_permission(self) -> bool:
        return self.permission

    async def configure(self, profile) -> None:
        self.profile = profile

    async def create(self) -> FakeHandle:
        handle = FakeHandle(len(self.handles))
        self.handles.append(handle)
        return handle

    async def prepare(self, handle, options) -> None:
        self.options = options

    async def start(self, handle) -> None:
        if self.start_gate is not None:
            await self.start_gate.wait()
        handle.active = self.start_active

    async def get_status(self, handle) -> CaptureStatus:
        if self.yield_in_status:
            await asyncio.sleep(0)
        if handle.released:
            raise StaleResourceFailure(f"handle {handle.index} released")
        if handle.status_error is not None:
            raise handle.status_error
        return CaptureStatus(is_active=handle.active, duration_ms=5000, level_db=42.0)

    async def stop_and_release(self, handle) -> CaptureResult:
        if self.stop_gate is not None:
            await self.stop_gate.wait()
        if self.stop_error is not None:
            raise self.stop_error
        handle.released = True
        handle.active = False
        self.released.append(handle)
        return CaptureResult(uri=f"audio/fake_{handle.index}.mp3", duration_ms=5000)


class FakeClock:
    """Simulated time for injected ``sleep`` callables."""

    def __init__(self) -> None:
        self.now = 0.0
        self._waiters: List[Tuple[float, asyncio.Future]] = []

    def time(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        if delay <= 0:
            await asyncio.sleep(0)
            return
        future = asyncio.get_running_loop().create_future()
        self._waiters.append((self.now + delay, future))
        await future

    @property
    def pending(self) -> int:
        return sum(1 for _, future in self._waiters if not future.done())

    async def advance(self, seconds: float) -> None:
        """Move time forward, waking sleepers in deadline order."""
        target = self.now + seconds
        await settle()
        while True:
            self._waiters = [w for w in self._waiters if not w[1].done()]
            due = [w for w in self._waiters if w[0] <= target]
            if not due:
                break
            waiter = min(due, key=lambda w: w[0])
            self._waiters.remove(waiter)
            self.now = waiter[0]
            waiter[1].set_result(None)
            await settle()
        self.now = target
        await settle()


class FakeReporter:
    """Records status events and artifacts instead of sending them."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, dict]] = []
        self.artifacts: list = []

    async def notify(self, event_type: str, extra: Optional[dict] = None) -> bool:
        self.events.append((event_type, dict(extra or {})))
        return True

    async def handle_artifact(self, artifact) -> None:
        self.artifacts.append(artifact)

    @property
    def event_names(self) -> List[str]:
        return [name for name, _ in self.events]


@pytest.fixture
def capability():
    return FakeCapability()


@pytest.fixture
def reporter():
    return FakeReporter()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(capability, reporter):
    return RecordingEngine(capability, on_artifact=reporter.handle_artifact)


@pytest.fixture
def store(tmp_path):
    return KeyValueStore(tmp_path / "state.json")


@pytest.fixture
def metadata():
    return DeviceMetadata(manufacturer="Acme Corp.", model="Model-1", platform=PlatformTag.ANDROID)


@pytest.fixture(autouse=True)
def reset_loguru():
    """Drop sinks that CLI commands bound to captured streams."""
    yield
    logger.remove()


@pytest.fixture
def log_messages():
    """Capture loguru output as (level, message) tuples."""
    messages: List[Tuple[str, str]] = []
    handler_id = logger.add(
        lambda message: messages.append((message.record["level"].name, message.record["message"])),
        level="DEBUG",
    )
    yield messages
    logger.remove(handler_id)

