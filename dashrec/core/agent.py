"""Wiring of the dashrec agent.

:class:`Agent` builds every component from an :class:`AppConfig` and owns
their lifetime::

    agent = Agent(AppConfig())
    await agent.run(interval_minutes=15, interval_duration=30)  # until cancelled
"""

import asyncio
from functools import partial
from typing import Optional

import httpx
from loguru import logger

from .capture import CaptureProfile, MicrophoneCapability, QualityOptions, RecordingCapability
from .channel import CommandChannel
from .config import AppConfig
from .dashboard import DashboardClient
from .dispatcher import CommandDispatcher
from .handoff import RecordingReporter
from .identity import DeviceIdentity, PlatformTag, collect_device_metadata
from .location import StaticLocationProvider
from .log import RecordingLogger
from .poller import CommandPoller
from .recording import RecordingEngine
from .s3_upload import S3Uploader
from .scheduling import IntervalRecorder
from .storage import KeyValueStore


def build_quality_options(config: AppConfig) -> QualityOptions:
    """Return the encoding profile configured under ``recording:``."""
    return QualityOptions(
        sample_rate=int(config.get('sample_rate')),
        channels=int(config.get('channels')),
        bit_rate=int(config.get('bit_rate')),
        file_format=str(config.get('file_format')),
        frames_per_buffer=int(config.get('frames_per_buffer')),
    )


def build_identity(config: AppConfig) -> DeviceIdentity:
    """Return the device identity resolver configured under ``device:``."""
    device = config.get_section('device')
    return DeviceIdentity(
        KeyValueStore(config.get_store_path()),
        metadata_provider=partial(
            collect_device_metadata,
            manufacturer=device.get('manufacturer'),
            model=device.get('model'),
            platform_tag=device.get('platform'),
        ),
    )


class Agent:
    """Recording agent driven by dashboard commands."""

    def __init__(
        self,
        config: AppConfig,
        capability: Optional[RecordingCapability] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Build the agent.

        Args:
            config: Application configuration
            capability: Recording capability; PyAudio capture when omitted
            client: Shared HTTP client; one is created (and owned) when omitted
        """
        self.config = config
        server = config.get_section('server')
        device = config.get_section('device')
        base_url = str(server['base_url']).rstrip('/')
        timeout = float(server['timeout'])

        self.identity = build_identity(config)

        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        platform_tag = device.get('platform') or PlatformTag.detect().value
        self.dashboard = DashboardClient(
            self.identity, base_url=base_url, timeout=timeout, platform_tag=platform_tag, client=self.client,
        )
        self.channel = CommandChannel(base_url=base_url, timeout=timeout, client=self.client)

        output_dir = config.get_output_dir()
        self.journal = RecordingLogger(config.get_log_path(output_dir))
        s3_config = config.get_s3_config()
        self.s3_uploader = S3Uploader.from_dict(s3_config) if s3_config else None
        self.reporter = RecordingReporter(
            self.identity,
            dashboard=self.dashboard,
            location=StaticLocationProvider.from_dict(config.get_section('location')),
            journal=self.journal,
            s3_uploader=self.s3_uploader,
        )

        self.capability = capability or MicrophoneCapability(
            output_dir=str(output_dir),
            timestamp_format=config.get('timestamp_format'),
            datetime_format=config.get('datetime_format'),
        )
        self.engine = RecordingEngine(
            self.capability,
            options=build_quality_options(config),
            profile=CaptureProfile(
                input_device=config.get('input_device'),
                gain_factor=float(config.get('gain') or 1.0),
            ),
            on_artifact=self.reporter.handle_artifact,
            journal=self.journal,
        )
        self.dispatcher = CommandDispatcher(
            self.engine, reporter=self.reporter, default_duration=int(config.get('default_duration')),
        )
        self.poller = CommandPoller(
            self.identity, self.channel, self.dispatcher, interval=float(server['poll_interval']),
        )
        self.interval_recorder: Optional[IntervalRecorder] = None

    def activate(self) -> str:
        """Resolve the device id and hand it to the components that label output."""
        device_id = self.identity.resolve()
        self.engine.set_device_id(device_id)
        if isinstance(self.capability, MicrophoneCapability):
            self.capability.device_label = device_id
        return device_id

    async def start(self, interval_minutes: Optional[float] = None, interval_duration: int = 30) -> None:
        """Start command polling and, optionally, interval recording."""
        device_id = self.activate()
        logger.info(f"Agent starting as {device_id} against {self.dashboard.base_url}")
        await self.poller.start()
        if interval_minutes:
            self.interval_recorder = IntervalRecorder(
                self.dispatcher, interval_seconds=interval_minutes * 60, duration_seconds=interval_duration,
            )
            self.interval_recorder.start()

    async def run(self, interval_minutes: Optional[float] = None, interval_duration: int = 30) -> None:
        """Start the agent and keep it running until cancelled."""
        await self.start(interval_minutes, interval_duration)
        try:
            await asyncio.Event().wait()
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Stop polling, timers and recording, then close network clients."""
        logger.info("Shutting down agent")
        await self.poller.stop()
        if self.interval_recorder is not None:
            await self.interval_recorder.stop()
            self.interval_recorder = None
        await self.dispatcher.shutdown()
        if self.engine.has_handle:
            await self.engine.stop()
        await self.channel.aclose()
        await self.dashboard.aclose()
        if self._owns_client:
            await self.client.aclose()
