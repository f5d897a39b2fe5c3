"""Core business logic for dashrec."""

from .agent import Agent
from .capture import CaptureProfile, MicrophoneCapability, QualityOptions, RecordingCapability
from .channel import CommandChannel
from .commands import NoCommand, StartCommand, StopCommand, UnknownCommand, parse_command
from .config import AppConfig
from .dashboard import DashboardClient
from .dispatcher import CommandDispatcher
from .handoff import RecordingReporter
from .identity import DeviceIdentity
from .log import RecordingLogger
from .poller import CommandPoller
from .processing import apply_gain, calculate_db_level, detect_driver_type
from .recording import RecordingEngine, StartResult, TriggerSource
from .s3_upload import S3Uploader, build_object_key
from .storage import KeyValueStore

__all__ = [
    "Agent",
    "AppConfig",
    "CaptureProfile",
    "CommandChannel",
    "CommandDispatcher",
    "CommandPoller",
    "DashboardClient",
    "DeviceIdentity",
    "KeyValueStore",
    "MicrophoneCapability",
    "NoCommand",
    "QualityOptions",
    "RecordingCapability",
    "RecordingEngine",
    "RecordingLogger",
    "RecordingReporter",
    "S3Uploader",
    "StartCommand",
    "StartResult",
    "StopCommand",
    "TriggerSource",
    "UnknownCommand",
    "apply_gain",
    "build_object_key",
    "calculate_db_level",
    "detect_driver_type",
    "parse_command",
]
