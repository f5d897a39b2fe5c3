"""Audio capture capability for dashrec.

The :class:`~dashrec.core.recording.RecordingEngine` drives capture through
the small asynchronous interface of :class:`RecordingCapability`::

    granted = await capability.request_permission()
    await capability.configure(profile)
    handle = await capability.create()
    await capability.prepare(handle, options)
    await capability.start(handle)
    status = await capability.get_status(handle)       # is_active, duration_ms
    result = await capability.stop_and_release(handle) # uri, duration_ms

:class:`MicrophoneCapability` implements it on top of PyAudio. Audio is
collected in the PortAudio callback thread and encoded to disk when the
handle is released: MP3 at a constant bitrate through pydub, other formats
(FLAC, OGG, WAV) through soundfile.

Filenames are built from ``timestamp_format`` / ``datetime_format`` like the
recording journal's session ids::

    MicrophoneCapability(timestamp_format='{ts}_{device_id}', device_label='Acme_Model1_ios')
    # files -> audio/231015143022_Acme_Model1_ios.mp3
"""

import asyncio
import datetime
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import soundfile as sf
from loguru import logger

from .config import (
    BIT_RATE, CHANNELS, DATETIME_FORMAT, FILE_FORMAT, FRAMES_PER_BUFFER,
    OUTPUT_DIR, SAMPLE_RATE, TIMESTAMP_FORMAT,
)
from .errors import StaleResourceFailure
from .processing import apply_gain, calculate_db_level, detect_driver_type

SOUNDFILE_SUBTYPES = {
    'flac': 'PCM_16',
    'wav': 'PCM_16',
    'ogg': 'VORBIS',
}


@dataclass
class CaptureProfile:
    """Capture mode applied before a handle is created."""

    input_device: Optional[int] = None
    gain_factor: float = 1.0


@dataclass
class QualityOptions:
    """Encoding profile of a recording."""

    sample_rate: int = SAMPLE_RATE
    channels: int = CHANNELS
    bit_rate: int = BIT_RATE
    file_format: str = FILE_FORMAT
    frames_per_buffer: int = FRAMES_PER_BUFFER


@dataclass
class CaptureStatus:
    """Live status of a capture handle."""

    is_active: bool
    duration_ms: int = 0
    level_db: float = 0.0


@dataclass
class CaptureResult:
    """Outcome of releasing a capture handle."""

    uri: Optional[str]
    duration_ms: int = 0


def describe_quality(options: QualityOptions) -> Dict[str, str]:
    """Return a human-readable summary of *options*."""
    lossy = options.file_format.lower() in ('mp3', 'ogg')
    return {
        'format': options.file_format.upper(),
        'sample_rate': f"{options.sample_rate / 1000:g} kHz",
        'bit_rate': f"{options.bit_rate // 1000} kbps" if lossy else 'lossless',
        'channels': 'Mono' if options.channels == 1 else f"{options.channels} channels",
    }


class RecordingCapability:
    """Interface of a platform recording capability.

    Implementations own the platform resources behind each handle; the engine
    only keeps the handle reference.
    """

    async def request_permission(self) -> bool:
        raise NotImplementedError

    async def configure(self, profile: CaptureProfile) -> None:
        raise NotImplementedError

    async def create(self) -> Any:
        raise NotImplementedError

    async def prepare(self, handle: Any, options: QualityOptions) -> None:
        raise NotImplementedError

    async def start(self, handle: Any) -> None:
        raise NotImplementedError

    async def get_status(self, handle: Any) -> CaptureStatus:
        raise NotImplementedError

    async def stop_and_release(self, handle: Any) -> CaptureResult:
        raise NotImplementedError


class CaptureHandle:
    """One PyAudio input stream and the frames it has captured."""

    def __init__(self, handle_id: str, path: Path, gain_factor: float = 1.0) -> None:
        self.handle_id = handle_id
        self.path = path
        self.options: Optional[QualityOptions] = None
        self.released = False
        self._gain_factor = gain_factor
        self._audio_interface = None
        self._audio_stream = None
        self._frames: List[bytes] = []
        self._frame_count = 0
        self._level_db = 0.0
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"CaptureHandle({self.handle_id!r})"

    @property
    def duration_ms(self) -> int:
        if not self.options:
            return 0
        with self._lock:
            return int(self._frame_count * 1000 / self.options.sample_rate)

    @property
    def level_db(self) -> float:
        return self._level_db

    def open(self, options: QualityOptions, input_device: Optional[int]) -> None:
        """Open the input stream without starting it."""
        import pyaudio

        self.options = options
        self._audio_interface = pyaudio.PyAudio()
        self._audio_stream = self._audio_interface.open(
            format=pyaudio.paInt16,
            channels=options.channels,
            rate=options.sample_rate,
            input=True,
            input_device_index=input_device,
            frames_per_buffer=options.frames_per_buffer,
            stream_callback=self._fill_buffer,
            start=False,
        )

    def start(self) -> None:
        if self._audio_stream is None:
            raise StaleResourceFailure(f"{self.handle_id} has no open stream")
        self._audio_stream.start_stream()

    def is_active(self) -> bool:
        if self.released or self._audio_stream is None:
            raise StaleResourceFailure(f"{self.handle_id} has been released")
        return bool(self._audio_stream.is_active())

    def close(self) -> List[bytes]:
        """Stop and close the stream, returning the captured frames."""
        self.released = True
        try:
            if self._audio_stream is not None:
                if self._audio_stream.is_active():
                    self._audio_stream.stop_stream()
                self._audio_stream.close()
        finally:
            if self._audio_interface is not None:
                self._audio_interface.terminate()
            self._audio_stream = None
            self._audio_interface = None

        with self._lock:
            frames = self._frames
            self._frames = []
        return frames

    def _fill_buffer(
        self,
        in_data: bytes,
        frame_count: int,
        time_info: object,
        status_flags: object,
    ) -> tuple:
        """Collect data from the audio stream into the buffer.

        Args:
            in_data: The audio data as a bytes object
            frame_count: The number of frames captured
            time_info: The time information
            status_flags: The status flags

        Returns:
            Tuple of (data, status_flag)
        """
        import pyaudio

        processed_data = apply_gain(in_data, self._gain_factor)
        self._level_db = calculate_db_level(processed_data)
        with self._lock:
            self._frames.append(processed_data)
            self._frame_count += frame_count
        return None, pyaudio.paContinue


class MicrophoneCapability(RecordingCapability):
    """PyAudio microphone capture writing one file per handle."""

    def __init__(
        self,
        output_dir: str = OUTPUT_DIR,
        timestamp_format: str = TIMESTAMP_FORMAT,
        datetime_format: str = DATETIME_FORMAT,
        device_label: Optional[str] = None,
    ) -> None:
        """Initialize the capability.

        Args:
            output_dir: Directory receiving the recorded files
            timestamp_format: Python format string for file stems.
                Placeholders: ``{ts}`` (datetime string), ``{device_id}``.
            datetime_format: strftime format applied to ``{ts}``
            device_label: Value of the ``{device_id}`` placeholder
        """
        self._output_dir = Path(output_dir)
        self._timestamp_format = timestamp_format
        self._datetime_format = datetime_format
        self._device_label = device_label or 'default'
        self._profile = CaptureProfile()

    @property
    def device_label(self) -> str:
        return self._device_label

    @device_label.setter
    def device_label(self, value: str) -> None:
        self._device_label = value

    def _build_timestamp(self, dt: Optional[datetime.datetime] = None) -> str:
        """Build a file stem from the configured format."""
        if dt is None:
            dt = datetime.datetime.now()
        ts = dt.strftime(self._datetime_format)
        return self._timestamp_format.format(ts=ts, device_id=self._device_label)

    async def request_permission(self) -> bool:
        return await asyncio.to_thread(self._has_input_device)

    def _has_input_device(self) -> bool:
        import pyaudio

        audio = pyaudio.PyAudio()
        try:
            if self._profile.input_device is None:
                audio.get_default_input_device_info()
                return True
            info = audio.get_device_info_by_index(self._profile.input_device)
            return info.get('maxInputChannels', 0) > 0
        except (IOError, OSError) as error:
            logger.warning(f"No usable input device: {error}")
            return False
        finally:
            audio.terminate()

    async def configure(self, profile: CaptureProfile) -> None:
        self._profile = profile

    async def create(self) -> CaptureHandle:
        self._output_dir.mkdir(parents=True, exist_ok=True)
        stem = self._build_timestamp()
        path = self._output_dir / stem
        suffix = 1
        while any(path.parent.glob(f"{path.name}.*")):
            suffix += 1
            path = self._output_dir / f"{stem}_{suffix:02}"
        return CaptureHandle(handle_id=path.name, path=path, gain_factor=self._profile.gain_factor)

    async def prepare(self, handle: CaptureHandle, options: QualityOptions) -> None:
        handle.path = handle.path.with_suffix(f".{options.file_format.lower()}")
        await asyncio.to_thread(handle.open, options, self._profile.input_device)

    async def start(self, handle: CaptureHandle) -> None:
        await asyncio.to_thread(handle.start)

    async def get_status(self, handle: CaptureHandle) -> CaptureStatus:
        return CaptureStatus(
            is_active=handle.is_active(),
            duration_ms=handle.duration_ms,
            level_db=handle.level_db,
        )

    async def stop_and_release(self, handle: CaptureHandle) -> CaptureResult:
        duration_ms = handle.duration_ms
        frames = await asyncio.to_thread(handle.close)
        if not frames or handle.options is None:
            logger.warning(f"No audio captured for {handle.handle_id}")
            return CaptureResult(uri=None, duration_ms=duration_ms)

        await asyncio.to_thread(save_frames, handle.path, frames, handle.options)
        logger.info(f"Saved: {handle.path} ({len(frames)} buffers, {duration_ms / 1000:.1f}s)")
        return CaptureResult(uri=str(handle.path), duration_ms=duration_ms)


def save_frames(path: Path, frames: List[bytes], options: QualityOptions) -> None:
    """Encode int16 frames to *path* in ``options.file_format``.

    Raises:
        ValueError: If the format is not supported
    """
    file_format = options.file_format.lower()
    audio_data = np.frombuffer(b''.join(frames), dtype=np.int16)

    if file_format == 'mp3':
        _save_mp3(path, audio_data, options)
        return

    subtype = SOUNDFILE_SUBTYPES.get(file_format)
    if subtype is None:
        raise ValueError(f"Unsupported audio format: {options.file_format}")

    # Normalize to float32 for soundfile (-1.0 to 1.0 range)
    audio_float = audio_data.astype(np.float32) / 32768.0
    if options.channels > 1:
        audio_float = audio_float.reshape(-1, options.channels)
    sf.write(str(path), audio_float, options.sample_rate, subtype=subtype)


def _save_mp3(path: Path, audio_data: np.ndarray, options: QualityOptions) -> None:
    """Save int16 audio as a constant-bitrate MP3 (requires ffmpeg for pydub)."""
    from pydub import AudioSegment

    audio_segment = AudioSegment(
        data=audio_data.tobytes(),
        sample_width=2,  # 16-bit = 2 bytes
        frame_rate=options.sample_rate,
        channels=options.channels,
    )
    audio_segment.export(str(path), format="mp3", bitrate=f"{options.bit_rate // 1000}k")


def list_input_devices(driver_filter: Optional[str] = None) -> List[Dict[str, Any]]:
    """List available input audio devices.

    Args:
        driver_filter: Optional driver type to filter by ('pulse', 'alsa', 'jack', 'usb', 'default')

    Returns:
        List of dicts with keys: id, name, driver, channels, rate, is_default
    """
    import pyaudio

    audio = pyaudio.PyAudio()
    try:
        try:
            default_device_id = int(audio.get_default_input_device_info()['index'])
        except (IOError, OSError):
            default_device_id = -1

        devices = []
        for i in range(audio.get_device_count()):
            device_info = audio.get_device_info_by_index(i)
            if device_info.get('maxInputChannels', 0) <= 0:
                continue
            device_name = device_info.get('name', 'Unknown')
            driver_type = detect_driver_type(device_name)
            if driver_filter and driver_type != driver_filter.lower():
                continue
            devices.append({
                'id': i,
                'name': device_name,
                'driver': driver_type,
                'channels': device_info.get('maxInputChannels', 0),
                'rate': int(device_info.get('defaultSampleRate', 0)),
                'is_default': i == default_device_id,
            })
        return devices
    finally:
        audio.terminate()
