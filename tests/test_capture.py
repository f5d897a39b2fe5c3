"""PyAudio capture tests for dashrec, run against an in-memory pyaudio."""

import sys
import types

import numpy as np
import pytest
import soundfile as sf

from dashrec.core.capture import (
    CaptureProfile,
    MicrophoneCapability,
    QualityOptions,
    list_input_devices,
)
from dashrec.core.errors import StaleResourceFailure
from dashrec.core.recording import RecordingEngine


class FakeStream:
    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.active = False
        self.closed = False

    def start_stream(self):
        self.active = True

    def stop_stream(self):
        self.active = False

    def is_active(self):
        return self.active

    def close(self):
        self.closed = True


class FakePyAudio:
    instances = []
    devices = [
        {"name": "HDMI Output", "maxInputChannels": 0, "defaultSampleRate": 48000.0},
        {"name": "USB PnP Audio Device", "maxInputChannels": 1, "defaultSampleRate": 44100.0},
        {"name": "pulse", "maxInputChannels": 32, "defaultSampleRate": 44100.0},
    ]
    default_index = 1

    def __init__(self):
        self.streams = []
        self.terminated = False
        FakePyAudio.instances.append(self)

    def open(self, **kwargs):
        stream = FakeStream(**kwargs)
        self.streams.append(stream)
        return stream

    def terminate(self):
        self.terminated = True

    def get_device_count(self):
        return len(self.devices)

    def get_device_info_by_index(self, index):
        return self.devices[index]

    def get_default_input_device_info(self):
        if self.default_index is None:
            raise OSError("No Default Input Device Available")
        return {"index": self.default_index, **self.devices[self.default_index]}


@pytest.fixture
def pyaudio_module(monkeypatch):
    module = types.ModuleType("pyaudio")
    module.paInt16 = 8
    module.paContinue = 0
    module.PyAudio = FakePyAudio
    FakePyAudio.instances = []
    monkeypatch.setattr(FakePyAudio, "default_index", 1)
    monkeypatch.setitem(sys.modules, "pyaudio", module)
    return module


@pytest.fixture
def microphone(tmp_path):
    return MicrophoneCapability(
        output_dir=str(tmp_path / "audio"),
        timestamp_format="{ts}_{device_id}",
        datetime_format="rec",
        device_label="Acme_Model_1_linux",
    )


def _feed(handle, buffers=10, frames=1600):
    chunk = (np.ones(frames, dtype=np.int16) * 1000).tobytes()
    for _ in range(buffers):
        handle._fill_buffer(chunk, frames, None, 0)


@pytest.mark.asyncio
async def test_create_names_files_and_avoids_collisions(microphone, tmp_path):
    first = await microphone.create()
    assert first.path == tmp_path / "audio" / "rec_Acme_Model_1_linux"

    first.path.with_suffix(".mp3").write_bytes(b"taken")
    second = await microphone.create()
    assert second.path.name == "rec_Acme_Model_1_linux_02"

    microphone.device_label = "other"
    assert (await microphone.create()).path.name == "rec_other"


@pytest.mark.asyncio
async def test_prepare_opens_stream_without_starting(microphone, pyaudio_module):
    await microphone.configure(CaptureProfile(input_device=1))
    handle = await microphone.create()
    options = QualityOptions(file_format="wav", sample_rate=16000)

    await microphone.prepare(handle, options)

    stream = FakePyAudio.instances[0].streams[0]
    assert handle.path.suffix == ".wav"
    assert stream.kwargs["format"] == pyaudio_module.paInt16
    assert stream.kwargs["rate"] == 16000
    assert stream.kwargs["channels"] == 1
    assert stream.kwargs["input_device_index"] == 1
    assert stream.kwargs["start"] is False
    assert (await microphone.get_status(handle)).is_active is False


@pytest.mark.asyncio
async def test_capture_lifecycle_writes_file(microphone, pyaudio_module):
    handle = await microphone.create()
    await microphone.prepare(handle, QualityOptions(file_format="wav", sample_rate=16000))
    await microphone.start(handle)
    _feed(handle)

    status = await microphone.get_status(handle)
    assert status.is_active
    assert status.duration_ms == 1000
    assert status.level_db > 0

    result = await microphone.stop_and_release(handle)

    assert result.uri == str(handle.path)
    assert result.duration_ms == 1000
    info = sf.info(result.uri)
    assert info.samplerate == 16000
    assert info.frames == 16000
    assert FakePyAudio.instances[0].terminated
    assert FakePyAudio.instances[0].streams[0].closed
    with pytest.raises(StaleResourceFailure):
        await microphone.get_status(handle)


@pytest.mark.asyncio
async def test_release_without_audio_returns_no_file(microphone, pyaudio_module):
    handle = await microphone.create()
    await microphone.prepare(handle, QualityOptions(file_format="wav"))
    await microphone.start(handle)

    result = await microphone.stop_and_release(handle)

    assert result.uri is None
    assert not handle.path.exists()


@pytest.mark.asyncio
async def test_start_before_prepare_is_stale(microphone):
    handle = await microphone.create()
    with pytest.raises(StaleResourceFailure):
        await microphone.start(handle)


@pytest.mark.asyncio
async def test_request_permission(microphone, pyaudio_module, monkeypatch):
    assert await microphone.request_permission() is True

    monkeypatch.setattr(FakePyAudio, "default_index", None)
    assert await microphone.request_permission() is False

    await microphone.configure(CaptureProfile(input_device=0))
    assert await microphone.request_permission() is False
    assert all(audio.terminated for audio in FakePyAudio.instances)


@pytest.mark.asyncio
async def test_engine_records_through_microphone(microphone, pyaudio_module):
    artifacts = []

    async def keep(artifact):
        artifacts.append(artifact)

    engine = RecordingEngine(
        microphone, options=QualityOptions(file_format="wav", sample_rate=16000), on_artifact=keep,
    )

    result = await engine.start()
    assert result.success
    _feed(result.session.handle)

    artifact = await engine.stop()

    assert artifact.uri.endswith("rec_Acme_Model_1_linux.wav")
    assert artifact.duration_seconds == 1.0
    assert artifacts == [artifact]


def test_list_input_devices(pyaudio_module):
    devices = list_input_devices()

    assert [d["name"] for d in devices] == ["USB PnP Audio Device", "pulse"]
    assert devices[0]["is_default"] is True
    assert devices[0]["driver"] == "usb"
    assert devices[0]["rate"] == 44100
    assert [d["id"] for d in list_input_devices(driver_filter="pulse")] == [2]
