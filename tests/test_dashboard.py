"""Dashboard client, artifact handoff and location tests for dashrec."""

import json

import httpx
import pytest

from dashrec.core.dashboard import DashboardClient, event_source
from dashrec.core.identity import DEVICE_ID_KEY, DeviceIdentity
from dashrec.core.handoff import RecordingReporter
from dashrec.core.location import (
    UNKNOWN_LOCATION,
    Coordinates,
    LocationProvider,
    StaticLocationProvider,
    fetch_location,
)
from dashrec.core.log import RecordingLogger
from dashrec.core.recording import Artifact, RecordingMode, RecordingSession, TriggerSource

BASE_URL = "http://dashboard.test"


class Recorder:
    """MockTransport handler keeping every request."""

    def __init__(self, responses=None):
        self.requests = []
        self.responses = responses or {}

    def __call__(self, request):
        self.requests.append(request)
        response = self.responses.get((request.method, request.url.path))
        if callable(response):
            return response(request)
        if response is not None:
            return response
        return httpx.Response(200, json={"ok": True})

    def json_bodies(self, path):
        return [json.loads(r.content) for r in self.requests if r.url.path == path]


@pytest.fixture
def identity(store, metadata):
    return DeviceIdentity(store, metadata_provider=lambda: metadata)


def _dashboard(identity, handler):
    client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return DashboardClient(identity, base_url=BASE_URL, platform_tag="android", client=client), client


def test_event_source():
    assert event_source("recording_started") == "recording"
    assert event_source("background_location") == "background"
    assert event_source("app_opened") == "foreground"


@pytest.mark.asyncio
async def test_send_event_payload(identity):
    handler = Recorder()
    dashboard, client = _dashboard(identity, handler)

    ok = await dashboard.send_event("recording_started", 52.37, 4.89, {"trigger": "dashboard"})
    await client.aclose()

    assert ok is True
    body = handler.json_bodies("/api/location")[0]
    assert body["phone_id"] == "Acme_Corp_Model_1_android"
    assert body["event"] == "recording_started"
    assert body["source"] == "recording"
    assert body["platform"] == "android"
    assert body["latitude"] == 52.37
    assert body["longitude"] == 4.89
    assert body["trigger"] == "dashboard"
    assert "timestamp" in body


@pytest.mark.asyncio
async def test_send_event_failures_return_false(identity):
    handler = Recorder({("POST", "/api/location"): httpx.Response(500, text="boom")})
    dashboard, client = _dashboard(identity, handler)
    assert await dashboard.send_event("recording_started", 0.0, 0.0) is False
    await client.aclose()

    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    dashboard, client = _dashboard(identity, refuse)
    assert await dashboard.send_event("recording_started", 0.0, 0.0) is False
    await client.aclose()


@pytest.mark.asyncio
async def test_upload_audio_multipart(identity, tmp_path):
    audio_file = tmp_path / "251019143022.mp3"
    audio_file.write_bytes(b"ID3fake-mp3-data")
    handler = Recorder()
    dashboard, client = _dashboard(identity, handler)

    ok = await dashboard.upload_audio("Acme_Corp_Model_1_android", str(audio_file))
    await client.aclose()

    assert ok is True
    request = handler.requests[0]
    assert request.method == "POST"
    assert request.url.path == "/api/upload/audio/Acme_Corp_Model_1_android"
    assert request.headers["content-type"].startswith("multipart/form-data")
    assert b'name="file"; filename="251019143022.mp3"' in request.content
    assert b"ID3fake-mp3-data" in request.content
    assert b'name="platform"' in request.content


@pytest.mark.asyncio
async def test_upload_audio_missing_file(identity, tmp_path):
    handler = Recorder()
    dashboard, client = _dashboard(identity, handler)
    assert await dashboard.upload_audio("dev", str(tmp_path / "missing.mp3")) is False
    assert handler.requests == []
    await client.aclose()


@pytest.mark.asyncio
async def test_register_success_persists_id(identity, store, metadata):
    handler = Recorder({("POST", "/api/register"): httpx.Response(200, json={"message": "Welcome"})})
    dashboard, client = _dashboard(identity, handler)

    result = await dashboard.register(metadata)
    await client.aclose()

    assert result.success
    assert result.device_id == "Acme_Corp_Model_1_android"
    assert result.message == "Welcome"
    assert store.get(DEVICE_ID_KEY) == "Acme_Corp_Model_1_android"
    body = handler.json_bodies("/api/register")[0]
    assert body["phone_id"] == "Acme_Corp_Model_1_android"
    assert body["platform"] == "android"
    assert body["device_info"]["manufacturer"] == "Acme Corp."


@pytest.mark.asyncio
async def test_register_failure_reports_error(identity, metadata):
    handler = Recorder({("POST", "/api/register"): httpx.Response(400, json={"error": "Duplicate device"})})
    dashboard, client = _dashboard(identity, handler)

    result = await dashboard.register(metadata)
    await client.aclose()

    assert not result.success
    assert result.error == "Duplicate device"
    assert result.status_code == 400


@pytest.mark.asyncio
async def test_check_connectivity_ok(identity):
    handler = Recorder({
        ("GET", "/api/health"): httpx.Response(200, json={"status": "ok"}),
        ("GET", "/api/command/dev"): httpx.Response(200, json={"hasCommand": False}),
    })
    dashboard, client = _dashboard(identity, handler)

    report = await dashboard.check_connectivity("dev")
    await client.aclose()

    assert report.success
    assert report.health_ok
    assert report.command_status == 200


@pytest.mark.asyncio
async def test_check_connectivity_html_route(identity):
    handler = Recorder({
        ("GET", "/api/health"): httpx.Response(200, json={"status": "ok"}),
        ("GET", "/api/command/dev"): httpx.Response(404, text="<!DOCTYPE html><html></html>"),
    })
    dashboard, client = _dashboard(identity, handler)

    report = await dashboard.check_connectivity("dev")
    await client.aclose()

    assert not report.success
    assert report.command_is_html
    assert "not registered" in report.error


@pytest.mark.asyncio
async def test_check_connectivity_unhealthy(identity):
    handler = Recorder({("GET", "/api/health"): httpx.Response(503)})
    dashboard, client = _dashboard(identity, handler)

    report = await dashboard.check_connectivity("dev")
    await client.aclose()

    assert not report.success
    assert not report.health_ok
    assert len(handler.requests) == 1


# ---------------------------------------------------------------------------
# Location
# ---------------------------------------------------------------------------

def test_static_location_validates_range():
    with pytest.raises(ValueError):
        StaticLocationProvider(latitude=91.0)
    with pytest.raises(ValueError):
        StaticLocationProvider(longitude=-181.0)


@pytest.mark.asyncio
async def test_fetch_location_fallbacks():
    class Broken(LocationProvider):
        async def get_current_coordinates(self):
            raise RuntimeError("no fix")

    assert await fetch_location(None) == UNKNOWN_LOCATION
    assert await fetch_location(Broken()) == Coordinates(0.0, 0.0)
    provider = StaticLocationProvider.from_dict({"latitude": 52.37, "longitude": 4.89})
    assert await fetch_location(provider) == Coordinates(52.37, 4.89)


# ---------------------------------------------------------------------------
# RecordingReporter
# ---------------------------------------------------------------------------

class FakeUploader:
    bucket = "recordings"

    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def upload_artifact(self, artifact, device_id=None):
        self.calls.append((artifact.uri, artifact.session.session_id, device_id))
        if self.fail:
            raise RuntimeError("bucket gone")
        return f"{device_id}/{artifact.session.session_id}/file.mp3"


def _artifact(tmp_path):
    from datetime import datetime

    audio_file = tmp_path / "251019143022.mp3"
    audio_file.write_bytes(b"fake")
    session = RecordingSession(
        session_id="251019143022_abc123",
        handle=None,
        started_at=datetime(2025, 10, 19, 14, 30, 22),
        trigger_source=TriggerSource.DASHBOARD,
        mode=RecordingMode.TIMED,
        planned_duration_seconds=5,
    )
    return Artifact(uri=str(audio_file), duration_seconds=5.0, session=session)


@pytest.mark.asyncio
async def test_reporter_hands_off_artifact(identity, tmp_path):
    handler = Recorder()
    dashboard, client = _dashboard(identity, handler)
    journal = RecordingLogger(tmp_path / "recordings.jsonl")
    uploader = FakeUploader()
    reporter = RecordingReporter(
        identity,
        dashboard=dashboard,
        location=StaticLocationProvider(52.37, 4.89),
        journal=journal,
        s3_uploader=uploader,
    )
    artifact = _artifact(tmp_path)

    await reporter.handle_artifact(artifact)
    await client.aclose()

    event = handler.json_bodies("/api/location")[0]
    assert event["event"] == "recording_completed"
    assert event["uri"] == artifact.uri
    assert event["latitude"] == 52.37
    assert any(r.url.path.startswith("/api/upload/audio/") for r in handler.requests)
    assert uploader.calls == [(artifact.uri, "251019143022_abc123", "Acme_Corp_Model_1_android")]

    record = json.loads(journal.path.read_text().splitlines()[0])
    assert record["event"] == "end"
    assert record["session_id"] == "251019143022_abc123"
    assert record["uploaded"] is True
    assert record["latitude"] == 52.37
    assert record["s3_object_key"] == "Acme_Corp_Model_1_android/251019143022_abc123/file.mp3"


@pytest.mark.asyncio
async def test_reporter_survives_failures(identity, tmp_path, log_messages):
    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    dashboard, client = _dashboard(identity, refuse)
    journal = RecordingLogger(tmp_path / "recordings.jsonl")
    reporter = RecordingReporter(
        identity, dashboard=dashboard, journal=journal, s3_uploader=FakeUploader(fail=True),
    )

    await reporter.handle_artifact(_artifact(tmp_path))
    await client.aclose()

    record = json.loads(journal.path.read_text().splitlines()[0])
    assert record["uploaded"] is False
    assert record["s3_object_key"] is None
    assert record["latitude"] == 0.0
    assert any("bucket gone" in m for _, m in log_messages)


@pytest.mark.asyncio
async def test_reporter_notify_without_dashboard(identity):
    reporter = RecordingReporter(identity)
    assert await reporter.notify("recording_started", {"trigger": "manual"}) is False
