"""Dashboard HTTP client for dashrec.

Endpoints used besides the command queue (see :mod:`dashrec.core.channel`):

==============================  =================================================
``POST /api/location``          status and location events (``recording_started``,
                                ``recording_completed``, ...)
``POST /api/upload/audio/{id}`` multipart upload of a recorded file
``POST /api/register``          device registration
``GET  /api/health``            liveness check
==============================  =================================================

Nothing in here raises into the recording flow: transport problems are
logged and reported as ``False`` or as result fields.
"""

import asyncio
import mimetypes
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx
from loguru import logger

from .channel import CommandChannel
from .commands import is_html
from .config import BASE_URL, REQUEST_TIMEOUT
from .errors import TransportFailure
from .identity import DeviceIdentity, DeviceMetadata

CONNECTIVITY_TEST_DEVICE = 'Test_Device_Connectivity'


@dataclass
class RegistrationResult:
    """Outcome of :meth:`DashboardClient.register`."""

    success: bool
    device_id: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None
    status_code: int = 0


@dataclass
class ConnectivityReport:
    """Outcome of :meth:`DashboardClient.check_connectivity`."""

    success: bool
    health_ok: bool = False
    command_status: Optional[int] = None
    command_is_html: bool = False
    error: Optional[str] = None


def event_source(event_type: str) -> str:
    """Return the dashboard ``source`` field for *event_type*."""
    if 'background' in event_type:
        return 'background'
    if 'recording' in event_type:
        return 'recording'
    return 'foreground'


class DashboardClient:
    """Client for the dashboard's event, upload and registration endpoints."""

    def __init__(
        self,
        identity: DeviceIdentity,
        base_url: str = BASE_URL,
        timeout: float = REQUEST_TIMEOUT,
        platform_tag: str = 'linux',
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize the client.

        Args:
            identity: Resolver of the ``phone_id`` sent with every event
            base_url: Dashboard root URL
            timeout: Per-request timeout in seconds
            platform_tag: ``platform`` field sent with events and uploads
            client: Shared HTTP client; one is created (and owned) when omitted
        """
        self._identity = identity
        self._base_url = base_url.rstrip('/')
        self._platform_tag = platform_tag
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=self._base_url, timeout=timeout)

    @property
    def base_url(self) -> str:
        return self._base_url

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request, turning transport errors into :class:`TransportFailure`."""
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as error:
            raise TransportFailure(f"{method} {path} timed out") from error
        except httpx.HTTPError as error:
            raise TransportFailure(f"{method} {path} failed: {error}") from error

    # ------------------------------------------------------------------
    # Events and uploads
    # ------------------------------------------------------------------

    async def send_event(
        self,
        event_type: str,
        latitude: float,
        longitude: float,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Post a status/location event.

        Args:
            event_type: Event name, e.g. ``recording_started``
            latitude: Latitude of the agent
            longitude: Longitude of the agent
            metadata: Extra fields merged into the payload

        Returns:
            True if the dashboard accepted the event
        """
        payload = {
            'phone_id': self._identity.resolve(),
            'latitude': latitude,
            'longitude': longitude,
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'event': event_type,
            'source': event_source(event_type),
            'platform': self._platform_tag,
        }
        payload.update(metadata or {})

        try:
            response = await self._request(
                'POST', '/api/location', json=payload, headers={'Accept': 'application/json'},
            )
        except TransportFailure as error:
            logger.warning(f"Failed to send event '{event_type}': {error}")
            return False

        if response.is_error:
            logger.error(f"Event POST failed: {response.status_code} {response.text[:200]}")
            return False
        logger.debug(f"Event '{event_type}' sent ({latitude}, {longitude})")
        return True

    async def upload_audio(self, device_id: str, file_path: str) -> bool:
        """Upload a recorded file for *device_id*.

        Args:
            device_id: Device identifier used in the upload path
            file_path: Local file to upload

        Returns:
            True if the upload succeeded
        """
        path = Path(file_path)
        try:
            content = await asyncio.to_thread(path.read_bytes)
        except OSError as error:
            logger.error(f"Cannot read {path} for upload: {error}")
            return False

        mime_type = mimetypes.guess_type(path.name)[0] or 'application/octet-stream'
        endpoint = f"/api/upload/audio/{quote(device_id, safe='')}"
        try:
            response = await self._request(
                'POST',
                endpoint,
                files={'file': (path.name, content, mime_type)},
                data={'platform': self._platform_tag},
                headers={'Accept': 'application/json'},
            )
        except TransportFailure as error:
            logger.warning(f"Audio upload failed for {path}: {error}")
            return False

        if response.is_error:
            logger.error(f"Audio upload failed: {response.status_code} {response.text[:200]}")
            return False
        logger.info(f"Uploaded {path.name} to dashboard")
        return True

    # ------------------------------------------------------------------
    # Registration and diagnostics
    # ------------------------------------------------------------------

    async def register(self, metadata: DeviceMetadata) -> RegistrationResult:
        """Register this device and persist its identifier on success.

        Args:
            metadata: Device description sent to the dashboard

        Returns:
            Registration outcome
        """
        device_id = self._identity.resolve()
        now = datetime.now(timezone.utc)
        payload = {
            'phone_id': device_id,
            'device_name': metadata.device_name or device_id,
            'device_info': metadata.to_dict(),
            'platform': metadata.platform.value,
            'registration_timestamp': now.isoformat(),
        }
        try:
            response = await self._request(
                'POST', '/api/register', json=payload, headers={'Accept': 'application/json'},
            )
        except TransportFailure as error:
            logger.error(f"Registration failed: {error}")
            return RegistrationResult(
                success=False,
                device_id=device_id,
                error=f"Cannot reach server at {self._base_url}: {error}",
            )

        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = {'error': 'Invalid server response - not JSON'}
        if not isinstance(data, dict):
            data = {}

        if response.status_code != 200:
            error = data.get('error') or data.get('message') or f"Server returned {response.status_code}"
            logger.error(f"Registration failed: {error}")
            return RegistrationResult(
                success=False, device_id=device_id, error=error, status_code=response.status_code,
            )

        try:
            self._identity.remember(device_id)
        except OSError as error:
            logger.error(f"Failed to store device ID during registration: {error}")
        logger.info(f"Device registered: {device_id}")
        return RegistrationResult(
            success=True,
            device_id=device_id,
            message=data.get('message') or 'Device registered successfully',
            status_code=response.status_code,
        )

    async def check_health(self) -> bool:
        """Return True if ``/api/health`` answers with a success status."""
        try:
            response = await self._request('GET', '/api/health', headers={'Accept': 'application/json'})
        except TransportFailure as error:
            logger.warning(f"Backend health check error: {error}")
            return False
        return response.is_success

    async def check_connectivity(self, device_id: str = CONNECTIVITY_TEST_DEVICE) -> ConnectivityReport:
        """Diagnose why commands might not arrive.

        Checks the health endpoint, then the command endpoint for
        *device_id*. An HTML answer from the command endpoint means the
        dashboard route is not registered.

        Args:
            device_id: Device identifier to query

        Returns:
            Connectivity report
        """
        if not await self.check_health():
            return ConnectivityReport(success=False, error=f"Backend not reachable at {self._base_url}")

        path = CommandChannel.command_path(device_id)
        try:
            response = await self._request('GET', path, headers={'Accept': 'application/json'})
        except TransportFailure as error:
            return ConnectivityReport(success=False, health_ok=True, error=f"Command endpoint error: {error}")

        report = ConnectivityReport(
            success=False,
            health_ok=True,
            command_status=response.status_code,
            command_is_html=is_html(response.text),
        )
        if report.command_is_html:
            report.error = 'Command endpoint not found - backend route not registered'
        elif response.status_code not in (200, 404):
            report.error = f"Command endpoint returned status: {response.status_code}"
        else:
            try:
                response.json()
            except ValueError:
                if response.status_code == 200:
                    report.error = 'Command endpoint returned non-JSON response'
        report.success = report.error is None
        return report

    async def aclose(self) -> None:
        """Close the HTTP client if this object created it."""
        if self._owns_client:
            await self._client.aclose()
