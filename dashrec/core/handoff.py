"""Artifact handoff for finished recordings.

:class:`RecordingReporter` is the receiver of every artifact the engine
produces and of the dispatcher's status events. For each artifact it:

1. tags it with the current location,
2. posts a ``recording_completed`` event,
3. uploads the file to the dashboard,
4. mirrors it to S3 when configured,
5. appends the session-end record to the journal.

Each step is independent; a failing step is logged and the rest still run.
"""

import asyncio
from typing import Any, Dict, Optional

from loguru import logger

from .dashboard import DashboardClient
from .identity import DeviceIdentity
from .location import Coordinates, LocationProvider, fetch_location
from .log import RecordingLogger
from .recording import Artifact
from .s3_upload import S3Uploader


class RecordingReporter:
    """Report status events and hand finished recordings to the dashboard."""

    def __init__(
        self,
        identity: DeviceIdentity,
        dashboard: Optional[DashboardClient] = None,
        location: Optional[LocationProvider] = None,
        journal: Optional[RecordingLogger] = None,
        s3_uploader: Optional[S3Uploader] = None,
    ) -> None:
        self._identity = identity
        self._dashboard = dashboard
        self._location = location
        self._journal = journal
        self._s3_uploader = s3_uploader

    async def notify(self, event_type: str, extra: Optional[Dict[str, Any]] = None) -> bool:
        """Send a status event tagged with the current location."""
        if self._dashboard is None:
            logger.debug(f"No dashboard configured, not sending '{event_type}'")
            return False
        coords = await fetch_location(self._location)
        return await self._dashboard.send_event(event_type, coords.latitude, coords.longitude, extra)

    async def handle_artifact(self, artifact: Artifact) -> None:
        """Tag, upload, mirror and journal a finished recording. Never raises."""
        device_id = self._identity.resolve()
        coords = await fetch_location(self._location)
        logger.info(
            f"Recording saved: {artifact.uri} ({artifact.duration_seconds:.1f}s) "
            f"at {coords.latitude}, {coords.longitude}"
        )

        uploaded = False
        if self._dashboard is not None:
            try:
                await self._dashboard.send_event(
                    'recording_completed',
                    coords.latitude,
                    coords.longitude,
                    {'uri': artifact.uri, 'duration': artifact.duration_seconds},
                )
                uploaded = await self._dashboard.upload_audio(device_id, artifact.uri)
            except Exception as error:
                logger.error(f"Dashboard handoff failed: {error}")

        s3_object_key = await self._mirror(artifact, device_id)
        self._journal_end(artifact, coords, uploaded, s3_object_key)

    async def _mirror(self, artifact: Artifact, device_id: str) -> Optional[str]:
        if self._s3_uploader is None:
            return None
        try:
            object_key = await asyncio.to_thread(self._s3_uploader.upload_artifact, artifact, device_id)
        except Exception as error:
            logger.error(f"S3 upload failed for {artifact.uri}: {error}")
            return None
        logger.info(f"Uploaded to s3://{self._s3_uploader.bucket}/{object_key}")
        return object_key

    def _journal_end(
        self,
        artifact: Artifact,
        coords: Coordinates,
        uploaded: bool,
        s3_object_key: Optional[str],
    ) -> None:
        if self._journal is None:
            return
        try:
            self._journal.write_session_end(
                session_id=artifact.session.session_id if artifact.session else '',
                file_path=artifact.uri,
                duration_sec=artifact.duration_seconds,
                latitude=coords.latitude,
                longitude=coords.longitude,
                uploaded=uploaded,
                s3_object_key=s3_object_key,
            )
        except OSError as error:
            logger.warning(f"Could not write recording journal: {error}")
