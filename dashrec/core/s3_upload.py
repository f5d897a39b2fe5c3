"""S3-compatible mirror of finished recordings.

Each recording is stored once per session, grouped by device and by the day
the session started::

    recordings/Acme_Model_1_linux/2025/10/19/251019143022_abc123/251019143022.mp3

The object carries the session as user metadata (``x-amz-meta-*``) so a
bucket listing can be matched to the journal without downloading anything.
"""

from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from .recording import Artifact

UNSCHEDULED_SESSION = "manual"

CONTENT_TYPES = {
    ".mp3": "audio/mpeg",
    ".flac": "audio/flac",
    ".ogg": "audio/ogg",
    ".wav": "audio/wav",
}


def _normalize_segment(value: str) -> str:
    return "/".join(part for part in value.replace("\\", "/").split("/") if part)


def build_object_key(
    filename: str,
    session_id: str,
    device_id: Optional[str] = None,
    recorded_on: Optional[date] = None,
    prefix: str = "",
) -> str:
    """Build an object key ``prefix/device_id/YYYY/MM/DD/session_id/filename``.

    Empty segments are left out, so a key without a device or a date still
    ends in ``session_id/filename``.
    """
    parts = [_normalize_segment(prefix), _normalize_segment(device_id or "")]
    if recorded_on is not None:
        parts.append(f"{recorded_on:%Y/%m/%d}")
    parts.append(_normalize_segment(session_id) or UNSCHEDULED_SESSION)
    parts.append(Path(filename).name)
    return "/".join(part for part in parts if part)


def artifact_metadata(artifact: Artifact, device_id: Optional[str] = None) -> Dict[str, str]:
    """Describe *artifact* as S3 user metadata (string values only)."""
    metadata = {"duration-sec": f"{artifact.duration_seconds:.3f}"}
    if device_id:
        metadata["device-id"] = device_id
    session = artifact.session
    if session is not None:
        metadata["session-id"] = session.session_id
        metadata["trigger"] = session.trigger_source.value
        metadata["mode"] = session.mode.value
        metadata["started-at"] = session.started_at.isoformat(timespec="seconds")
    return metadata


@dataclass
class S3Config:
    """Configuration for S3-compatible storage."""

    bucket: str
    endpoint_url: str
    access_key: str
    secret_key: str
    region: Optional[str] = None
    prefix: str = ""
    verify_ssl: bool = True
    path_style: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "S3Config":
        """Build and validate S3 config from the ``s3:`` section.

        Raises:
            ValueError: If a required field is missing
        """
        required_fields = ("bucket", "endpoint_url", "access_key", "secret_key")
        missing = [name for name in required_fields if not data.get(name)]
        if missing:
            raise ValueError(f"Missing required S3 configuration fields: {', '.join(missing)}")

        return cls(
            bucket=str(data["bucket"]),
            endpoint_url=str(data["endpoint_url"]),
            access_key=str(data["access_key"]),
            secret_key=str(data["secret_key"]),
            region=str(data["region"]) if data.get("region") else None,
            prefix=str(data.get("prefix", "")),
            verify_ssl=bool(data.get("verify_ssl", True)),
            path_style=bool(data.get("path_style", True)),
        )


class S3Uploader:
    """Mirror of recordings in an S3-compatible bucket.

    The boto3 client is blocking; async callers run :meth:`upload_artifact`
    through ``asyncio.to_thread``.
    """

    def __init__(self, config: S3Config) -> None:
        self._config = config
        addressing_style = "path" if config.path_style else "virtual"

        self._client = boto3.client(
            "s3",
            endpoint_url=config.endpoint_url,
            aws_access_key_id=config.access_key,
            aws_secret_access_key=config.secret_key,
            region_name=config.region,
            verify=config.verify_ssl,
            config=Config(s3={"addressing_style": addressing_style}),
        )

    @property
    def bucket(self) -> str:
        return self._config.bucket

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "S3Uploader":
        return cls(S3Config.from_dict(data))

    def object_key_for(self, artifact: Artifact, device_id: Optional[str] = None) -> str:
        """Return the key *artifact* is stored under."""
        session = artifact.session
        return build_object_key(
            filename=artifact.uri,
            session_id=session.session_id if session else UNSCHEDULED_SESSION,
            device_id=device_id,
            recorded_on=session.started_at.date() if session else None,
            prefix=self._config.prefix,
        )

    def upload_artifact(self, artifact: Artifact, device_id: Optional[str] = None) -> str:
        """Upload a finished recording with its session metadata.

        Args:
            artifact: The recording handed off by the engine
            device_id: Device the recording belongs to

        Returns:
            The object key
        """
        object_key = self.object_key_for(artifact, device_id)
        extra_args: Dict[str, Any] = {"Metadata": artifact_metadata(artifact, device_id)}
        content_type = CONTENT_TYPES.get(Path(artifact.uri).suffix.lower())
        if content_type:
            extra_args["ContentType"] = content_type

        logger.debug(f"Uploading {artifact.uri} to s3://{self.bucket}/{object_key}")
        self._client.upload_file(artifact.uri, self.bucket, object_key, ExtraArgs=extra_args)
        return object_key

    def check_bucket(self) -> bool:
        """Verify that the configured bucket is reachable with these credentials."""
        try:
            self._client.head_bucket(Bucket=self._config.bucket)
            return True
        except (BotoCoreError, ClientError) as error:
            logger.debug(f"Bucket check failed for {self.bucket}: {error}")
            return False
