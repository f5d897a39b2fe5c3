"""Local JSONL recording journal for dashrec.

Appends structured JSON Lines entries to a journal file alongside the audio
files, capturing who started each recording, how long it ran, where it was
taken and whether it reached the dashboard.

Record types
------------
``session`` (event=``"start"``)
    Written when the engine has verified that a new recording is running.

``session`` (event=``"end"``)
    Written once the artifact has been handed off, with location, duration
    and upload results.

Example log lines::

    {"type":"session","event":"start","session_id":"251019143022","device_id":"Acme_Model1_linux","trigger":"dashboard","mode":"timed","planned_duration_sec":30,"started_at":"2025-10-19T14:30:22"}
    {"type":"session","event":"end","session_id":"251019143022","file_path":"audio/251019143022.mp3","duration_sec":30.1,"latitude":52.37,"longitude":4.89,"uploaded":true,"s3_object_key":null,"ended_at":"2025-10-19T14:30:53"}
"""

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional


class RecordingLogger:
    """Appends JSONL journal entries for recording sessions.

    Thread-safe: a single :class:`threading.Lock` serialises file writes.

    Args:
        log_path: Path to the ``.jsonl`` journal. Parent directories are
            created automatically.
    """

    def __init__(self, log_path: Path) -> None:
        log_path = Path(log_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        self._log_path = log_path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._log_path

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def write_session_start(
        self,
        session_id: str,
        device_id: Optional[str],
        trigger: str,
        mode: str,
        planned_duration_sec: Optional[int] = None,
        started_at: Optional[datetime] = None,
    ) -> None:
        """Append a session-start record.

        Args:
            session_id: Unique session identifier.
            device_id: Device identifier of this agent.
            trigger: Origin of the start request (``manual``, ``dashboard``...).
            mode: ``timed`` or ``continuous``.
            planned_duration_sec: Auto-stop delay for timed sessions.
            started_at: Session start time. Defaults to ``datetime.now()``.
        """
        self._append({
            "type": "session",
            "event": "start",
            "session_id": session_id,
            "device_id": device_id,
            "trigger": trigger,
            "mode": mode,
            "planned_duration_sec": planned_duration_sec,
            "started_at": _iso(started_at),
        })

    def write_session_end(
        self,
        session_id: str,
        file_path: Optional[str],
        duration_sec: float = 0.0,
        latitude: float = 0.0,
        longitude: float = 0.0,
        uploaded: bool = False,
        s3_object_key: Optional[str] = None,
        ended_at: Optional[datetime] = None,
    ) -> None:
        """Append a session-end record.

        Args:
            session_id: Session identifier matching the earlier start record.
            file_path: Local path of the recorded file.
            duration_sec: Recorded duration in seconds.
            latitude: Latitude tagged on the recording.
            longitude: Longitude tagged on the recording.
            uploaded: ``True`` if the dashboard upload succeeded.
            s3_object_key: S3 object key if the file was mirrored, else ``None``.
            ended_at: Session end time. Defaults to ``datetime.now()``.
        """
        self._append({
            "type": "session",
            "event": "end",
            "session_id": session_id,
            "file_path": file_path,
            "duration_sec": round(duration_sec, 3),
            "latitude": latitude,
            "longitude": longitude,
            "uploaded": uploaded,
            "s3_object_key": s3_object_key,
            "ended_at": _iso(ended_at),
        })

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _append(self, record: dict) -> None:
        """Serialise *record* as JSON and append it to the journal."""
        line = json.dumps(record, ensure_ascii=False) + "\n"
        with self._lock:
            with self._log_path.open("a", encoding="utf-8") as fh:
                fh.write(line)


def _iso(dt: Optional[datetime]) -> str:
    """Return a compact ISO 8601 string for *dt*, defaulting to now."""
    if dt is None:
        dt = datetime.now()
    return dt.replace(microsecond=0).isoformat()
