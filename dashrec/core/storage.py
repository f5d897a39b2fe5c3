"""Durable key-value storage for dashrec.

This module provides the small persistent store used to keep agent state
(the registered device identifier) across restarts.
"""

import json
import os
import threading
from pathlib import Path
from typing import Dict, Optional

from loguru import logger


class KeyValueStore:
    """String key-value store persisted as a JSON document."""

    def __init__(self, path: Path) -> None:
        """Initialize the store.

        Args:
            path: JSON file holding the stored values. Parent directories are
                created on first write.
        """
        self.path = Path(path)
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        """Get a stored value.

        Args:
            key: Key to look up

        Returns:
            Stored value or None if the key is absent
        """
        value = self._read().get(key)
        return str(value) if value is not None else None

    def set(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one.

        Args:
            key: Key to write
            value: Value to store
        """
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def delete(self, key: str) -> bool:
        """Delete a stored value.

        Args:
            key: Key to remove

        Returns:
            True if the key existed, False otherwise
        """
        with self._lock:
            data = self._read()
            if key not in data:
                return False
            del data[key]
            self._write(data)
        logger.info(f"Deleted stored value: {key}")
        return True

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            content = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as e:
            logger.error(f"Error reading {self.path}: {e}")
            return {}
        if not isinstance(content, dict):
            logger.error(f"Ignoring {self.path}: expected a JSON object")
            return {}
        return content

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp_path, self.path)
