"""Configuration management for dashrec.

This module provides configuration constants and the :class:`AppConfig` class
which merges defaults with values from an optional YAML file
(``.dashrec.yml`` in the working directory).

Recording constants
-------------------
- ``SAMPLE_RATE``       – capture sample rate in Hz (default 44 100)
- ``CHANNELS``          – number of input channels (default 1 / mono)
- ``BIT_RATE``          – constant bitrate for lossy containers (128 kbps)
- ``FILE_FORMAT``       – audio container (default ``'mp3'``)
- ``OUTPUT_DIR``        – default output directory (``'audio/'``)
- ``DEFAULT_DURATION``  – seconds recorded for a dashboard start without an
  explicit ``durationSeconds``

Server constants
----------------
- ``BASE_URL``          – dashboard root URL
- ``POLL_INTERVAL``     – seconds between two command polls
- ``REQUEST_TIMEOUT``   – per-request timeout in seconds

Configuration file
------------------
Keys of the ``recording:`` section are flattened into the configuration, the
other sections are merged with their defaults and read with
:meth:`AppConfig.get_section`:

.. code-block:: yaml

    server:
      base_url: http://dashboard.local:5000
      poll_interval: 2.0
    recording:
      file_format: flac
      default_duration: 60
    device:
      manufacturer: Raspberry
      model: Pi 4
    location:
      latitude: 52.37
      longitude: 4.89
"""

from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

# Recording parameters
SAMPLE_RATE = 44100
CHANNELS = 1
BIT_RATE = 128000
FILE_FORMAT = 'mp3'  # 'mp3' (constant bitrate), 'ogg', 'flac', 'wav'
OUTPUT_DIR = 'audio/'
FRAMES_PER_BUFFER = 4096
DEFAULT_DURATION = 30

# Timestamp / filename formatting
#   {ts}        - datetime string formatted by DATETIME_FORMAT (strftime)
#   {device_id} - device identifier of this agent
DATETIME_FORMAT = '%y%m%d%H%M%S'
TIMESTAMP_FORMAT = '{ts}'

# Dashboard server
BASE_URL = 'http://localhost:5000'
POLL_INTERVAL = 2.0
REQUEST_TIMEOUT = 10.0

CONFIG_FILE = '.dashrec.yml'
STATE_FILE = '.dashrec-state.json'

# Local recording journal
LOG_FILE = 'recordings.jsonl'

SECTION_DEFAULTS: Dict[str, Dict[str, Any]] = {
    'server': {
        'base_url': BASE_URL,
        'poll_interval': POLL_INTERVAL,
        'timeout': REQUEST_TIMEOUT,
    },
    'device': {
        'store_file': STATE_FILE,
        'manufacturer': None,
        'model': None,
        'platform': None,
    },
    'location': {
        'latitude': 0.0,
        'longitude': 0.0,
    },
    'log': {
        'file': LOG_FILE,
    },
}


class AppConfig:
    """Application configuration management."""

    def __init__(self, config_path: Optional[Path] = None) -> None:
        """Initialize configuration with defaults.

        Args:
            config_path: YAML file to load. Defaults to ``.dashrec.yml`` in
                the current working directory.
        """
        self._config: Dict[str, Any] = {
            'sample_rate': SAMPLE_RATE,
            'channels': CHANNELS,
            'bit_rate': BIT_RATE,
            'file_format': FILE_FORMAT,
            'output_dir': OUTPUT_DIR,
            'frames_per_buffer': FRAMES_PER_BUFFER,
            'default_duration': DEFAULT_DURATION,
            'gain': 1.0,
            'input_device': None,
            'timestamp_format': TIMESTAMP_FORMAT,
            'datetime_format': DATETIME_FORMAT,
        }
        self._sections: Dict[str, Dict[str, Any]] = deepcopy(SECTION_DEFAULTS)
        self._config_path = Path(config_path) if config_path else Path.cwd() / CONFIG_FILE
        self._load_yaml_config()

    def _load_yaml_config(self) -> None:
        """Load optional YAML configuration."""
        if not self._config_path.exists():
            return

        content = yaml.safe_load(self._config_path.read_text(encoding='utf-8'))
        if not content:
            return

        if not isinstance(content, dict):
            raise ValueError(f"Configuration in {self._config_path.name} must be a mapping")

        recording_config = content.get('recording')
        if isinstance(recording_config, dict):
            for key in self._config.keys():
                if key in recording_config:
                    self._config[key] = recording_config[key]

        for key, value in content.items():
            if key == 'recording':
                continue
            if key in self._sections:
                if not isinstance(value, dict):
                    raise ValueError(f"Section '{key}' in {self._config_path.name} must be a mapping")
                self._sections[key].update(value)
                continue
            self._config[key] = value

    @property
    def path(self) -> Path:
        """Return the YAML file this configuration was read from."""
        return self._config_path

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return self._config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set configuration value.

        Args:
            key: Configuration key
            value: Configuration value
        """
        self._config[key] = value

    def get_section(self, name: str) -> Dict[str, Any]:
        """Return a copy of a configuration section merged with its defaults.

        Args:
            name: Section name (``server``, ``device``, ``location``, ``log``)

        Returns:
            Section mapping; empty when the section is unknown
        """
        return dict(self._sections.get(name, {}))

    def get_output_dir(self) -> Path:
        """Get output directory as Path object.

        Returns:
            Output directory path
        """
        output_dir = self._config.get('output_dir', OUTPUT_DIR)
        path = Path(output_dir)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def get_s3_config(self) -> Optional[Dict[str, Any]]:
        """Get S3 configuration mapping, if present."""
        s3_config = self._config.get('s3')
        if isinstance(s3_config, dict):
            return s3_config
        return None

    def get_log_path(self, output_dir: Optional[Path] = None) -> Path:
        """Return the recording journal path.

        The file name is taken from ``log.file`` in ``.dashrec.yml`` when
        present, otherwise from :data:`LOG_FILE`. The file is placed inside
        *output_dir* (defaults to :meth:`get_output_dir`).

        Args:
            output_dir: Directory that will contain the journal. When ``None``
                the configured ``output_dir`` is used.

        Returns:
            Path including the journal filename.
        """
        log_file = self._sections['log'].get('file') or LOG_FILE
        base = Path(output_dir) if output_dir is not None else self.get_output_dir()
        return base / log_file

    def get_store_path(self) -> Path:
        """Return the path of the durable key-value store."""
        return Path(self._sections['device'].get('store_file') or STATE_FILE)
