"""Device identity for dashrec.

The dashboard addresses an installation by a device identifier built from the
manufacturer, the model and the platform tag::

    Acme Corp / Model 1 (ios)   ->   Acme_Corp_Model_1_ios

The identifier is derived once and persisted. Every later poll and upload
reuses the stored value: host metadata can change between calls (a renamed
machine, a firmware update), and a re-derived id would no longer match the
registration record on the server.
"""

import platform
import re
import sys
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from loguru import logger

from .storage import KeyValueStore

DEVICE_ID_KEY = 'registered_device_id'

_DMI_DIR = Path('/sys/class/dmi/id')
_NON_ALNUM = re.compile(r'[^A-Za-z0-9]+')


class PlatformTag(str, Enum):
    """Platform component of the device identifier."""

    IOS = 'ios'
    ANDROID = 'android'
    LINUX = 'linux'
    MACOS = 'macos'
    WINDOWS = 'windows'

    @classmethod
    def detect(cls) -> 'PlatformTag':
        """Return the tag of the platform this process runs on."""
        system = platform.system().lower()
        if hasattr(sys, 'getandroidapilevel'):
            return cls.ANDROID
        if system == 'darwin':
            return cls.MACOS
        if system == 'windows':
            return cls.WINDOWS
        return cls.LINUX


@dataclass
class DeviceMetadata:
    """Hardware description used to derive the device identifier."""

    manufacturer: str
    model: str
    platform: PlatformTag
    device_name: str = ''
    os_version: str = ''

    def to_dict(self) -> dict:
        return {
            'manufacturer': self.manufacturer,
            'modelName': self.model,
            'platform': self.platform.value,
            'deviceName': self.device_name,
            'osVersion': self.os_version,
        }


def _normalize_token(value: Optional[str]) -> str:
    token = _NON_ALNUM.sub('_', value or '').strip('_')
    return token or 'Unknown'


def derive_device_id(metadata: DeviceMetadata) -> str:
    """Build the device identifier for *metadata*.

    Runs of non-alphanumeric characters collapse to one underscore.

    Args:
        metadata: Device description

    Returns:
        Identifier in the form ``{manufacturer}_{model}_{platform}``
    """
    tag = PlatformTag(metadata.platform).value
    return f"{_normalize_token(metadata.manufacturer)}_{_normalize_token(metadata.model)}_{tag}"


def _read_dmi(field: str) -> Optional[str]:
    try:
        value = (_DMI_DIR / field).read_text(encoding='utf-8').strip()
    except OSError:
        return None
    return value or None


def collect_device_metadata(
    manufacturer: Optional[str] = None,
    model: Optional[str] = None,
    platform_tag: Optional[str] = None,
) -> DeviceMetadata:
    """Collect metadata of the host, with optional configured overrides.

    Args:
        manufacturer: Manufacturer override (``device.manufacturer``)
        model: Model override (``device.model``)
        platform_tag: Platform override (``device.platform``)

    Returns:
        Device metadata
    """
    tag = PlatformTag(platform_tag) if platform_tag else PlatformTag.detect()
    uname = platform.uname()
    return DeviceMetadata(
        manufacturer=manufacturer or _read_dmi('sys_vendor') or uname.system or 'Unknown',
        model=model or _read_dmi('product_name') or uname.machine or 'Unknown',
        platform=tag,
        device_name=uname.node,
        os_version=uname.release,
    )


class DeviceIdentity:
    """Resolves and caches the device identifier of this installation."""

    def __init__(
        self,
        store: KeyValueStore,
        metadata_provider: Callable[[], DeviceMetadata] = collect_device_metadata,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the resolver.

        Args:
            store: Durable store holding the identifier
            metadata_provider: Callable returning the host metadata
            clock: Wall clock in seconds, used for fallback identifiers
        """
        self._store = store
        self._metadata_provider = metadata_provider
        self._clock = clock
        self._cached: Optional[str] = None

    def resolve(self) -> str:
        """Return the device identifier.

        Looks at the process cache, then the durable store, then derives a
        new identifier from the host metadata and persists it.

        Returns:
            Device identifier
        """
        if self._cached:
            return self._cached

        stored = self._store.get(DEVICE_ID_KEY)
        if stored:
            logger.info(f"Using stored device ID: {stored}")
            self._cached = stored
            return stored

        logger.info("No stored device ID found, deriving one from device metadata")
        try:
            metadata = self._metadata_provider()
            device_id = derive_device_id(metadata)
        except Exception as error:
            device_id = self._fallback_id()
            logger.warning(
                f"Failed to collect device metadata ({error}); using fallback ID {device_id}, "
                "which will not match any dashboard registration"
            )
            self._cached = device_id
            return device_id

        try:
            self._store.set(DEVICE_ID_KEY, device_id)
        except OSError as error:
            logger.error(f"Failed to persist device ID {device_id}: {error}")
        self._cached = device_id
        logger.info(f"Generated and stored device ID: {device_id}")
        return device_id

    def remember(self, device_id: str) -> None:
        """Persist *device_id*, typically after a successful registration."""
        self._store.set(DEVICE_ID_KEY, device_id)
        self._cached = device_id
        logger.info(f"Stored device ID for command polling: {device_id}")

    def reset(self) -> None:
        """Forget the identifier; the next :meth:`resolve` derives a new one."""
        self._cached = None
        self._store.delete(DEVICE_ID_KEY)

    def _fallback_id(self) -> str:
        return f"Fallback_{PlatformTag.detect().value}_{int(self._clock() * 1000)}"
