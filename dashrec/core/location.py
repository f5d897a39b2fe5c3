"""Location capability for dashrec.

Recordings and dashboard events are tagged with the position of the agent.
Providers return :class:`Coordinates`; :func:`fetch_location` wraps any
provider so that a failing lookup degrades to ``(0, 0)`` instead of breaking
the recording flow.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from loguru import logger


@dataclass(frozen=True)
class Coordinates:
    """A latitude/longitude pair in decimal degrees."""

    latitude: float
    longitude: float


UNKNOWN_LOCATION = Coordinates(0.0, 0.0)


class LocationProvider:
    """Interface of a location source."""

    async def get_current_coordinates(self) -> Coordinates:
        raise NotImplementedError


class StaticLocationProvider(LocationProvider):
    """Reports a fixed, configured position (stationary agents)."""

    def __init__(self, latitude: float = 0.0, longitude: float = 0.0) -> None:
        if not -90.0 <= latitude <= 90.0:
            raise ValueError(f"Latitude out of range: {latitude}")
        if not -180.0 <= longitude <= 180.0:
            raise ValueError(f"Longitude out of range: {longitude}")
        self._coordinates = Coordinates(float(latitude), float(longitude))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StaticLocationProvider':
        """Build a provider from the ``location:`` configuration section."""
        return cls(
            latitude=float(data.get('latitude') or 0.0),
            longitude=float(data.get('longitude') or 0.0),
        )

    async def get_current_coordinates(self) -> Coordinates:
        return self._coordinates


async def fetch_location(provider: Optional[LocationProvider]) -> Coordinates:
    """Return the current coordinates, or ``(0, 0)`` when unavailable."""
    if provider is None:
        return UNKNOWN_LOCATION
    try:
        return await provider.get_current_coordinates()
    except Exception as error:
        logger.warning(f"Failed to fetch location, using 0,0: {error}")
        return UNKNOWN_LOCATION
