"""
Position Fix and Location Schemas.

- PositionFix: one-shot absolute fix returned by the remote fix service
- TrackPosition: position emitted by the tracker (beacon or sensor driven)
- UserLocation: position republished into the app-wide location state
"""

from dataclasses import dataclass
from typing import Optional
from enum import Enum
import math
import time


class PositionSource(Enum):
    """Signal that produced a position."""

    BEACON = "beacon"   # Multilateration from beacon RSSI
    SENSOR = "sensor"   # Step-driven dead reckoning along the route


@dataclass
class PositionFix:
    """
    Beacon fix from the remote positioning service.

    Attributes:
        x: Map x coordinate (pixels)
        y: Map y coordinate (pixels)
        building_id: Building the fix belongs to
        floor_id: Floor the fix belongs to
        valid: Whether the service produced a usable fix
        error_message: Reason when not valid
        floor_name: Display name of the floor, if provided
    """

    x: float
    y: float
    building_id: str
    floor_id: str
    valid: bool
    error_message: Optional[str] = None
    floor_name: Optional[str] = None

    @property
    def is_usable(self) -> bool:
        """Valid and finite, i.e. fit to become the dead-reckoning anchor."""
        return self.valid and math.isfinite(self.x) and math.isfinite(self.y)

    @classmethod
    def from_dict(cls, data: dict) -> 'PositionFix':
        """
        Parse the fix service response.

        Missing or malformed fields produce an invalid fix instead of
        raising, so a bad response is reported like any failed fix.
        """
        try:
            x = float(data['x'])
            y = float(data['y'])
        except (KeyError, TypeError, ValueError):
            return cls(
                x=float('nan'),
                y=float('nan'),
                building_id=str(data.get('buildingId', '')),
                floor_id=str(data.get('floorId', '')),
                valid=False,
                error_message=data.get('errorMessage') or 'Malformed position response',
            )

        return cls(
            x=x,
            y=y,
            building_id=str(data.get('buildingId', '')),
            floor_id=str(data.get('floorId', '')),
            valid=bool(data.get('valid', False)),
            error_message=data.get('errorMessage'),
            floor_name=data.get('floorName'),
        )


@dataclass
class TrackPosition:
    """Position emitted by IndoorTracker through its position callback."""

    x: float
    y: float
    source: PositionSource
    timestamp: float


@dataclass
class UserLocation:
    """
    Location written to the shared app state.

    Attributes:
        building_id: Building ID
        floor_id: Floor ID
        x: Map x coordinate (pixels)
        y: Map y coordinate (pixels)
        source: Signal that produced the position
        timestamp: Wall-clock time of publication (seconds)
    """

    building_id: str
    floor_id: str
    x: float
    y: float
    source: PositionSource
    timestamp: float = 0.0

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = time.time()

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'building_id': self.building_id,
            'floor_id': self.floor_id,
            'x': self.x,
            'y': self.y,
            'source': self.source.value,
            'timestamp': self.timestamp,
        }
