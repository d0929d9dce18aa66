"""
Protocol Module: Message schemas exchanged with collaborators.

- Beacon observations from the BLE scanner
- Fix responses from the positioning service
- Route requests/responses from the navigation service
- Locations published to the app-wide state
- Sensor samples from the motion/heading streams
"""

from .beacon import (
    BeaconObservation,
    BeaconRecord,
    beacon_key,
    DEFAULT_TX_POWER_DBM,
)
from .position_fix import (
    PositionFix,
    PositionSource,
    TrackPosition,
    UserLocation,
)
from .route import (
    RoutePoint,
    RouteProgress,
    RouteRequest,
    RouteResponse,
    FloorMetadata,
)
from .sensor_sample import (
    AccelerationSample,
    MagneticSample,
)

__all__ = [
    'BeaconObservation',
    'BeaconRecord',
    'beacon_key',
    'DEFAULT_TX_POWER_DBM',
    'PositionFix',
    'PositionSource',
    'TrackPosition',
    'UserLocation',
    'RoutePoint',
    'RouteProgress',
    'RouteRequest',
    'RouteResponse',
    'FloorMetadata',
    'AccelerationSample',
    'MagneticSample',
]
