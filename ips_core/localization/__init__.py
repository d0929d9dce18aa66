"""
Localization Module: beacon positioning and route-constrained PDR.

Key classes:
- ScalarKalmanFilter: Per-axis smoothing of beacon positions
- TrilaterationSolver: 3-beacon RSSI multilateration
- route_geometry: Projection onto and walking along route polylines
- StepDetector / HeadingEstimator: Accelerometer steps, magnetometer heading
- IndoorTracker: Session tracker combining all of the above
"""

from .kalman_1d import ScalarKalmanFilter
from .map_scale import (
    DEFAULT_PIXELS_PER_METER,
    ScaleResolution,
    resolve_pixels_per_meter,
)
from .route_geometry import (
    SegmentProjection,
    RouteProjection,
    RouteAdvance,
    project_point_to_segment,
    project_to_route,
    advance_along_route,
    route_length,
)
from .trilateration import (
    TrilaterationSolver,
    TrilaterationConfig,
    TrilaterationResult,
    rssi_to_distance,
    rssi_at_distance,
)
from .motion_sensing import (
    StepDetector,
    StepDetectorConfig,
    HeadingEstimator,
)
from .indoor_tracker import (
    IndoorTracker,
    TrackingConfig,
    TrackerPhase,
)

__all__ = [
    'ScalarKalmanFilter',
    'DEFAULT_PIXELS_PER_METER',
    'ScaleResolution',
    'resolve_pixels_per_meter',
    'SegmentProjection',
    'RouteProjection',
    'RouteAdvance',
    'project_point_to_segment',
    'project_to_route',
    'advance_along_route',
    'route_length',
    'TrilaterationSolver',
    'TrilaterationConfig',
    'TrilaterationResult',
    'rssi_to_distance',
    'rssi_at_distance',
    'StepDetector',
    'StepDetectorConfig',
    'HeadingEstimator',
    'IndoorTracker',
    'TrackingConfig',
    'TrackerPhase',
]
