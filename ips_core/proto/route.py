"""
Route Schemas.

Routes are polylines in map-pixel space returned by the remote route
service. A progress cursor identifies a point on a route as a segment index
plus a fraction along that segment.
"""

from dataclasses import dataclass, field
from typing import List, Optional
import math


@dataclass(frozen=True)
class RoutePoint:
    """Route vertex in map-pixel space."""

    x: float
    y: float

    @property
    def is_finite(self) -> bool:
        return math.isfinite(self.x) and math.isfinite(self.y)

    @classmethod
    def from_dict(cls, data: dict) -> 'RoutePoint':
        return cls(x=float(data['x']), y=float(data['y']))


@dataclass(frozen=True)
class RouteProgress:
    """
    Cursor along a route.

    Attributes:
        segment_index: Segment [i, i+1] the cursor is on
        t: Fraction toward the segment endpoint, in [0, 1]
    """

    segment_index: int
    t: float

    def __post_init__(self):
        if self.segment_index < 0:
            raise ValueError(f"Segment index cannot be negative: {self.segment_index}")

        if not 0.0 <= self.t <= 1.0:
            raise ValueError(f"Segment fraction must be in [0,1]: {self.t}")


@dataclass
class RouteRequest:
    """Request for the remote route service."""

    building_id: str
    floor_id: str
    start_x: float
    start_y: float
    dest_x: float
    dest_y: float

    def to_dict(self) -> dict:
        return {
            'buildingId': self.building_id,
            'floorId': self.floor_id,
            'startX': self.start_x,
            'startY': self.start_y,
            'destX': self.dest_x,
            'destY': self.dest_y,
        }


@dataclass
class RouteResponse:
    """
    Route returned by the remote route service.

    Attributes:
        route: Ordered polyline vertices
        total_distance: Route length as reported by the service (map units)
    """

    route: List[RoutePoint] = field(default_factory=list)
    total_distance: float = 0.0

    @property
    def num_points(self) -> int:
        return len(self.route)

    @classmethod
    def from_dict(cls, data: dict) -> 'RouteResponse':
        """Parse the route service response, skipping malformed vertices."""
        points = []
        for raw in data.get('route') or []:
            try:
                points.append(RoutePoint.from_dict(raw))
            except (KeyError, TypeError, ValueError):
                continue

        return cls(
            route=points,
            total_distance=float(data.get('totalDistance') or 0.0),
        )


@dataclass
class FloorMetadata:
    """
    Floor dimensions used to derive the map scale.

    Any field may be missing; the tracker then falls back to a default
    pixels-per-meter.
    """

    floor_id: str
    map_width_px: Optional[float] = None
    map_height_px: Optional[float] = None
    real_width_m: Optional[float] = None
    real_height_m: Optional[float] = None
