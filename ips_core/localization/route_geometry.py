"""
Route Geometry.

Closed-form point/segment projection and forward walking along a route
polyline. All distances are in route units (map pixels).
"""

from dataclasses import dataclass
from typing import Optional, Sequence
import math

from ips_core.proto.route import RoutePoint, RouteProgress


# Segments shorter than this are treated as zero-length
MIN_SEGMENT_LENGTH = 1e-6


@dataclass(frozen=True)
class SegmentProjection:
    """Nearest point on a segment."""

    x: float
    y: float
    squared_distance: float
    t: float


@dataclass(frozen=True)
class RouteProjection:
    """Nearest point on a route."""

    x: float
    y: float
    squared_distance: float
    t: float
    segment_index: int

    @property
    def progress(self) -> RouteProgress:
        return RouteProgress(self.segment_index, self.t)


@dataclass(frozen=True)
class RouteAdvance:
    """Position reached after walking along a route."""

    x: float
    y: float
    progress: RouteProgress


def project_point_to_segment(
    px: float,
    py: float,
    a: RoutePoint,
    b: RoutePoint,
) -> SegmentProjection:
    """
    Project (px, py) onto segment [a, b].

    t is clamped to [0, 1] so the projection never leaves the segment.
    A zero-length segment projects to `a` with t=0.
    """
    dx = b.x - a.x
    dy = b.y - a.y
    if dx == 0 and dy == 0:
        dist_sq = (px - a.x) ** 2 + (py - a.y) ** 2
        return SegmentProjection(a.x, a.y, dist_sq, 0.0)

    t = ((px - a.x) * dx + (py - a.y) * dy) / (dx * dx + dy * dy)
    t = max(0.0, min(1.0, t))
    x = a.x + t * dx
    y = a.y + t * dy
    dist_sq = (px - x) ** 2 + (py - y) ** 2
    return SegmentProjection(x, y, dist_sq, t)


def project_to_route(
    px: float,
    py: float,
    route: Sequence[RoutePoint],
) -> Optional[RouteProjection]:
    """
    Find the globally closest projection of (px, py) onto a route.

    Returns:
        RouteProjection, or None if the route has fewer than 2 points.
        On ties the earliest segment wins.
    """
    if len(route) < 2:
        return None

    best: Optional[RouteProjection] = None
    for i in range(len(route) - 1):
        proj = project_point_to_segment(px, py, route[i], route[i + 1])
        if best is None or proj.squared_distance < best.squared_distance:
            best = RouteProjection(proj.x, proj.y, proj.squared_distance, proj.t, i)

    return best


def route_length(route: Sequence[RoutePoint]) -> float:
    """Total polyline length."""
    return sum(
        math.hypot(route[i + 1].x - route[i].x, route[i + 1].y - route[i].y)
        for i in range(len(route) - 1)
    )


def advance_along_route(
    progress: RouteProgress,
    distance: float,
    route: Sequence[RoutePoint],
) -> Optional[RouteAdvance]:
    """
    Walk forward along a route.

    Args:
        progress: Starting cursor
        distance: Distance to consume (route units); negative is treated as 0
        route: Route polyline

    Returns:
        RouteAdvance with the new position and cursor, or None if the route
        has fewer than 2 points.

    Notes:
        - Zero-length segments are skipped
        - Landing exactly on an interior vertex yields (next segment, t=0)
        - Walking past the end clamps to the final vertex (last segment, t=1)
    """
    if len(route) < 2:
        return None

    last_segment = len(route) - 2
    idx = max(0, min(last_segment, int(progress.segment_index)))
    seg_t = max(0.0, min(1.0, progress.t))
    remaining = distance if distance > 0 else 0.0

    while remaining > 0 and idx <= last_segment:
        a = route[idx]
        b = route[idx + 1]
        seg_len = math.hypot(b.x - a.x, b.y - a.y)

        if not math.isfinite(seg_len) or seg_len <= MIN_SEGMENT_LENGTH:
            idx += 1
            seg_t = 0.0
            continue

        remain_on_segment = (1.0 - seg_t) * seg_len
        if remaining < remain_on_segment:
            next_t = min(1.0, seg_t + remaining / seg_len)
            return RouteAdvance(
                a.x + (b.x - a.x) * next_t,
                a.y + (b.y - a.y) * next_t,
                RouteProgress(idx, next_t),
            )

        remaining -= remain_on_segment
        idx += 1
        seg_t = 0.0

    if idx > last_segment:
        end = route[-1]
        return RouteAdvance(end.x, end.y, RouteProgress(last_segment, 1.0))

    a = route[idx]
    b = route[idx + 1]
    return RouteAdvance(
        a.x + (b.x - a.x) * seg_t,
        a.y + (b.y - a.y) * seg_t,
        RouteProgress(idx, seg_t),
    )
