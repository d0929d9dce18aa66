"""
Pytest configuration and shared fixtures for the indoor tracking tests.

This module provides reusable fixtures for beacon layouts, routes, sensor
streams and fake remote services used by the tracker and controller tests.
"""

import sys
import math
import asyncio
from pathlib import Path
from typing import List, Optional, Tuple

import pytest

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from ips_core.io import SensorStream
from ips_core.metrics import reset_metrics
from ips_core.proto import (
    BeaconObservation,
    BeaconRecord,
    PositionFix,
    RoutePoint,
    RouteRequest,
    RouteResponse,
)
from ips_core.localization import rssi_at_distance


BEACON_UUID = "e2c56db5-dffb-48d2-b060-d0f5a71096e0"
TX_POWER = -59.0
PATH_LOSS_N = 2.5


@pytest.fixture(autouse=True)
def fresh_metrics():
    """Give every test its own global metrics collector."""
    reset_metrics()
    yield


# =============================================================================
# Beacon Layout Fixtures
# =============================================================================


@pytest.fixture
def triangle_records() -> List[BeaconRecord]:
    """
    Three beacons forming a right triangle.

    - A (minor 1) at origin
    - B (minor 2) at (10, 0)
    - C (minor 3) at (0, 10)

    All calibrated at -59 dBm @ 1m.
    """
    return [
        BeaconRecord(BEACON_UUID.upper(), 100, 1, 0.0, 0.0, TX_POWER),
        BeaconRecord(BEACON_UUID.upper(), 100, 2, 10.0, 0.0, TX_POWER),
        BeaconRecord(BEACON_UUID.upper(), 100, 3, 0.0, 10.0, TX_POWER),
    ]


def observations_at(
    records: List[BeaconRecord],
    x: float,
    y: float,
    n: float = PATH_LOSS_N,
    uuid: Optional[str] = None,
) -> List[BeaconObservation]:
    """
    Build a noise-free scan batch as heard from (x, y).

    RSSI is back-computed from the path-loss model so trilateration is exact.
    """
    batch = []
    for record in records:
        distance = math.hypot(record.x - x, record.y - y)
        batch.append(BeaconObservation(
            uuid=uuid or record.uuid.lower(),
            major=record.major,
            minor=record.minor,
            rssi=rssi_at_distance(distance, record.tx_power_at_1m, n),
        ))
    return batch


# =============================================================================
# Route Fixtures
# =============================================================================


@pytest.fixture
def l_route() -> List[RoutePoint]:
    """
    L-shaped route in map pixels: (0,0) -> (100,0) -> (100,100).

    With a 100x100 px map of a 10x10 m floor, pixels_per_meter is 10.
    """
    return [RoutePoint(0.0, 0.0), RoutePoint(100.0, 0.0), RoutePoint(100.0, 100.0)]


# Map/real dimensions giving 10 px/m
SCALE_10_PX_PER_M = (100.0, 100.0, 10.0, 10.0)


# =============================================================================
# Sensor / Clock Fixtures
# =============================================================================


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def accel_stream() -> SensorStream:
    return SensorStream("accelerometer")


@pytest.fixture
def mag_stream() -> SensorStream:
    return SensorStream("magnetometer")


# =============================================================================
# Fake Remote Services
# =============================================================================


class FakeFixService:
    """
    Stand-in for the remote fix service.

    Returns `fix` (or raises `error`); when `gate` is set, each call waits
    for it so tests can interleave events with an in-flight request.
    """

    def __init__(self, fix: Optional[PositionFix] = None, error: Optional[Exception] = None):
        self.fix = fix or PositionFix(x=30.0, y=0.0, building_id="B1", floor_id="F2", valid=True)
        self.error = error
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[List[dict]] = []

    async def __call__(self, payload: List[dict]) -> PositionFix:
        self.calls.append(payload)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.fix


class FakeRouteService:
    """Stand-in for the remote route service."""

    def __init__(self, route: Optional[List[RoutePoint]] = None, error: Optional[Exception] = None):
        self.route = route
        self.error = error
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[RouteRequest] = []

    async def __call__(self, request: RouteRequest) -> RouteResponse:
        self.calls.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        points = self.route or [
            RoutePoint(request.start_x, request.start_y),
            RoutePoint(request.dest_x, request.start_y),
            RoutePoint(request.dest_x, request.dest_y),
        ]
        return RouteResponse(route=points, total_distance=0.0)


class RecordingStore:
    """Collects everything published to the app-wide state."""

    def __init__(self):
        self.locations = []
        self.routes = []
        self.deviations = []
        self.scan_stops = 0

    def publish_user_location(self, location):
        self.locations.append(location)

    def publish_route(self, route):
        self.routes.append(route)

    def on_deviation(self, location):
        self.deviations.append(location)

    def stop_scanning(self):
        self.scan_stops += 1


# =============================================================================
# Helper Functions
# =============================================================================


def calculate_distance_2d(p1: Tuple[float, float], p2: Tuple[float, float]) -> float:
    """Euclidean distance between two 2D points."""
    return math.hypot(p1[0] - p2[0], p1[1] - p2[1])
