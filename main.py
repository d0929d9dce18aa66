"""
Indoor tracking replay

Replays a synthetic session end to end: one beacon scan batch -> fix ->
route -> simulated footsteps, printing every published location.
"""

import sys
import asyncio
import logging
import argparse
from typing import List, Optional

import config
from ips_core.io import SensorStream
from ips_core.proto import (
    AccelerationSample,
    BeaconObservation,
    BeaconRecord,
    FloorMetadata,
    MagneticSample,
    PositionFix,
    RoutePoint,
    RouteRequest,
    RouteResponse,
    UserLocation,
    beacon_key,
)
from ips_core.localization import (
    IndoorTracker,
    TrackingConfig,
    TrilaterationSolver,
    TrilaterationConfig,
    rssi_at_distance,
    route_length,
)
from ips_core.domain import AcquisitionController
from ips_core.metrics import get_metrics

logger = logging.getLogger(__name__)


class SimulatedClock:
    """Monotonic clock advanced by the replay loop."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class SimulatedBackend:
    """In-process stand-in for the positioning and navigation services."""

    def __init__(self, sim_config: dict, path_loss_exponent: float):
        self.sim_config = sim_config
        self.records = [
            BeaconRecord(
                uuid=sim_config["beacon_uuid"],
                major=1,
                minor=minor,
                x=pos["x"],
                y=pos["y"],
                tx_power_at_1m=sim_config["tx_power_dbm"],
            )
            for minor, pos in sim_config["beacons"].items()
        ]
        self._by_key = {r.key: r for r in self.records}
        self._solver = TrilaterationSolver(
            TrilaterationConfig(path_loss_exponent=path_loss_exponent)
        )
        self.path_loss_exponent = path_loss_exponent

    def observe(self, x: float, y: float, timestamp: float = 0.0) -> List[BeaconObservation]:
        """Noise-free scan batch as seen from (x, y)."""
        batch = []
        for record in self.records:
            distance = max(((record.x - x) ** 2 + (record.y - y) ** 2) ** 0.5, 1e-3)
            batch.append(BeaconObservation(
                uuid=record.uuid.lower(),
                major=record.major,
                minor=record.minor,
                rssi=rssi_at_distance(distance, record.tx_power_at_1m, self.path_loss_exponent),
                timestamp=timestamp,
            ))
        return batch

    async def compute_fix(self, payload: List[dict]) -> PositionFix:
        ranged = []
        for entry in payload:
            record = self._by_key.get(beacon_key(entry["uuid"], entry["major"], entry["minor"]))
            if record is not None:
                ranged.append((record, float(entry["rssi"])))

        result = self._solver.solve(ranged)
        if result is None:
            return PositionFix(
                x=float("nan"),
                y=float("nan"),
                building_id=self.sim_config["building_id"],
                floor_id=self.sim_config["floor_id"],
                valid=False,
                error_message="No solution for beacon geometry",
            )

        return PositionFix(
            x=result.x,
            y=result.y,
            building_id=self.sim_config["building_id"],
            floor_id=self.sim_config["floor_id"],
            valid=True,
        )

    async def compute_route(self, request: RouteRequest) -> RouteResponse:
        points = [
            RoutePoint(request.start_x, request.start_y),
            RoutePoint(request.dest_x, request.start_y),
            RoutePoint(request.dest_x, request.dest_y),
        ]
        return RouteResponse(route=points, total_distance=route_length(points))

    def floor(self, building_id: str, floor_id: str) -> Optional[FloorMetadata]:
        return FloorMetadata(
            floor_id=floor_id,
            map_width_px=self.sim_config["map_width_px"],
            map_height_px=self.sim_config["map_height_px"],
            real_width_m=self.sim_config["real_width_m"],
            real_height_m=self.sim_config["real_height_m"],
        )


async def run_simulation(
    steps: int,
    tracking_config: Optional[TrackingConfig] = None,
    sim_config: Optional[dict] = None,
) -> List[UserLocation]:
    """
    Run one replay session.

    Args:
        steps: Number of footsteps to simulate after navigation starts
        tracking_config: Tracker configuration (defaults from config.py)
        sim_config: Synthetic floor (defaults from config.py)

    Returns:
        Every location published to the app state, in order
    """
    tracking_config = tracking_config or TrackingConfig.from_dict(config.TRACKING_CONFIG)
    sim_config = sim_config or config.SIMULATION_CONFIG

    backend = SimulatedBackend(sim_config, tracking_config.path_loss_exponent)
    clock = SimulatedClock()
    accelerometer = SensorStream("accelerometer")
    magnetometer = SensorStream("magnetometer")
    published: List[UserLocation] = []

    tracker = IndoorTracker(
        tracking_config,
        motion_stream=accelerometer,
        heading_stream=magnetometer,
        clock=clock,
    )
    controller = AcquisitionController(
        tracker,
        compute_fix=backend.compute_fix,
        compute_route=backend.compute_route,
        publish_user_location=published.append,
        publish_route=lambda route: logger.info(
            f"Route published: {route.num_points if route else 0} points"
        ),
        floor_provider=backend.floor,
    )

    controller.start_session(
        rssi_threshold_dbm=sim_config.get("rssi_threshold_dbm"),
        beacon_records=backend.records,
    )

    start = sim_config["true_start"]
    await controller.handle_observations(backend.observe(start["x"], start["y"]))
    if not controller.is_fix_locked:
        logger.error(f"No fix acquired: {controller.position_error}")
        return published

    destination = sim_config["destination"]
    route = await controller.navigate_to(destination["x"], destination["y"])
    if route is None:
        return published

    interval_s = tracking_config.motion_interval_ms / 1000.0
    for _ in range(steps):
        # Quiet sample, then a peak
        for sample in (AccelerationSample(0.0, 0.0, 1.0), AccelerationSample(0.3, 0.4, 1.4)):
            clock.advance(interval_s * 2)
            accelerometer.emit(sample)
        magnetometer.emit(MagneticSample(1.0, 0.0))

    controller.clear_session()
    return published


def main():
    parser = argparse.ArgumentParser(description="Indoor beacon + PDR tracking replay")
    parser.add_argument("--steps", type=int, default=20, help="footsteps to simulate")
    parser.add_argument("--debug", action="store_true", help="enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, config.LOGGING_CONFIG["level"]),
        format=config.LOGGING_CONFIG["format"]
    )
    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    published = asyncio.run(run_simulation(args.steps))

    for location in published:
        print(f"[{location.source.value:6s}] ({location.x:8.2f}, {location.y:8.2f}) "
              f"{location.building_id}/{location.floor_id}")

    metrics = get_metrics()
    metrics.print_summary()

    applied = metrics.get_counter('dead_reckoning_steps')
    if applied < args.steps:
        skipped = sum(metrics.get_drop_count(reason) for reason in ('no_anchor', 'no_route', 'invalid_step'))
        logger.warning(f"Only {applied}/{args.steps} footsteps moved the position ({skipped} skipped)")
    return 0 if published else 1


if __name__ == "__main__":
    sys.exit(main())
