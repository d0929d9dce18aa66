"""
Indoor Route Tracker.

Owns one tracking session: per-axis Kalman smoothing of beacon positions,
the route polyline and progress cursor, the map scale, the heading estimate
and the outbound callbacks.

Positions come from two sources:
- beacon: 3-beacon trilateration -> Kalman -> snap to route
- sensor: each detected footstep advances the cursor along the route

Dead reckoning is route-constrained only. Magnetometer heading is too noisy
indoors for free-heading integration, so without a route a footstep is
skipped rather than moving the position.

Phases: IDLE -> ANCHORED -> ROUTE_TRACKING
"""

from typing import Callable, Dict, Iterable, List, Optional, Tuple
from dataclasses import dataclass, fields, replace
from enum import IntEnum
import logging
import math
import time

from ips_core.io.sensor_streams import SensorStream, SensorSubscription
from ips_core.proto.beacon import BeaconObservation, BeaconRecord
from ips_core.proto.position_fix import PositionSource, TrackPosition
from ips_core.proto.route import RoutePoint, RouteProgress
from ips_core.proto.sensor_sample import AccelerationSample, MagneticSample
from ips_core.localization.kalman_1d import ScalarKalmanFilter
from ips_core.localization.map_scale import DEFAULT_PIXELS_PER_METER, resolve_pixels_per_meter
from ips_core.localization.motion_sensing import (
    HeadingEstimator,
    StepDetector,
    StepDetectorConfig,
)
from ips_core.localization.route_geometry import advance_along_route, project_to_route
from ips_core.localization.trilateration import TrilaterationConfig, TrilaterationSolver
from ips_core.metrics import get_metrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrackingConfig:
    """
    Tracking parameters. Immutable; replaced as a whole.

    Attributes:
        scan_interval_ms: Beacon scan batch interval (ms)
        step_length_m: Assumed stride length (m)
        min_step_px: Lower bound on one step in map pixels
        rssi_threshold_dbm: Weakest usable beacon RSSI (dBm)
        path_loss_exponent: n in the log-distance path-loss model
        kalman_process_noise: q for the per-axis Kalman filters
        kalman_measurement_noise: r for the per-axis Kalman filters
        deviation_threshold_m: Distance from route that signals deviation (m)
        snap_tolerance_m: Distance from route within which positions snap (m)
        step_accel_threshold: Acceleration magnitude for a step peak
        step_refractory_s: Minimum time between steps (s)
        heading_smoothing: Weight of each new heading sample
        motion_interval_ms: Requested accelerometer interval (ms)
        heading_interval_ms: Requested magnetometer interval (ms)
    """

    scan_interval_ms: int = 500
    step_length_m: float = 0.7
    min_step_px: float = 2.0
    rssi_threshold_dbm: float = -100.0
    path_loss_exponent: float = 2.5
    kalman_process_noise: float = 0.01
    kalman_measurement_noise: float = 2.0
    deviation_threshold_m: float = 2.0
    snap_tolerance_m: float = 1.5
    step_accel_threshold: float = 1.2
    step_refractory_s: float = 0.35
    heading_smoothing: float = 0.2
    motion_interval_ms: int = 100
    heading_interval_ms: int = 200

    def __post_init__(self):
        """Validate configuration."""
        if not self.path_loss_exponent > 0:
            raise ValueError(f"path_loss_exponent must be positive: {self.path_loss_exponent}")

        if self.kalman_process_noise < 0:
            raise ValueError(f"kalman_process_noise cannot be negative: {self.kalman_process_noise}")

        if not self.kalman_measurement_noise > 0:
            raise ValueError(
                f"kalman_measurement_noise must be positive: {self.kalman_measurement_noise}"
            )

    @classmethod
    def from_dict(cls, data: dict) -> 'TrackingConfig':
        """Build config from a settings dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


class TrackerPhase(IntEnum):
    """Tracking phase, derived from tracker state."""

    IDLE = 0            # No position yet
    ANCHORED = 1        # Position known, not consuming footsteps
    ROUTE_TRACKING = 2  # Route + cursor active, sensors attached


class IndoorTracker:
    """
    Beacon + route-constrained PDR tracker.

    Usage:
        tracker = IndoorTracker(config, motion_stream=accel, heading_stream=mag)
        tracker.set_beacons(records)
        tracker.set_position_callback(on_position)
        tracker.set_deviation_callback(on_deviation)

        tracker.set_anchor_position(fix.x, fix.y)
        tracker.set_route(route.route, map_w_px, map_h_px, real_w_m, real_h_m)
        tracker.start_sensors()
        ...
        tracker.stop_sensors()

    Callbacks are single-slot: registering again replaces the previous one.
    """

    def __init__(
        self,
        config: Optional[TrackingConfig] = None,
        motion_stream: Optional[SensorStream] = None,
        heading_stream: Optional[SensorStream] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize tracker.

        Args:
            config: Tracking configuration (uses defaults if None)
            motion_stream: Accelerometer sample stream
            heading_stream: Magnetometer sample stream
            clock: Monotonic clock for step timing (seconds)
        """
        self.config = config or TrackingConfig()
        self.metrics = get_metrics()

        self.motion_stream = motion_stream
        self.heading_stream = heading_stream
        self._clock = clock

        self._beacon_map: Dict[str, BeaconRecord] = {}

        self.kalman_x = ScalarKalmanFilter(
            self.config.kalman_process_noise, self.config.kalman_measurement_noise
        )
        self.kalman_y = ScalarKalmanFilter(
            self.config.kalman_process_noise, self.config.kalman_measurement_noise
        )
        self.solver = TrilaterationSolver(
            TrilaterationConfig(path_loss_exponent=self.config.path_loss_exponent)
        )
        self.step_detector = StepDetector(self._step_config(), clock=self._clock)
        self.heading = HeadingEstimator(self.config.heading_smoothing)

        self.last_position: Optional[Tuple[float, float]] = None
        self.route: List[RoutePoint] = []
        self.route_progress: Optional[RouteProgress] = None
        self.pixels_per_meter = DEFAULT_PIXELS_PER_METER
        self.map_dimensions: Tuple = (None, None, None, None)

        self._on_position: Optional[Callable[[TrackPosition], None]] = None
        self._on_deviation: Optional[Callable[[], None]] = None

        self._motion_sub: Optional[SensorSubscription] = None
        self._heading_sub: Optional[SensorSubscription] = None

    def _step_config(self) -> StepDetectorConfig:
        return StepDetectorConfig(
            accel_threshold=self.config.step_accel_threshold,
            refractory_s=self.config.step_refractory_s,
        )

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set_config(self, **overrides):
        """
        Replace the configuration with a copy carrying `overrides`.

        Kalman noise and step thresholds are updated in place; estimates
        and the last step time are kept.
        """
        self.config = replace(self.config, **overrides)
        self.kalman_x.set_noise(self.config.kalman_process_noise, self.config.kalman_measurement_noise)
        self.kalman_y.set_noise(self.config.kalman_process_noise, self.config.kalman_measurement_noise)
        self.solver = TrilaterationSolver(
            TrilaterationConfig(path_loss_exponent=self.config.path_loss_exponent)
        )
        self.step_detector.config = self._step_config()
        self.heading.smoothing = self.config.heading_smoothing

    def set_beacons(self, records: Iterable[BeaconRecord]):
        """Replace the known-beacon map (keyed case-insensitively)."""
        self._beacon_map = {record.key: record for record in records}
        logger.info(f"Loaded {len(self._beacon_map)} beacon records")

    def get_beacon(self, key: str) -> Optional[BeaconRecord]:
        return self._beacon_map.get(key.upper())

    def set_position_callback(self, callback: Optional[Callable[[TrackPosition], None]]):
        self._on_position = callback

    def set_deviation_callback(self, callback: Optional[Callable[[], None]]):
        self._on_deviation = callback

    # ------------------------------------------------------------------
    # Session state
    # ------------------------------------------------------------------

    @property
    def heading_rad(self) -> float:
        return self.heading.heading_rad

    @property
    def has_route(self) -> bool:
        return len(self.route) >= 2

    @property
    def sensors_active(self) -> bool:
        return self._motion_sub is not None or self._heading_sub is not None

    @property
    def phase(self) -> TrackerPhase:
        if self.last_position is None:
            return TrackerPhase.IDLE
        if self.has_route and self.sensors_active:
            return TrackerPhase.ROUTE_TRACKING
        return TrackerPhase.ANCHORED

    def set_route(
        self,
        points: Iterable[RoutePoint],
        map_width_px,
        map_height_px,
        real_width_m,
        real_height_m,
    ):
        """
        Set the route and map scale for dead reckoning.

        Args:
            points: Route polyline (non-finite vertices are dropped)
            map_width_px: Map image width in pixels
            map_height_px: Map image height in pixels
            real_width_m: Real-world floor width in meters
            real_height_m: Real-world floor height in meters

        Notes:
            - The last known position is re-projected onto the new route so
              accumulated progress is kept across route changes
            - Invalid scale inputs fall back to DEFAULT_PIXELS_PER_METER
        """
        self.route = [p for p in (points or []) if p is not None and p.is_finite]

        if not self.has_route:
            self.route_progress = None
        elif self.last_position is not None:
            projection = project_to_route(self.last_position[0], self.last_position[1], self.route)
            self.route_progress = projection.progress if projection else None

        self.map_dimensions = (map_width_px, map_height_px, real_width_m, real_height_m)
        scale = resolve_pixels_per_meter(map_width_px, map_height_px, real_width_m, real_height_m)
        self.pixels_per_meter = scale.pixels_per_meter
        if scale.used_fallback:
            self.metrics.increment('scale_fallbacks')

        logger.info(
            f"Route set: {len(self.route)} points, "
            f"pixels_per_meter={self.pixels_per_meter:.3f}, progress={self.route_progress}"
        )

    def set_anchor_position(self, x: float, y: float):
        """
        Set the ground-truth starting position.

        Both Kalman filters are reset to (x, y) so the anchor is not smoothed.
        Non-finite anchors are ignored.
        """
        if not (math.isfinite(x) and math.isfinite(y)):
            logger.warning(f"Ignoring non-finite anchor ({x}, {y})")
            self.metrics.increment_drop('invalid_position')
            return

        self.last_position = (x, y)
        if self.has_route:
            projection = project_to_route(x, y, self.route)
            self.route_progress = projection.progress if projection else None
        else:
            self.route_progress = None

        self.kalman_x.reset(x)
        self.kalman_y.reset(y)
        logger.info(f"Anchor set at ({x:.2f}, {y:.2f}), progress={self.route_progress}")

    def reset(self):
        """Stop sensors and discard all session state."""
        self.stop_sensors()
        self.last_position = None
        self.route = []
        self.route_progress = None
        self.pixels_per_meter = DEFAULT_PIXELS_PER_METER
        self.kalman_x.clear()
        self.kalman_y.clear()
        self.step_detector.reset()
        self.heading.reset()

    # ------------------------------------------------------------------
    # Sensors
    # ------------------------------------------------------------------

    def start_sensors(self):
        """Attach to the motion and heading streams (re-attaching if needed)."""
        self.stop_sensors()

        if self.motion_stream is not None and self.motion_stream.is_available():
            self.motion_stream.set_update_interval(self.config.motion_interval_ms)
            self._motion_sub = self.motion_stream.add_listener(self._on_motion_sample)
        else:
            logger.warning("Motion stream unavailable; footsteps will not be detected")

        if self.heading_stream is not None and self.heading_stream.is_available():
            self.heading_stream.set_update_interval(self.config.heading_interval_ms)
            self._heading_sub = self.heading_stream.add_listener(self._on_heading_sample)
        else:
            logger.warning("Heading stream unavailable")

        logger.info(f"Sensors started (phase={self.phase.name})")

    def stop_sensors(self):
        """Detach from sensor streams. Idempotent."""
        if self._motion_sub is not None:
            self._motion_sub.remove()
        if self._heading_sub is not None:
            self._heading_sub.remove()
        self._motion_sub = None
        self._heading_sub = None

    def _on_motion_sample(self, sample: AccelerationSample):
        if self.step_detector.process(sample):
            self.apply_dead_reckoning_step()

    def _on_heading_sample(self, sample: MagneticSample):
        self.heading.process(sample)

    # ------------------------------------------------------------------
    # Beacon positioning
    # ------------------------------------------------------------------

    def ingest_beacon_observations(self, observations: Iterable[BeaconObservation]):
        """
        Fuse one scan batch.

        Observations below the RSSI threshold or without a known record are
        ignored; fewer than 3 remaining is a silent skip.
        """
        self.metrics.increment('beacon_batches_in')

        usable = [
            obs for obs in observations
            if obs.effective_rssi >= self.config.rssi_threshold_dbm
        ]

        resolved = []
        for obs in usable:
            record = self._beacon_map.get(obs.key)
            if record is not None:
                resolved.append((record, obs.effective_rssi))

        if len(resolved) < 3:
            self.metrics.increment_drop('insufficient_beacons')
            logger.debug(
                f"Insufficient beacons: {len(usable)} above threshold, {len(resolved)} known"
            )
            return

        strongest = sorted(resolved, key=lambda pair: pair[1], reverse=True)[:3]
        result = self.solver.solve(strongest)
        if result is None:
            return

        filtered_x = self.kalman_x.update(result.x)
        filtered_y = self.kalman_y.update(result.y)
        snapped_x, snapped_y = self.snap_to_route(filtered_x, filtered_y)

        self.metrics.increment('beacon_positions')
        self._update_position(snapped_x, snapped_y, PositionSource.BEACON)

    # ------------------------------------------------------------------
    # Dead reckoning
    # ------------------------------------------------------------------

    def apply_dead_reckoning_step(self):
        """Advance the position one stride along the route."""
        if self.last_position is None:
            self.metrics.increment_drop('no_anchor')
            logger.debug("Step ignored: no anchor position")
            return

        raw_step_px = self.config.step_length_m * self.pixels_per_meter
        step_px = max(raw_step_px, self.config.min_step_px)
        if not math.isfinite(step_px) or step_px <= 0:
            self.metrics.increment_drop('invalid_step')
            logger.warning(
                f"Skipping dead-reckoning step: invalid step_px={step_px} "
                f"(step_length_m={self.config.step_length_m}, "
                f"pixels_per_meter={self.pixels_per_meter})"
            )
            return

        if not self.has_route:
            self.metrics.increment_drop('no_route')
            logger.warning("Route unavailable; skipping sensor step to avoid drift")
            return

        progress = self.route_progress
        if progress is None:
            projection = project_to_route(self.last_position[0], self.last_position[1], self.route)
            if projection is None:
                self.metrics.increment_drop('no_route')
                logger.warning("Could not project to route; skipping sensor step")
                return
            progress = projection.progress

        advance = advance_along_route(progress, step_px, self.route)
        self.route_progress = advance.progress

        self.metrics.increment('dead_reckoning_steps')
        self.metrics.record_histogram('step_px', step_px)
        logger.debug(
            f"Step: {step_px:.2f}px, heading={self.heading_rad:.3f}rad, "
            f"progress=({advance.progress.segment_index}, {advance.progress.t:.3f})"
        )
        self._update_position(advance.x, advance.y, PositionSource.SENSOR)

    # ------------------------------------------------------------------
    # Route snapping
    # ------------------------------------------------------------------

    def snap_to_route(self, x: float, y: float) -> Tuple[float, float]:
        """
        Correct a position toward the route.

        Returns:
            Snapped point if within snap tolerance, otherwise the input.
            The deviation callback fires once when the distance exceeds the
            deviation threshold.
        """
        if not (math.isfinite(x) and math.isfinite(y)):
            return self.last_position if self.last_position is not None else (0.0, 0.0)

        projection = project_to_route(x, y, self.route)
        if projection is None:
            return (x, y)

        if math.isfinite(self.pixels_per_meter) and self.pixels_per_meter > 0:
            dist_m = math.sqrt(projection.squared_distance) / self.pixels_per_meter
        else:
            dist_m = math.inf

        self.metrics.record_histogram('snap_deviation_m', dist_m)

        if dist_m > self.config.deviation_threshold_m:
            self.metrics.increment('route_deviations')
            logger.info(f"Route deviation: {dist_m:.2f}m from route")
            if self._on_deviation is not None:
                self._on_deviation()

        if dist_m <= self.config.snap_tolerance_m:
            return (projection.x, projection.y)
        return (x, y)

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def _update_position(self, x: float, y: float, source: PositionSource):
        if not (math.isfinite(x) and math.isfinite(y)):
            self.metrics.increment_drop('invalid_position')
            logger.warning(f"Ignoring invalid position ({x}, {y}) from {source.value}")
            return

        self.last_position = (x, y)
        self.metrics.increment('positions_emitted')
        logger.debug(f"Position ({x:.2f}, {y:.2f}) from {source.value}")

        if self._on_position is not None:
            self._on_position(TrackPosition(x=x, y=y, source=source, timestamp=time.time()))
