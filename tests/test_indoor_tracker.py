"""
Unit tests for IndoorTracker.

Tests cover:
- Configuration and map scale resolution
- Beacon batch fusion (threshold, known-beacon resolution, Kalman)
- Route-constrained dead reckoning
- Snap-to-route and deviation reporting
- Sensor stream lifecycle and phases
"""

import math

import pytest

from ips_core.io import SensorStream
from ips_core.proto import (
    AccelerationSample,
    BeaconObservation,
    BeaconRecord,
    MagneticSample,
    PositionSource,
    RoutePoint,
    RouteProgress,
)
from ips_core.localization import IndoorTracker, TrackingConfig, TrackerPhase
from ips_core.metrics import get_metrics

from conftest import (
    BEACON_UUID,
    SCALE_10_PX_PER_M,
    TX_POWER,
    calculate_distance_2d,
    observations_at,
)


class Recorder:
    """Collects tracker callback invocations."""

    def __init__(self):
        self.positions = []
        self.deviations = 0

    def on_position(self, position):
        self.positions.append(position)

    def on_deviation(self):
        self.deviations += 1


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def tracker(triangle_records, recorder, accel_stream, mag_stream, clock):
    t = IndoorTracker(motion_stream=accel_stream, heading_stream=mag_stream, clock=clock)
    t.set_beacons(triangle_records)
    t.set_position_callback(recorder.on_position)
    t.set_deviation_callback(recorder.on_deviation)
    return t


@pytest.fixture
def routed_tracker(tracker, l_route):
    """Tracker anchored at the start of the L route at 10 px/m."""
    tracker.set_anchor_position(0.0, 0.0)
    tracker.set_route(l_route, *SCALE_10_PX_PER_M)
    return tracker


# =============================================================================
# Configuration
# =============================================================================


class TestTrackingConfig:
    """Tests for TrackingConfig."""

    def test_defaults(self):
        config = TrackingConfig()

        assert config.step_length_m == 0.7
        assert config.min_step_px == 2.0
        assert config.deviation_threshold_m == 2.0
        assert config.snap_tolerance_m == 1.5
        assert config.rssi_threshold_dbm == -100.0
        assert config.path_loss_exponent == 2.5

    @pytest.mark.parametrize("overrides", [
        {"path_loss_exponent": 0.0},
        {"kalman_process_noise": -0.1},
        {"kalman_measurement_noise": 0.0},
    ])
    def test_invalid_values_rejected(self, overrides):
        with pytest.raises(ValueError):
            TrackingConfig(**overrides)

    def test_from_dict_ignores_unknown_keys(self):
        config = TrackingConfig.from_dict({"step_length_m": 0.8, "wifi_enabled": True})

        assert config.step_length_m == 0.8

    def test_set_config_updates_components(self, tracker):
        tracker.kalman_x.reset(4.0)

        tracker.set_config(kalman_measurement_noise=0.5, rssi_threshold_dbm=-80.0)

        assert tracker.config.rssi_threshold_dbm == -80.0
        assert tracker.kalman_x.r == 0.5
        assert tracker.kalman_y.r == 0.5
        assert tracker.kalman_x.estimate == 4.0

    def test_set_config_validates(self, tracker):
        with pytest.raises(ValueError):
            tracker.set_config(path_loss_exponent=-1.0)

    def test_set_config_keeps_refractory_window(self, tracker):
        """A config change mid-stride must not allow a double-counted step."""
        peak = AccelerationSample(0.3, 0.4, 1.4)
        detector = tracker.step_detector
        assert detector.process(peak)

        tracker.set_config(step_length_m=0.8)

        assert tracker.step_detector is detector
        assert not tracker.step_detector.process(peak)

    def test_set_config_updates_step_threshold(self, tracker):
        tracker.set_config(step_accel_threshold=2.0, step_refractory_s=0.5)

        assert tracker.step_detector.config.accel_threshold == 2.0
        assert tracker.step_detector.config.refractory_s == 0.5
        assert not tracker.step_detector.process(AccelerationSample(0.3, 0.4, 1.4))


# =============================================================================
# Route and Scale
# =============================================================================


class TestSetRoute:
    """Tests for set_route."""

    def test_pixels_per_meter_average(self, tracker, l_route):
        tracker.set_route(l_route, 200.0, 100.0, 20.0, 20.0)

        assert tracker.pixels_per_meter == pytest.approx(7.5)

    def test_invalid_dimensions_fall_back(self, tracker, l_route):
        tracker.set_route(l_route, None, 100.0, 0.0, 10.0)

        assert tracker.pixels_per_meter == 10.0
        assert get_metrics().get_counter('scale_fallbacks') == 1

    def test_non_finite_points_dropped(self, tracker):
        points = [RoutePoint(0.0, 0.0), RoutePoint(float('nan'), 5.0), RoutePoint(10.0, 0.0)]

        tracker.set_route(points, *SCALE_10_PX_PER_M)

        assert tracker.route == [RoutePoint(0.0, 0.0), RoutePoint(10.0, 0.0)]
        assert tracker.has_route

    def test_reprojects_last_position(self, tracker, l_route):
        tracker.set_anchor_position(100.0, 40.0)
        assert tracker.route_progress is None

        tracker.set_route(l_route, *SCALE_10_PX_PER_M)

        assert tracker.route_progress.segment_index == 1
        assert tracker.route_progress.t == pytest.approx(0.4)

    def test_single_point_route_clears_progress(self, routed_tracker):
        routed_tracker.set_route([RoutePoint(5.0, 5.0)], *SCALE_10_PX_PER_M)

        assert not routed_tracker.has_route
        assert routed_tracker.route_progress is None


class TestSetAnchorPosition:
    """Tests for set_anchor_position."""

    def test_anchor_seeds_kalman(self, tracker):
        tracker.kalman_x.update(900.0)

        tracker.set_anchor_position(12.0, 34.0)

        assert tracker.kalman_x.estimate == 12.0
        assert tracker.kalman_y.estimate == 34.0
        assert tracker.kalman_x.error_covariance == 1.0
        assert tracker.last_position == (12.0, 34.0)

    def test_anchor_projects_onto_route(self, tracker, l_route):
        tracker.set_route(l_route, *SCALE_10_PX_PER_M)

        tracker.set_anchor_position(30.0, 3.0)

        assert tracker.route_progress == RouteProgress(0, 0.3)

    def test_non_finite_anchor_ignored(self, tracker):
        tracker.set_anchor_position(float('nan'), 1.0)

        assert tracker.last_position is None
        assert get_metrics().get_drop_count('invalid_position') == 1


# =============================================================================
# Beacon Fusion
# =============================================================================


class TestBeaconIngestion:
    """Tests for ingest_beacon_observations."""

    def test_first_fix_is_exact(self, tracker, triangle_records, recorder):
        tracker.ingest_beacon_observations(observations_at(triangle_records, 3.0, 4.0))

        assert len(recorder.positions) == 1
        position = recorder.positions[0]
        assert position.source == PositionSource.BEACON
        assert calculate_distance_2d((position.x, position.y), (3.0, 4.0)) < 1e-6

    def test_repeated_batches_stay_on_target(self, tracker, triangle_records):
        for _ in range(10):
            tracker.ingest_beacon_observations(observations_at(triangle_records, 3.0, 4.0))

        assert calculate_distance_2d(tracker.last_position, (3.0, 4.0)) < 0.5

    def test_kalman_smooths_after_anchor(self, tracker, triangle_records):
        """With the filter anchored elsewhere, a fix is pulled toward the anchor."""
        tracker.set_anchor_position(0.0, 0.0)

        tracker.ingest_beacon_observations(observations_at(triangle_records, 3.0, 4.0))

        x, y = tracker.last_position
        assert 0.0 < x < 3.0
        assert 0.0 < y < 4.0

    def test_fewer_than_three_known_is_noop(self, tracker, triangle_records, recorder):
        tracker.set_beacons(triangle_records[:2])

        tracker.ingest_beacon_observations(observations_at(triangle_records, 3.0, 4.0))

        assert recorder.positions == []
        assert tracker.last_position is None
        assert get_metrics().get_drop_count('insufficient_beacons') == 1

    def test_threshold_filters_weak_beacons(self, tracker, triangle_records, recorder):
        """At (3,4) beacon B is ~8.1 units away (~-81.7 dBm)."""
        tracker.set_config(rssi_threshold_dbm=-80.0)

        tracker.ingest_beacon_observations(observations_at(triangle_records, 3.0, 4.0))

        assert recorder.positions == []

    def test_unknown_beacons_ignored(self, tracker, triangle_records):
        batch = observations_at(triangle_records, 3.0, 4.0)
        batch.append(BeaconObservation(uuid="ffffffff-0000-0000-0000-000000000000",
                                       major=1, minor=1, rssi=-40.0))

        tracker.ingest_beacon_observations(batch)

        assert tracker.last_position == pytest.approx((3.0, 4.0))

    def test_three_strongest_known_used(self, tracker, triangle_records):
        far = BeaconRecord(BEACON_UUID.upper(), 100, 4, 50.0, 50.0, TX_POWER)
        tracker.set_beacons(triangle_records + [far])
        batch = observations_at(triangle_records, 3.0, 4.0)
        batch.append(BeaconObservation(uuid=BEACON_UUID, major=100, minor=4, rssi=-99.0))

        tracker.ingest_beacon_observations(batch)

        assert tracker.last_position == pytest.approx((3.0, 4.0))

    def test_average_rssi_preferred(self, tracker, triangle_records):
        batch = [
            BeaconObservation(obs.uuid, obs.major, obs.minor, rssi=-30.0, avg_rssi=obs.rssi)
            for obs in observations_at(triangle_records, 3.0, 4.0)
        ]

        tracker.ingest_beacon_observations(batch)

        assert tracker.last_position == pytest.approx((3.0, 4.0))

    def test_collinear_beacons_no_position(self, recorder):
        collinear = [
            BeaconRecord(BEACON_UUID.upper(), 1, minor, 5.0 * minor, 0.0, TX_POWER)
            for minor in (1, 2, 3)
        ]
        tracker = IndoorTracker()
        tracker.set_beacons(collinear)
        tracker.set_position_callback(recorder.on_position)

        tracker.ingest_beacon_observations(observations_at(collinear, 7.0, 0.0))

        assert recorder.positions == []
        assert get_metrics().get_drop_count('degenerate_geometry') == 1

    def test_beacon_position_snapped_to_route(self, tracker, triangle_records):
        """A fix 0.4 m (4 px) off a 10 px/m route is snapped onto it."""
        route = [RoutePoint(0.0, 0.0), RoutePoint(0.0, 100.0)]
        tracker.set_route(route, *SCALE_10_PX_PER_M)

        tracker.ingest_beacon_observations(observations_at(triangle_records, 4.0, 6.0))

        assert tracker.last_position == pytest.approx((0.0, 6.0))


# =============================================================================
# Dead Reckoning
# =============================================================================


class TestDeadReckoning:
    """Tests for apply_dead_reckoning_step."""

    def test_no_anchor_skips(self, tracker, recorder):
        tracker.apply_dead_reckoning_step()

        assert recorder.positions == []
        assert get_metrics().get_drop_count('no_anchor') == 1

    def test_no_route_skips(self, tracker, recorder):
        tracker.set_anchor_position(5.0, 5.0)

        tracker.apply_dead_reckoning_step()

        assert recorder.positions == []
        assert tracker.last_position == (5.0, 5.0)
        assert get_metrics().get_drop_count('no_route') == 1

    def test_step_advances_seven_pixels(self, routed_tracker, recorder):
        """0.7 m stride at 10 px/m."""
        routed_tracker.apply_dead_reckoning_step()

        position = recorder.positions[-1]
        assert position.source == PositionSource.SENSOR
        assert (position.x, position.y) == pytest.approx((7.0, 0.0))
        assert routed_tracker.route_progress.t == pytest.approx(0.07)

    def test_min_step_px_floor(self, tracker, l_route, recorder):
        tracker.set_config(step_length_m=0.1)
        tracker.set_anchor_position(0.0, 0.0)
        tracker.set_route(l_route, *SCALE_10_PX_PER_M)

        tracker.apply_dead_reckoning_step()

        assert recorder.positions[-1].x == pytest.approx(2.0)

    def test_non_finite_step_skipped(self, tracker, l_route, recorder):
        tracker.set_config(step_length_m=float('inf'))
        tracker.set_anchor_position(0.0, 0.0)
        tracker.set_route(l_route, *SCALE_10_PX_PER_M)

        tracker.apply_dead_reckoning_step()

        assert recorder.positions == []
        assert get_metrics().get_drop_count('invalid_step') == 1

    def test_steps_turn_the_corner(self, tracker, l_route, recorder):
        tracker.set_anchor_position(97.0, 0.0)
        tracker.set_route(l_route, *SCALE_10_PX_PER_M)

        tracker.apply_dead_reckoning_step()

        assert tracker.last_position == pytest.approx((100.0, 4.0))
        assert tracker.route_progress.segment_index == 1

    def test_off_route_anchor_projects_first(self, tracker, l_route):
        tracker.set_anchor_position(50.0, 5.0)
        tracker.set_route(l_route, *SCALE_10_PX_PER_M)

        tracker.apply_dead_reckoning_step()

        assert tracker.last_position == pytest.approx((57.0, 0.0))

    def test_clamps_at_route_end(self, tracker, l_route, recorder):
        tracker.set_anchor_position(100.0, 95.0)
        tracker.set_route(l_route, *SCALE_10_PX_PER_M)

        tracker.apply_dead_reckoning_step()
        tracker.apply_dead_reckoning_step()

        assert tracker.last_position == (100.0, 100.0)
        assert tracker.route_progress == RouteProgress(1, 1.0)
        assert len(recorder.positions) == 2

    def test_progress_survives_route_change(self, routed_tracker, l_route):
        for _ in range(3):
            routed_tracker.apply_dead_reckoning_step()

        routed_tracker.set_route(l_route, *SCALE_10_PX_PER_M)
        routed_tracker.apply_dead_reckoning_step()

        assert routed_tracker.last_position == pytest.approx((28.0, 0.0))


# =============================================================================
# Snap to Route
# =============================================================================


class TestSnapToRoute:
    """Tests for snap_to_route (10 px/m, deviation 2 m, snap 1.5 m)."""

    def test_on_route_point_unchanged(self, routed_tracker, recorder):
        assert routed_tracker.snap_to_route(50.0, 0.0) == (50.0, 0.0)
        assert recorder.deviations == 0

    def test_near_point_snaps(self, routed_tracker, recorder):
        """1 m off snaps onto the route."""
        assert routed_tracker.snap_to_route(50.0, 10.0) == pytest.approx((50.0, 0.0))
        assert recorder.deviations == 0

    def test_between_tolerances_keeps_raw(self, routed_tracker, recorder):
        """1.8 m off: too far to snap, too close to deviate."""
        assert routed_tracker.snap_to_route(50.0, 18.0) == (50.0, 18.0)
        assert recorder.deviations == 0

    def test_far_point_reports_deviation(self, routed_tracker, recorder):
        """3 m off fires one deviation and keeps the raw point."""
        result = routed_tracker.snap_to_route(50.0, 30.0)

        assert result == (50.0, 30.0)
        assert recorder.deviations == 1
        assert get_metrics().get_counter('route_deviations') == 1

    def test_no_route_returns_input(self, tracker):
        assert tracker.snap_to_route(1.5, 2.5) == (1.5, 2.5)

    def test_non_finite_input(self, tracker, l_route):
        tracker.set_route(l_route, *SCALE_10_PX_PER_M)
        assert tracker.snap_to_route(float('nan'), 0.0) == (0.0, 0.0)

        tracker.set_anchor_position(20.0, 0.0)
        assert tracker.snap_to_route(0.0, float('inf')) == (20.0, 0.0)


# =============================================================================
# Callbacks, Sensors and Phases
# =============================================================================


class TestCallbacks:
    """Tests for single-slot callback registration."""

    def test_position_callback_replaced(self, routed_tracker, recorder):
        second = Recorder()
        routed_tracker.set_position_callback(second.on_position)

        routed_tracker.apply_dead_reckoning_step()

        assert recorder.positions == []
        assert len(second.positions) == 1

    def test_callback_cleared(self, routed_tracker, recorder):
        routed_tracker.set_position_callback(None)

        routed_tracker.apply_dead_reckoning_step()

        assert recorder.positions == []
        assert routed_tracker.last_position == pytest.approx((7.0, 0.0))


class TestSensors:
    """Tests for sensor stream lifecycle."""

    def test_start_sensors_subscribes_once(self, routed_tracker, accel_stream, mag_stream):
        routed_tracker.start_sensors()
        routed_tracker.start_sensors()

        assert accel_stream.listener_count == 1
        assert mag_stream.listener_count == 1
        assert accel_stream.update_interval_ms == 100
        assert mag_stream.update_interval_ms == 200

    def test_stop_sensors_idempotent(self, routed_tracker, accel_stream, mag_stream):
        routed_tracker.start_sensors()

        routed_tracker.stop_sensors()
        routed_tracker.stop_sensors()

        assert accel_stream.listener_count == 0
        assert mag_stream.listener_count == 0
        assert not routed_tracker.sensors_active

    def test_unavailable_stream_skipped(self, mag_stream):
        tracker = IndoorTracker(
            motion_stream=SensorStream("accelerometer", available=False),
            heading_stream=mag_stream,
        )

        tracker.start_sensors()

        assert tracker.motion_stream.listener_count == 0
        assert mag_stream.listener_count == 1

    def test_accelerometer_peak_moves_position(self, routed_tracker, accel_stream, clock, recorder):
        routed_tracker.start_sensors()

        accel_stream.emit(AccelerationSample(0.0, 0.0, 1.0))
        assert recorder.positions == []

        accel_stream.emit(AccelerationSample(0.3, 0.4, 1.4))
        accel_stream.emit(AccelerationSample(0.3, 0.4, 1.4))  # refractory
        clock.advance(0.4)
        accel_stream.emit(AccelerationSample(0.3, 0.4, 1.4))

        assert [p.x for p in recorder.positions] == pytest.approx([7.0, 14.0])
        assert all(p.source == PositionSource.SENSOR for p in recorder.positions)

    def test_heading_updates_from_stream(self, routed_tracker, mag_stream):
        routed_tracker.start_sensors()

        mag_stream.emit(MagneticSample(0.0, 1.0))

        assert routed_tracker.heading_rad == pytest.approx(0.2 * math.pi / 2)

    def test_heading_does_not_move_position(self, routed_tracker, mag_stream, recorder):
        routed_tracker.start_sensors()

        for _ in range(5):
            mag_stream.emit(MagneticSample(-1.0, 0.0))

        assert recorder.positions == []


class TestPhase:
    """Tests for phase transitions and reset."""

    def test_phase_progression(self, tracker, l_route):
        assert tracker.phase == TrackerPhase.IDLE

        tracker.set_anchor_position(0.0, 0.0)
        assert tracker.phase == TrackerPhase.ANCHORED

        tracker.set_route(l_route, *SCALE_10_PX_PER_M)
        tracker.start_sensors()
        assert tracker.phase == TrackerPhase.ROUTE_TRACKING

    def test_reset_returns_to_idle(self, routed_tracker, accel_stream):
        routed_tracker.start_sensors()
        routed_tracker.apply_dead_reckoning_step()

        routed_tracker.reset()

        assert routed_tracker.phase == TrackerPhase.IDLE
        assert routed_tracker.route == []
        assert routed_tracker.route_progress is None
        assert routed_tracker.kalman_x.value is None
        assert accel_stream.listener_count == 0
