"""
Indoor tracking configuration
"""

# Tracking parameters (see ips_core.localization.TrackingConfig)
TRACKING_CONFIG = {
    "scan_interval_ms": 500,          # Beacon scan batch interval
    "step_length_m": 0.7,             # Assumed stride length
    "min_step_px": 2,                 # Minimum step on the map
    "rssi_threshold_dbm": -100,       # Weakest usable beacon
    "path_loss_exponent": 2.5,        # Indoor log-distance exponent
    "kalman_process_noise": 0.01,
    "kalman_measurement_noise": 2,
    "deviation_threshold_m": 2,       # Report leaving the route beyond this
    "snap_tolerance_m": 1.5,          # Snap to route within this
    "step_accel_threshold": 1.2,
    "step_refractory_s": 0.35,
    "heading_smoothing": 0.2,
    "motion_interval_ms": 100,        # ~10 Hz accelerometer
    "heading_interval_ms": 200,       # ~5 Hz magnetometer
}

# Synthetic floor used by the replay simulation (map pixels)
SIMULATION_CONFIG = {
    "building_id": "B1",
    "floor_id": "F1",
    "beacon_uuid": "FDA50693-A4E2-4FB1-AFCF-C6EB07647825",
    "tx_power_dbm": -59.0,
    # Beacons are ranged in map pixels, so simulated RSSI runs weaker than on a real floor
    "rssi_threshold_dbm": -125.0,
    "beacons": {
        1: {"x": 0.0, "y": 0.0},
        2: {"x": 400.0, "y": 0.0},
        3: {"x": 0.0, "y": 300.0},
    },
    "true_start": {"x": 60.0, "y": 80.0},
    "destination": {"x": 360.0, "y": 240.0},
    "map_width_px": 400.0,
    "map_height_px": 300.0,
    "real_width_m": 40.0,
    "real_height_m": 30.0,
}

# Logging
LOGGING_CONFIG = {
    "level": "INFO",
    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
}
