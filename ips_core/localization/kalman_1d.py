"""
Scalar Kalman Filter.

Random-walk Kalman filter smoothing one coordinate of the beacon-derived
position. The tracker runs one instance per map axis.

State: estimate x, error covariance p
Predict: p += q
Update:  k = p / (p + r); x += k (z - x); p *= (1 - k)
"""

from typing import Optional


class ScalarKalmanFilter:
    """
    One-dimensional Kalman filter.

    Usage:
        kf = ScalarKalmanFilter(process_noise=0.01, measurement_noise=2.0)
        kf.reset(anchor_x)          # seed with ground truth
        smoothed = kf.update(raw_x)

    The first update on an unseeded filter returns the raw measurement, so
    the first fix is never pulled toward a zero prior.
    """

    def __init__(self, process_noise: float, measurement_noise: float):
        """
        Initialize filter.

        Args:
            process_noise: q, variance added per prediction step
            measurement_noise: r, measurement variance
        """
        self.q = process_noise
        self.r = measurement_noise

        self.estimate = 0.0
        self.error_covariance = 1.0
        self.initialized = False

    def set_noise(self, process_noise: float, measurement_noise: float):
        """Replace noise parameters, keeping estimate and covariance."""
        self.q = process_noise
        self.r = measurement_noise

    def reset(self, value: float):
        """Seed the filter with a known value."""
        self.estimate = value
        self.error_covariance = 1.0
        self.initialized = True

    def clear(self):
        """Return to the unseeded state."""
        self.estimate = 0.0
        self.error_covariance = 1.0
        self.initialized = False

    def update(self, measurement: float) -> float:
        """
        Fuse one measurement.

        Args:
            measurement: Raw coordinate

        Returns:
            Smoothed estimate (raw measurement on the first call)
        """
        if not self.initialized:
            self.reset(measurement)
            return measurement

        # Predict
        self.error_covariance += self.q

        # Update
        k = self.error_covariance / (self.error_covariance + self.r)
        self.estimate = self.estimate + k * (measurement - self.estimate)
        self.error_covariance = (1.0 - k) * self.error_covariance

        return self.estimate

    @property
    def value(self) -> Optional[float]:
        """Current estimate, or None when unseeded."""
        return self.estimate if self.initialized else None
