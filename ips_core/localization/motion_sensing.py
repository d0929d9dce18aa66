"""
Step Detection and Heading Smoothing.

Turns raw accelerometer samples into discrete footstep events and
magnetometer samples into a smoothed heading.

Step rule: |a| > threshold and more than `refractory_s` since the last
accepted step.
"""

from typing import Callable, Optional
from dataclasses import dataclass
import math
import time

from ips_core.proto.sensor_sample import AccelerationSample, MagneticSample
from ips_core.metrics import get_metrics


@dataclass
class StepDetectorConfig:
    """
    Attributes:
        accel_threshold: Magnitude above which a sample counts as a step peak
        refractory_s: Minimum time between accepted steps (s)
    """

    accel_threshold: float = 1.2
    refractory_s: float = 0.35


class StepDetector:
    """
    Threshold + refractory-period step detector.

    Usage:
        detector = StepDetector()
        if detector.process(sample):
            tracker.apply_dead_reckoning_step()
    """

    def __init__(
        self,
        config: Optional[StepDetectorConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or StepDetectorConfig()
        self.clock = clock
        self.metrics = get_metrics()
        self._last_step_time: Optional[float] = None

    def process(self, sample: AccelerationSample) -> bool:
        """
        Feed one accelerometer sample.

        Returns:
            True if a step was accepted
        """
        if not sample.is_finite:
            self.metrics.increment_drop('invalid_sample')
            return False

        magnitude = sample.magnitude
        if not math.isfinite(magnitude) or magnitude <= self.config.accel_threshold:
            return False

        now = self.clock()
        if (self._last_step_time is not None
                and now - self._last_step_time <= self.config.refractory_s):
            return False

        self._last_step_time = now
        self.metrics.increment('steps_detected')
        return True

    def reset(self):
        self._last_step_time = None


class HeadingEstimator:
    """
    Exponentially smoothed magnetic heading (radians).

    heading = heading * (1 - alpha) + atan2(y, x) * alpha
    """

    def __init__(self, smoothing: float = 0.2):
        self.smoothing = smoothing
        self.heading_rad = 0.0

    def process(self, sample: MagneticSample) -> float:
        """Feed one magnetometer sample, returning the smoothed heading."""
        if not sample.is_finite:
            return self.heading_rad

        heading = math.atan2(sample.y, sample.x)
        if not math.isfinite(heading):
            return self.heading_rad

        self.heading_rad = self.heading_rad * (1.0 - self.smoothing) + heading * self.smoothing
        return self.heading_rad

    def reset(self):
        self.heading_rad = 0.0
