"""
Phone Sensor Samples.

Raw samples delivered by the motion (accelerometer) and heading
(magnetometer) streams, in the platform's native units.
"""

from dataclasses import dataclass
import math


@dataclass
class AccelerationSample:
    """Accelerometer sample (~10 Hz)."""

    x: float
    y: float
    z: float

    @property
    def is_finite(self) -> bool:
        return math.isfinite(self.x) and math.isfinite(self.y) and math.isfinite(self.z)

    @property
    def magnitude(self) -> float:
        return math.sqrt(self.x * self.x + self.y * self.y + self.z * self.z)


@dataclass
class MagneticSample:
    """Magnetometer sample (~5 Hz), horizontal components only."""

    x: float
    y: float

    @property
    def is_finite(self) -> bool:
        return math.isfinite(self.x) and math.isfinite(self.y)
