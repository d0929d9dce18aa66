"""
Beacon Trilateration (3-Beacon, 2D).

Converts RSSI to range with the log-distance path-loss model and solves the
linearised circle equations for the receiver position:

    d = 10 ^ ((tx_power - rssi) / (10 n))

Subtracting circle 1 from circles 2 and 3 gives the 2x2 system

    [2(x2-x1)  2(y2-y1)] [x]   [d1² - d2² - x1² + x2² - y1² + y2²]
    [2(x3-x1)  2(y3-y1)] [y] = [d1² - d3² - x1² + x3² - y1² + y3²]

Collinear beacons make the system singular; those are reported as no
solution instead of dividing by a near-zero determinant.
"""

from typing import List, Optional, Sequence, Tuple
from dataclasses import dataclass
import logging
import math
import numpy as np

from ips_core.proto.beacon import BeaconRecord
from ips_core.metrics import get_metrics

logger = logging.getLogger(__name__)


@dataclass
class TrilaterationConfig:
    """
    Configuration for the trilateration solver.

    Attributes:
        path_loss_exponent: n in the log-distance model (2 = free space)
        min_determinant: Determinant magnitude below which geometry is degenerate
    """

    path_loss_exponent: float = 2.5
    min_determinant: float = 1e-6

    def __post_init__(self):
        """Validate configuration."""
        assert self.path_loss_exponent > 0, "path_loss_exponent must be positive"
        assert self.min_determinant > 0, "min_determinant must be positive"


@dataclass
class TrilaterationResult:
    """
    Solved receiver position.

    Attributes:
        x: Map x coordinate
        y: Map y coordinate
        distances: Range to each beacon derived from RSSI (map units)
        determinant: Determinant of the linear system (geometry health)
        beacon_keys: Beacons used, in solve order
    """

    x: float
    y: float
    distances: Tuple[float, float, float]
    determinant: float
    beacon_keys: List[str]

    @property
    def position(self) -> Tuple[float, float]:
        return (self.x, self.y)


def rssi_to_distance(rssi: float, tx_power: float, path_loss_exponent: float) -> float:
    """
    Log-distance path-loss model.

    Args:
        rssi: Measured RSSI (dBm)
        tx_power: Calibrated RSSI at 1m (dBm)
        path_loss_exponent: n

    Returns:
        Estimated distance (same units as the beacon survey)
    """
    return 10.0 ** ((tx_power - rssi) / (10.0 * path_loss_exponent))


def rssi_at_distance(distance: float, tx_power: float, path_loss_exponent: float) -> float:
    """Inverse of rssi_to_distance (for simulation and calibration)."""
    return tx_power - 10.0 * path_loss_exponent * math.log10(distance)


class TrilaterationSolver:
    """
    Solve a 2D position from exactly three ranged beacons.

    Usage:
        solver = TrilaterationSolver(TrilaterationConfig(path_loss_exponent=2.5))
        result = solver.solve([(record_a, -70.0), (record_b, -75.0), (record_c, -80.0)])
        if result is not None:
            print(result.position)
    """

    def __init__(self, config: Optional[TrilaterationConfig] = None):
        self.config = config or TrilaterationConfig()
        self.metrics = get_metrics()

    def solve(
        self,
        ranged_beacons: Sequence[Tuple[BeaconRecord, float]],
    ) -> Optional[TrilaterationResult]:
        """
        Solve receiver position.

        Args:
            ranged_beacons: Exactly 3 (BeaconRecord, rssi) pairs

        Returns:
            TrilaterationResult, or None when there is no usable solution
            (wrong beacon count, collinear beacons, non-finite result)
        """
        self.metrics.increment('trilateration_attempts')

        if len(ranged_beacons) != 3:
            self.metrics.increment_drop('insufficient_beacons')
            logger.debug(f"Trilateration needs exactly 3 beacons, got {len(ranged_beacons)}")
            return None

        n = self.config.path_loss_exponent
        distances = [
            rssi_to_distance(rssi, record.effective_tx_power, n)
            for record, rssi in ranged_beacons
        ]
        positions = [(record.x, record.y) for record, _ in ranged_beacons]

        (x1, y1), (x2, y2), (x3, y3) = positions
        d1, d2, d3 = distances

        coefficients = np.array([
            [2.0 * (x2 - x1), 2.0 * (y2 - y1)],
            [2.0 * (x3 - x1), 2.0 * (y3 - y1)],
        ])
        rhs = np.array([
            d1 * d1 - d2 * d2 - x1 * x1 + x2 * x2 - y1 * y1 + y2 * y2,
            d1 * d1 - d3 * d3 - x1 * x1 + x3 * x3 - y1 * y1 + y3 * y3,
        ])

        determinant = float(
            coefficients[0, 0] * coefficients[1, 1] - coefficients[0, 1] * coefficients[1, 0]
        )
        if not abs(determinant) >= self.config.min_determinant:
            self.metrics.increment_drop('degenerate_geometry')
            logger.debug(f"Degenerate beacon geometry (det={determinant:.3e})")
            return None

        solution = np.linalg.solve(coefficients, rhs)
        x, y = float(solution[0]), float(solution[1])

        if not (math.isfinite(x) and math.isfinite(y)):
            self.metrics.increment_drop('non_finite_solution')
            logger.debug(f"Non-finite trilateration result ({x}, {y})")
            return None

        self.metrics.increment('trilateration_success')
        self.metrics.record_histogram('trilateration_determinant', abs(determinant))

        return TrilaterationResult(
            x=x,
            y=y,
            distances=(d1, d2, d3),
            determinant=determinant,
            beacon_keys=[record.key for record, _ in ranged_beacons],
        )
