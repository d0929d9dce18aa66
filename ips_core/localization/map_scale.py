"""
Map Scale Resolution.

Converts floor dimensions into a pixels-per-meter factor for dead reckoning.
Bad or missing metadata never stops tracking: the fallback scale is used
and the reason is reported.
"""

from dataclasses import dataclass
from typing import Optional
import logging
import math

logger = logging.getLogger(__name__)


# Scale used whenever floor metadata cannot produce a usable one
DEFAULT_PIXELS_PER_METER = 10.0


@dataclass(frozen=True)
class ScaleResolution:
    """
    Result of resolving the map scale.

    Attributes:
        pixels_per_meter: Scale to use (always finite and positive)
        used_fallback: True when DEFAULT_PIXELS_PER_METER was substituted
        reason: Why the fallback was used
    """

    pixels_per_meter: float
    used_fallback: bool = False
    reason: Optional[str] = None


def _positive_finite(value) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


def resolve_pixels_per_meter(
    map_width_px,
    map_height_px,
    real_width_m,
    real_height_m,
) -> ScaleResolution:
    """
    Average the x and y scale factors of a floor map.

    Args:
        map_width_px: Map image width (pixels)
        map_height_px: Map image height (pixels)
        real_width_m: Real-world floor width (meters)
        real_height_m: Real-world floor height (meters)

    Returns:
        ScaleResolution; falls back to DEFAULT_PIXELS_PER_METER when any
        input is missing, non-finite or non-positive
    """
    inputs = [
        _positive_finite(map_width_px),
        _positive_finite(map_height_px),
        _positive_finite(real_width_m),
        _positive_finite(real_height_m),
    ]
    if any(v is None for v in inputs):
        logger.warning(
            "Invalid route scale inputs, using default pixels_per_meter "
            f"(map={map_width_px}x{map_height_px}px, real={real_width_m}x{real_height_m}m)"
        )
        return ScaleResolution(DEFAULT_PIXELS_PER_METER, True, "invalid scale inputs")

    width_px, height_px, width_m, height_m = inputs
    scale_x = width_px / width_m
    scale_y = height_px / height_m
    pixels_per_meter = (scale_x + scale_y) / 2.0

    if not math.isfinite(pixels_per_meter) or pixels_per_meter <= 0:
        logger.warning(
            f"Computed invalid pixels_per_meter {pixels_per_meter} "
            f"(scale_x={scale_x}, scale_y={scale_y}), using default"
        )
        return ScaleResolution(DEFAULT_PIXELS_PER_METER, True, "non-finite scale")

    return ScaleResolution(pixels_per_meter)
