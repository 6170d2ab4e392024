"""
Exposure Compliance Engine - TWA Calculator.

    twa_8hr = concentration * (duration_minutes / 480)

A sample that could not be timed or has no usable result yields
None, never 0.0. Durations above one shift are allowed and scale
the TWA upward. The value is not rounded.
"""

from typing import Any, Optional

from .normalization import coerce_float
from .types import SHIFT_MINUTES


def compute_twa_8hr(
    concentration: Any,
    duration_minutes: Any,
    shift_minutes: int = SHIFT_MINUTES
) -> Optional[float]:
    """
    Convert a sampled concentration to an 8-hour time-weighted average.

    Args:
        concentration: Measured concentration over the sampling period
        duration_minutes: Sampling duration in minutes
        shift_minutes: Normalization period (480 for an 8-hour shift)

    Returns:
        The TWA, or None when either input is missing, non-numeric,
        or the duration is not positive
    """
    conc = coerce_float(concentration)
    duration = coerce_float(duration_minutes)

    if conc is None or duration is None or duration <= 0:
        return None

    return conc * (duration / shift_minutes)
