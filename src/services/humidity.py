"""Psychrometric helpers for METAR-derived relative humidity."""

from math import exp, floor
from numbers import Real
from typing import Final, Optional

MAGNUS_B: Final[float] = 17.625
MAGNUS_C: Final[float] = 243.04  # degC


def magnus_saturation_term(T_C: float) -> float:
    """Return the Magnus-Tetens saturation factor ``exp(b*T / (c + T))`` at ``T_C``.

    The constant 6.1094 hPa prefactor cancels in the humidity ratio and is omitted.
    """

    denominator = MAGNUS_C + T_C
    if denominator == 0.0:
        raise ValueError("Temperature of -243.04 degC leads to singular saturation vapor pressure.")
    return exp((MAGNUS_B * T_C) / denominator)


def _is_number(value: object) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def relative_humidity(temperature_c: Optional[float], dew_point_c: Optional[float]) -> Optional[int]:
    """Return relative humidity in whole percent, or ``None`` unless both inputs are numeric."""

    if not _is_number(temperature_c) or not _is_number(dew_point_c):
        return None
    try:
        ratio = magnus_saturation_term(dew_point_c) / magnus_saturation_term(temperature_c)
    except ValueError:
        return None
    # Half-up rounding, so 68.5 reports as 69
    return int(floor(100.0 * ratio + 0.5))
