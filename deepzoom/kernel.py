"""Escape-time iteration shared by both numeric backends.

The escape test runs on the native approximation of ``z``. Once ``|z|`` is past
the escape radius the orbit diverges fast, so the approximation can move the
reported index by at most one at the exact ``|z|**2 == 4`` boundary.

Boundary rule: a point escapes at 0-based index ``i`` when ``|z_{i+1}|**2 > 4``
(strictly greater). ``c = 2`` therefore escapes at index 1.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Union

from deepzoom.numeric.apn import APN
from deepzoom.numeric.fixed import Fixed

Number = Union[APN, Fixed]

ESCAPE_RADIUS_SQUARED = 4.0
_EPSILON = 1e-300

SHORTCUT_CARDIOID = "cardioid"
SHORTCUT_BULB = "bulb"


@dataclass(frozen=True)
class EscapeResult:
    escaped: bool
    iterations: int
    smooth: float
    shortcut: Optional[str] = None


def interior_shortcut(x: float, y: float) -> Optional[str]:
    """Closed-form membership of the period-2 bulb and the main cardioid."""
    y2 = y * y
    if (x + 1.0) * (x + 1.0) + y2 <= 0.0625:
        return SHORTCUT_BULB
    q = (x - 0.25) * (x - 0.25) + y2
    if q * (q + (x - 0.25)) <= 0.25 * y2:
        return SHORTCUT_CARDIOID
    return None


def smooth_value(iteration: int, magnitude: float) -> float:
    return iteration + 1 - math.log2(math.log2(max(_EPSILON, magnitude)))


def escape_time(c_re: Number, c_im: Number, max_iterations: int) -> EscapeResult:
    if max_iterations < 1:
        raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")

    shortcut = interior_shortcut(c_re.approx_native(), c_im.approx_native())
    if shortcut is not None:
        return EscapeResult(False, max_iterations, float(max_iterations), shortcut)

    z_re = c_re.zero_like()
    z_im = c_im.zero_like()
    for i in range(max_iterations):
        re2 = z_re.multiply(z_re)
        im2 = z_im.multiply(z_im)
        reim = z_re.multiply(z_im).multiply_by_small_int(2)
        z_re = re2.subtract(im2).add(c_re)
        z_im = reim.add(c_im)

        x = z_re.approx_native()
        y = z_im.approx_native()
        mag2 = x * x + y * y
        if mag2 > ESCAPE_RADIUS_SQUARED:
            return EscapeResult(True, i, smooth_value(i, math.sqrt(mag2)))

    return EscapeResult(False, max_iterations, float(max_iterations))


def classify_point(
    re: str,
    im: str,
    *,
    max_iterations: int,
    precision_bits: int,
    backend: str = "float",
) -> EscapeResult:
    """Classify one decimal coordinate; used by the ``point`` command."""
    c_re = APN.from_decimal(re, precision_bits)
    c_im = APN.from_decimal(im, precision_bits)
    if backend == "fixed":
        return escape_time(Fixed.from_apn(c_re, precision_bits), Fixed.from_apn(c_im, precision_bits),
                           max_iterations)
    if backend != "float":
        raise ValueError(f"backend must be 'fixed' or 'float', got {backend!r}")
    return escape_time(c_re, c_im, max_iterations)
