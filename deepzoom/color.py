from __future__ import annotations

from typing import Tuple

import numpy as np

from deepzoom.kernel import EscapeResult

INTERIOR_COLOR = (0, 0, 0, 255)


def get_smooth_color(result: EscapeResult, max_iter: int) -> Tuple[int, int, int, int]:
    """
    Returns an (R, G, B, A) tuple for an escape result. Interior points are black.
    Escaped points map mu/max_iter through a nonlinear stretch onto a sine-based palette.
    """
    if not result.escaped:
        return INTERIOR_COLOR

    t = min(1.0, max(0.0, result.smooth / max_iter))
    t = t ** 0.7  # nonlinear stretch for contrast

    r = int(255 * (0.5 + 0.5 * np.sin(6 * np.pi * t)))
    g = int(255 * (0.5 + 0.5 * np.sin(6 * np.pi * t + 2 * np.pi / 3)))
    b = int(255 * (0.5 + 0.5 * np.sin(6 * np.pi * t + 4 * np.pi / 3)))
    return (r, g, b, 255)
