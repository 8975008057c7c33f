from __future__ import annotations

import math
import os
from dataclasses import dataclass
from typing import Optional, Union

from deepzoom.errors import PrecisionUnderflow
from deepzoom.numeric.apn import APN

MIN_PRECISION_BITS = 128
MAX_PRECISION_BITS = 16384
PRECISION_MARGIN_BITS = 64
PRECISION_STEP_BITS = 256

BASE_ITERATIONS = 220
ITERATIONS_PER_OCTAVE = 2.4
MIN_ITERATIONS = 200
MAX_ITERATIONS = 20000

FIXED_HEADROOM_BITS = 16
BACKEND_FIXED = "fixed"
BACKEND_FLOAT = "float"
BACKEND_AUTO = "auto"
BACKENDS = (BACKEND_AUTO, BACKEND_FIXED, BACKEND_FLOAT)

MAX_WORKERS = 8
MIN_STRIP_HEIGHT = 16
STRIPS_PER_WORKER = 6

MODE_NORMAL = "normal"
MODE_PREVIEW = "preview"
MODE_HQ = "hq"
MODES = (MODE_NORMAL, MODE_PREVIEW, MODE_HQ)

PREVIEW_PRECISION_CAP = 192
PREVIEW_MARGIN_BITS = 16
PREVIEW_ITERATION_CAP = 700
HQ_MIN_ITERATIONS = 1500
MAX_SAMPLE_STEP = 16


def clamp(value: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, value))


def _scale_log2(scale: APN) -> Union[int, float]:
    log2 = scale.approx_log2_magnitude()
    if log2 == -math.inf:
        raise PrecisionUnderflow("pixel scale is zero", precision_bits=scale.precision)
    return log2


def required_precision_bits(
    scale: APN,
    max_dimension: int,
    *,
    margin: int = PRECISION_MARGIN_BITS,
    minimum: int = MIN_PRECISION_BITS,
    maximum: int = MAX_PRECISION_BITS,
) -> int:
    bits = math.ceil(-_scale_log2(scale) + math.log2(max(1, max_dimension)) + margin)
    return clamp(bits, minimum, maximum)


def iteration_budget(
    scale: APN,
    initial_scale: APN,
    *,
    base: int = BASE_ITERATIONS,
    per_octave: float = ITERATIONS_PER_OCTAVE,
    minimum: int = MIN_ITERATIONS,
    maximum: int = MAX_ITERATIONS,
) -> int:
    octaves = max(0, _scale_log2(initial_scale) - _scale_log2(scale))
    return clamp(base + math.floor(octaves * per_octave), minimum, maximum)


class PrecisionRatchet:
    """Active precision for auto mode. It only ever moves up."""

    def __init__(self, initial: int = MIN_PRECISION_BITS, *, margin: int = PRECISION_MARGIN_BITS,
                 minimum: int = MIN_PRECISION_BITS, maximum: int = MAX_PRECISION_BITS) -> None:
        self.margin = margin
        self.minimum = minimum
        self.maximum = maximum
        self.active = clamp(initial, minimum, maximum)

    def update(self, scale: APN, max_dimension: int) -> int:
        required = required_precision_bits(scale, max_dimension, margin=self.margin,
                                           minimum=self.minimum, maximum=self.maximum)
        self.active = max(self.active, required)
        return self.active

    def raise_to(self, bits: int) -> int:
        self.active = max(self.active, clamp(bits, self.minimum, self.maximum))
        return self.active


def choose_backend(scale: APN, precision_bits: int, requested: str = BACKEND_AUTO) -> str:
    if requested in (BACKEND_FIXED, BACKEND_FLOAT):
        return requested
    if requested != BACKEND_AUTO:
        raise ValueError(f"backend must be one of {BACKENDS}, got {requested!r}")
    if precision_bits >= -_scale_log2(scale) + FIXED_HEADROOM_BITS:
        return BACKEND_FIXED
    return BACKEND_FLOAT


def worker_count(cpu_count: Optional[int] = None) -> int:
    if cpu_count is None:
        cpu_count = os.cpu_count() or 4
    return clamp(cpu_count - 1, 1, MAX_WORKERS)


def strip_height(height: int, workers: int) -> int:
    return max(MIN_STRIP_HEIGHT, height // (max(1, workers) * STRIPS_PER_WORKER))


@dataclass(frozen=True)
class ModeSettings:
    precision_bits: int
    max_iterations: int
    sample_step: int


def apply_mode(
    mode: str,
    *,
    precision_bits: int,
    max_iterations: int,
    sample_step: int,
    scale: APN,
    max_dimension: int,
    iteration_cap: int = MAX_ITERATIONS,
) -> ModeSettings:
    """Adjust precision, iterations and sampling for a render mode.

    ``preview`` renders coarse and cheap while the view is moving, ``hq`` renders every
    pixel with a generous iteration floor. Every mode respects ``iteration_cap``.
    """
    if mode == MODE_NORMAL:
        return ModeSettings(precision_bits, min(max_iterations, iteration_cap), sample_step)
    if mode == MODE_PREVIEW:
        needed = required_precision_bits(scale, max_dimension, margin=PREVIEW_MARGIN_BITS, minimum=64)
        bits = min(precision_bits, max(PREVIEW_PRECISION_CAP, needed))
        step = clamp(sample_step * 3, 6, MAX_SAMPLE_STEP)
        return ModeSettings(bits, min(max_iterations, PREVIEW_ITERATION_CAP, iteration_cap), step)
    if mode == MODE_HQ:
        return ModeSettings(precision_bits, min(max(max_iterations, HQ_MIN_ITERATIONS), iteration_cap), 1)
    raise ValueError(f"mode must be one of {MODES}, got {mode!r}")
