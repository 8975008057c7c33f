"""Strip computation executed inside pool processes.

``compute_strip`` is stateless: everything it needs arrives in the job message
and everything it produces leaves in the returned message.
"""

from __future__ import annotations

import time
from typing import Any, Dict

import numpy as np

from deepzoom.color import get_smooth_color
from deepzoom.kernel import escape_time
from deepzoom.messages import StripError, StripJob, StripResult, parse_job
from deepzoom.numeric.fixed import Fixed
from deepzoom.util.logging_setup import get_logger

logger = get_logger("worker")


def _to_backend(value, job: StripJob):
    if job.backend == "fixed":
        return Fixed.from_apn(value, job.precision_bits)
    return value.with_precision(job.precision_bits)


def render_strip(job: StripJob) -> np.ndarray:
    """Run the kernel over one strip. Returns a ``(row_count, image_width, 4)`` uint8 array.

    With ``sample_step > 1`` only the top-left pixel of each step x step block is evaluated
    and its color fills the block.
    """
    width, rows, step = job.image_width, job.row_count, job.sample_step
    band = np.zeros((rows, width, 4), dtype=np.uint8)

    scale = job.pixel_scale
    for yy in range(0, rows, step):
        y = job.start_row + yy
        c_im = _to_backend(job.y_min.add(scale.multiply_by_small_int(y)), job)
        for xx in range(0, width, step):
            c_re = _to_backend(job.x_min.add(scale.multiply_by_small_int(xx)), job)
            result = escape_time(c_re, c_im, job.max_iterations)
            band[yy:yy + step, xx:xx + step] = get_smooth_color(result, job.max_iterations)
    return band


def _identity_field(message: Any, key: str, fallback: int) -> int:
    value = message.get(key) if isinstance(message, dict) else None
    if isinstance(value, int) and not isinstance(value, bool) and value >= fallback:
        return value
    return fallback


def compute_strip(message: Dict[str, Any]) -> Dict[str, Any]:
    token = _identity_field(message, "token", 0)
    start_row = _identity_field(message, "start_row", 0)
    row_count = _identity_field(message, "row_count", 1)
    try:
        job = parse_job(message)
        t0 = time.perf_counter()
        band = render_strip(job)
        logger.debug("[Token %s] strip rows %s..%s done in %.3fs (%s, %s bits)", job.token, job.start_row,
                     job.start_row + job.row_count, time.perf_counter() - t0, job.backend, job.precision_bits)
        return StripResult(
            token=job.token,
            start_row=job.start_row,
            row_count=job.row_count,
            width=job.image_width,
            pixels=band.tobytes(),
        ).to_message()
    except Exception as exc:
        logger.exception("[Token %s] strip at row %s failed", token, start_row)
        return StripError(
            token=token,
            start_row=start_row,
            row_count=row_count,
            message=f"{type(exc).__name__}: {exc}",
        ).to_message()
