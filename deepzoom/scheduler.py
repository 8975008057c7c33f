from __future__ import annotations

import functools
import logging
import threading
from concurrent.futures import Executor, Future, ProcessPoolExecutor
from typing import Any, Callable, List, Optional, Tuple

from deepzoom.errors import PrecisionUnderflow
from deepzoom.events import RenderPlan
from deepzoom.messages import StripJob
from deepzoom.numeric.apn import APN
from deepzoom.numeric.fixed import Fixed
from deepzoom.policy import BACKEND_FIXED
from deepzoom.util.logging_setup import get_logger, worker_initialiser
from deepzoom.viewport import Viewport
from deepzoom.worker import compute_strip

logger = get_logger("scheduler")

ExecutorFactory = Callable[[], Executor]


def plan_strips(height: int, strip_rows: int, sample_step: int = 1) -> List[Tuple[int, int]]:
    """Split ``[0, height)`` into consecutive ``(start_row, row_count)`` strips.

    Strip heights are rounded up to a multiple of ``sample_step`` so sampling blocks
    never straddle two strips.
    """
    if height < 1 or strip_rows < 1 or sample_step < 1:
        raise ValueError("height, strip_rows and sample_step must be positive")
    rows = -(-strip_rows // sample_step) * sample_step
    strips: List[Tuple[int, int]] = []
    y = 0
    while y < height:
        y1 = min(height, y + rows)
        strips.append((y, y1 - y))
        y = y1
    return strips


class WorkerPool:
    """Fixed set of single-process executors addressed by index."""

    def __init__(
        self,
        size: int,
        *,
        executor_factory: Optional[ExecutorFactory] = None,
        log_queue: Any = None,
        log_level: int = logging.INFO,
    ) -> None:
        if size < 1:
            raise ValueError(f"pool size must be >= 1, got {size}")
        self._log_queue = log_queue
        self._log_level = log_level
        factory = executor_factory or self._process_executor
        self._executors: List[Executor] = [factory() for _ in range(size)]

    def _process_executor(self) -> Executor:
        return ProcessPoolExecutor(
            max_workers=1,
            initializer=worker_initialiser,
            initargs=(self._log_queue, self._log_level),
        )

    @property
    def size(self) -> int:
        return len(self._executors)

    def submit(self, index: int, fn: Callable[..., Any], *args: Any) -> Future:
        return self._executors[index % len(self._executors)].submit(fn, *args)

    def close(self, *, wait: bool = True) -> None:
        for ex in self._executors:
            ex.shutdown(wait=wait, cancel_futures=True)


class TileScheduler:
    def __init__(self, pool: WorkerPool) -> None:
        self.pool = pool
        self._token = 0
        self._lock = threading.Lock()

    @property
    def current_token(self) -> int:
        return self._token

    def next_token(self) -> int:
        with self._lock:
            self._token += 1
            return self._token

    @staticmethod
    def locate(viewport: Viewport, precision_bits: int, backend: str) -> Tuple[APN, APN, APN]:
        """Origin and pixel scale at ``precision_bits``.

        Raises :class:`PrecisionUnderflow` when a one-pixel step is no longer representable
        next to the origin, i.e. every pixel of a row would share one coordinate.
        """
        vp = viewport.with_precision(precision_bits)
        scale = vp.pixel_scale
        if scale.is_zero():
            raise PrecisionUnderflow("pixel scale rounds to zero", precision_bits=precision_bits)
        x_min, y_min = vp.origin()
        for origin in (x_min, y_min):
            if origin.add(scale).subtract(origin).is_zero():
                raise PrecisionUnderflow(
                    f"one-pixel step 2^{scale.approx_log2_magnitude()} vanishes at {precision_bits} bits",
                    precision_bits=precision_bits,
                )
        if backend == BACKEND_FIXED and Fixed.from_apn(scale, precision_bits).is_zero():
            raise PrecisionUnderflow("pixel scale is below the fixed-point resolution",
                                     precision_bits=precision_bits)
        return x_min, y_min, scale

    @staticmethod
    def build_jobs(plan: RenderPlan, x_min: APN, y_min: APN, scale: APN) -> List[StripJob]:
        return [
            StripJob(
                token=plan.token,
                image_width=plan.width,
                start_row=start,
                row_count=rows,
                sample_step=plan.sample_step,
                max_iterations=plan.max_iterations,
                precision_bits=plan.precision_bits,
                backend=plan.backend,
                x_min=x_min,
                y_min=y_min,
                pixel_scale=scale,
            )
            for start, rows in plan.strips
        ]

    def dispatch(self, jobs: List[StripJob], on_done: Callable[[StripJob, Future], None]) -> List[Future]:
        """Submit jobs round-robin over the pool; ``on_done(job, future)`` runs as each future settles."""
        futures: List[Future] = []
        for i, job in enumerate(jobs):
            fut = self.pool.submit(i, compute_strip, job.to_message())
            fut.add_done_callback(functools.partial(on_done, job))
            futures.append(fut)
        if jobs:
            logger.debug("[Token %s] dispatched %s strips over %s workers", jobs[0].token, len(jobs), self.pool.size)
        return futures
