"""Controller-facing render service.

``request_render`` returns as soon as the strips are queued. Results land in the
compositor from pool callback threads; ``wait`` blocks for callers that want
the finished image (batch rendering, tests).

Superseding a render cancels strips that have not started yet. Strips already
running are not interrupted: they finish and are discarded on arrival. Callers
that issue renders faster than the pool drains them (interactive input) should
coalesce requests before calling ``request_render``.

Only the current render keeps state: superseded tokens are released as soon as a
newer render begins, and only the latest completion event is retained.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from typing import Any, Callable, Dict, List, Optional, Tuple

from PIL import Image

from deepzoom.compositor import Compositor
from deepzoom.errors import ConfigurationError, PrecisionUnderflow, WorkerComputeError
from deepzoom.events import RenderComplete, RenderPlan
from deepzoom.messages import StripError, StripJob
from deepzoom.numeric.apn import APN
from deepzoom.policy import (BACKEND_AUTO, MAX_ITERATIONS, MAX_PRECISION_BITS, MODE_NORMAL,
                             PRECISION_STEP_BITS, PrecisionRatchet, apply_mode, choose_backend,
                             iteration_budget, strip_height, worker_count)
from deepzoom.scheduler import ExecutorFactory, TileScheduler, WorkerPool, plan_strips
from deepzoom.util.logging_setup import get_logger
from deepzoom.viewport import Viewport

logger = get_logger("render")

MAX_UNDERFLOW_RETRIES = 3


class RenderService:
    def __init__(
        self,
        *,
        workers: Optional[int] = None,
        strip_rows: Optional[int] = None,
        backend: str = BACKEND_AUTO,
        iteration_cap: int = MAX_ITERATIONS,
        reference_scale: Optional[APN] = None,
        executor_factory: Optional[ExecutorFactory] = None,
        log_queue: Any = None,
        log_level: int = logging.INFO,
        on_complete: Optional[Callable[[RenderComplete], None]] = None,
        on_strip_failed: Optional[Callable[[WorkerComputeError], None]] = None,
    ) -> None:
        self.backend = backend
        self.iteration_cap = iteration_cap
        self.strip_rows = strip_rows
        self.reference_scale = reference_scale
        self.ratchet: Optional[PrecisionRatchet] = None
        self.on_complete = on_complete

        self.pool = WorkerPool(workers or worker_count(), executor_factory=executor_factory,
                               log_queue=log_queue, log_level=log_level)
        self.scheduler = TileScheduler(self.pool)
        self.compositor = Compositor(on_complete=self._render_complete, on_strip_failed=on_strip_failed)

        # Reentrant: a synchronous executor completes strips inside dispatch.
        self._lock = threading.RLock()
        self._futures: Dict[int, List[Future]] = {}
        self._finished: Dict[int, threading.Event] = {}
        self._last_result: Optional[RenderComplete] = None

    # ---- lifecycle ----------------------------------------------------------

    def close(self, *, wait: bool = True) -> None:
        self.pool.close(wait=wait)

    def __enter__(self) -> "RenderService":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ---- rendering ----------------------------------------------------------

    @property
    def current_token(self) -> int:
        return self.scheduler.current_token

    @property
    def active_precision(self) -> Optional[int]:
        return self.ratchet.active if self.ratchet is not None else None

    def request_render(self, viewport: Viewport, *, auto_precision: bool = True, mode: str = MODE_NORMAL) -> int:
        """Start rendering ``viewport`` and return its token without waiting for results.

        Safe to call from several threads. Each call holds the service lock from token
        allocation until its strips are queued, so renders begin in token order.
        """
        with self._lock:
            if self.reference_scale is None:
                self.reference_scale = viewport.pixel_scale

            bits = viewport.precision_bits
            if auto_precision:
                if self.ratchet is None:
                    self.ratchet = PrecisionRatchet(viewport.precision_bits)
                bits = self.ratchet.update(viewport.pixel_scale, viewport.max_dimension)

            max_iterations = viewport.max_iterations
            if max_iterations is None:
                max_iterations = iteration_budget(viewport.pixel_scale, self.reference_scale)
            settings = apply_mode(
                mode,
                precision_bits=bits,
                max_iterations=max_iterations,
                sample_step=viewport.sample_step,
                scale=viewport.pixel_scale,
                max_dimension=viewport.max_dimension,
                iteration_cap=self.iteration_cap,
            )
            bits, backend, (x_min, y_min, scale) = self._locate(viewport, settings.precision_bits, auto_precision)

            rows = self.strip_rows or strip_height(viewport.height, self.pool.size)
            token = self.scheduler.next_token()
            plan = RenderPlan(
                token=token,
                width=viewport.width,
                height=viewport.height,
                strips=tuple(plan_strips(viewport.height, rows, settings.sample_step)),
                precision_bits=bits,
                max_iterations=settings.max_iterations,
                sample_step=settings.sample_step,
                backend=backend,
                mode=mode,
            )

            self._supersede()
            self._finished[token] = threading.Event()
            self.compositor.begin(plan)
            logger.info("[Token %s] render %sx%s mode=%s bits=%s iter=%s step=%s backend=%s strips=%s",
                        token, plan.width, plan.height, mode, bits, plan.max_iterations, plan.sample_step,
                        backend, len(plan.strips))
            jobs = self.scheduler.build_jobs(plan, x_min, y_min, scale)
            futures = self.scheduler.dispatch(jobs, self._strip_done)
            finished = self._finished.get(token)
            if finished is not None and not finished.is_set():
                self._futures[token] = futures
        return token

    def _locate(self, viewport: Viewport, bits: int, auto_precision: bool) -> Tuple[int, str, Tuple[APN, APN, APN]]:
        attempt = 0
        while True:
            backend = choose_backend(viewport.pixel_scale, bits, self.backend)
            try:
                return bits, backend, self.scheduler.locate(viewport, bits, backend)
            except PrecisionUnderflow as exc:
                if attempt >= MAX_UNDERFLOW_RETRIES:
                    raise ConfigurationError(
                        f"precision underflow persists at {bits} bits after {attempt} increases: {exc}"
                    ) from exc
                attempt += 1
                raised = min(MAX_PRECISION_BITS, bits + PRECISION_STEP_BITS)
                logger.warning("Precision underflow at %s bits (%s); retrying at %s bits", bits, exc, raised)
                bits = raised
                if auto_precision and self.ratchet is not None:
                    self.ratchet.raise_to(bits)

    def _supersede(self) -> None:
        # Caller holds self._lock.
        for token, futures in self._futures.items():
            cancelled = sum(1 for f in futures if f.cancel())
            if cancelled:
                logger.debug("[Token %s] cancelled %s queued strips", token, cancelled)
        self._futures.clear()
        for finished in self._finished.values():
            finished.set()
        self._finished.clear()

    def _strip_done(self, job: StripJob, fut: Future) -> None:
        if fut.cancelled():
            return
        exc = fut.exception()
        if exc is not None:
            logger.error("[Token %s] worker lost strip at row %s: %s: %s",
                         job.token, job.start_row, type(exc).__name__, exc)
            message = StripError(job.token, job.start_row, job.row_count, f"{type(exc).__name__}: {exc}").to_message()
        else:
            message = fut.result()
        self.compositor.accept(message)

    def _render_complete(self, event: RenderComplete) -> None:
        logger.info("[Token %s] render complete in %.3fs (bits=%s iter=%s strips=%s failed=%s)",
                    event.token, event.elapsed, event.precision_bits, event.max_iterations,
                    event.strips, event.failed)
        with self._lock:
            self._futures.pop(event.token, None)
            finished = self._finished.get(event.token)
            if finished is not None:
                self._last_result = event
                finished.set()
        if self.on_complete is not None:
            self.on_complete(event)

    def wait(self, token: Optional[int] = None, timeout: Optional[float] = None) -> Optional[RenderComplete]:
        """Block until ``token`` (default: the current render) completes or is superseded.

        Returns the completion event, or None when the render was superseded first.
        """
        with self._lock:
            token = self.current_token if token is None else token
            finished = self._finished.get(token)
        if finished is None:
            return None
        if not finished.wait(timeout):
            raise TimeoutError(f"render {token} did not finish within {timeout}s")
        with self._lock:
            result = self._last_result
        if result is not None and result.token == token:
            return result
        return None

    def image(self) -> Image.Image:
        return self.compositor.to_image()
