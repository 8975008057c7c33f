from __future__ import annotations

import threading
import time
from typing import Any, Callable, Optional, Set, Tuple

import numpy as np
from PIL import Image

from deepzoom.errors import ParseError, WorkerComputeError
from deepzoom.events import RenderComplete, RenderPlan
from deepzoom.messages import StripError, StripResult, parse_result
from deepzoom.util.logging_setup import get_logger

logger = get_logger("compositor")

BACKGROUND = (11, 11, 15, 255)


class Compositor:
    """Owns the output image; only strips of the current render generation reach it.

    Strip identity ``(token, start_row)`` is recorded on first delivery so a strip
    that arrives twice is painted and counted once.
    """

    def __init__(
        self,
        *,
        on_complete: Optional[Callable[[RenderComplete], None]] = None,
        on_strip_failed: Optional[Callable[[WorkerComputeError], None]] = None,
    ) -> None:
        self.on_complete = on_complete
        self.on_strip_failed = on_strip_failed
        self._lock = threading.Lock()
        self._plan: Optional[RenderPlan] = None
        self._image = np.zeros((0, 0, 4), dtype=np.uint8)
        self._seen: Set[Tuple[int, int]] = set()
        self._strip_rows = {}
        self._completed = 0
        self._failed = 0
        self._started = 0.0
        self._done = False

    @property
    def current_token(self) -> int:
        return self._plan.token if self._plan is not None else 0

    @property
    def completed(self) -> int:
        return self._completed

    @property
    def failed(self) -> int:
        return self._failed

    @property
    def is_complete(self) -> bool:
        return self._done

    def begin(self, plan: RenderPlan) -> None:
        """Make ``plan.token`` current and clear the image for it."""
        with self._lock:
            if self._plan is not None and plan.token <= self._plan.token:
                raise ValueError(f"token {plan.token} does not supersede {self._plan.token}")
            if self._image.shape[:2] != (plan.height, plan.width):
                self._image = np.empty((plan.height, plan.width, 4), dtype=np.uint8)
            self._image[:] = BACKGROUND
            self._plan = plan
            self._seen = set()
            self._strip_rows = dict(plan.strips)
            self._completed = 0
            self._failed = 0
            self._started = time.perf_counter()
            self._done = not plan.strips

    def accept(self, message: Any) -> bool:
        """Apply one worker message. Returns True when it changed the render state."""
        try:
            result = parse_result(message)
        except ParseError:
            logger.exception("Dropping malformed worker message")
            return False

        event = None
        failure = None
        with self._lock:
            plan = self._plan
            if plan is None or result.token != plan.token:
                logger.debug("Discarding stale strip token=%s current=%s", result.token, self.current_token)
                return False
            key = (result.token, result.start_row)
            if key in self._seen or self._strip_rows.get(result.start_row) != result.row_count:
                logger.debug("[Token %s] ignoring duplicate or unknown strip at row %s", result.token, result.start_row)
                return False
            self._seen.add(key)

            if isinstance(result, StripResult):
                if result.width != plan.width:
                    logger.error("[Token %s] strip width %s does not match image width %s",
                                 result.token, result.width, plan.width)
                    self._failed += 1
                else:
                    band = np.frombuffer(result.pixels, dtype=np.uint8).reshape(result.row_count, result.width, 4)
                    self._image[result.start_row:result.start_row + result.row_count] = band
                    self._completed += 1
            elif isinstance(result, StripError):
                self._failed += 1
                failure = WorkerComputeError(result.message, token=result.token, start_row=result.start_row,
                                             row_count=result.row_count)
                logger.warning("[Token %s] strip at row %s failed: %s", result.token, result.start_row, result.message)

            if self._completed + self._failed == len(plan.strips):
                self._done = True
                event = RenderComplete(
                    token=plan.token,
                    elapsed=time.perf_counter() - self._started,
                    precision_bits=plan.precision_bits,
                    max_iterations=plan.max_iterations,
                    sample_step=plan.sample_step,
                    backend=plan.backend,
                    mode=plan.mode,
                    strips=len(plan.strips),
                    failed=self._failed,
                )

        if failure is not None and self.on_strip_failed is not None:
            self.on_strip_failed(failure)
        if event is not None and self.on_complete is not None:
            self.on_complete(event)
        return True

    def pixels(self) -> np.ndarray:
        with self._lock:
            return self._image.copy()

    def to_image(self) -> Image.Image:
        return Image.fromarray(self.pixels())  # (H, W, 4) uint8 -> RGBA
