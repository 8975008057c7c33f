from concurrent.futures import Executor, Future, ThreadPoolExecutor

import pytest

from deepzoom.events import RenderPlan
from deepzoom.messages import StripJob
from deepzoom.numeric.apn import APN
from deepzoom.viewport import Viewport


class HeldExecutor(Executor):
    """Keeps submissions until ``run_all``. ``in_flight`` marks them running so they cannot be cancelled."""

    def __init__(self, in_flight=True):
        self.in_flight = in_flight
        self.submitted = []

    def submit(self, fn, *args, **kwargs):
        fut = Future()
        if self.in_flight:
            fut.set_running_or_notify_cancel()
        self.submitted.append((fn, args, fut))
        return fut

    def run_all(self):
        pending, self.submitted = self.submitted, []
        for fn, args, fut in pending:
            if fut.cancelled():
                continue
            if not self.in_flight and not fut.set_running_or_notify_cancel():
                continue
            fut.set_result(fn(*args))

    def shutdown(self, wait=True, *, cancel_futures=False):
        if cancel_futures:
            for _, _, fut in self.submitted:
                fut.cancel()


class FailingExecutor(Executor):
    def submit(self, fn, *args, **kwargs):
        fut = Future()
        fut.set_running_or_notify_cancel()
        fut.set_exception(RuntimeError("worker process died"))
        return fut


@pytest.fixture
def thread_factory():
    return lambda: ThreadPoolExecutor(max_workers=1)


@pytest.fixture
def held_executors():
    executors = []

    def factory():
        ex = HeldExecutor()
        executors.append(ex)
        return ex

    factory.executors = executors
    return factory


@pytest.fixture
def default_view():
    return Viewport.from_strings(("-0.5", "0.0"), width=100, height=100, scale="0.035",
                                 precision_bits=256, max_iterations=200)


def make_job(viewport, *, start_row=0, row_count=None, token=1, backend="float", max_iterations=50,
             sample_step=1):
    x_min, y_min = viewport.origin()
    return StripJob(
        token=token,
        image_width=viewport.width,
        start_row=start_row,
        row_count=row_count if row_count is not None else viewport.height,
        sample_step=sample_step,
        max_iterations=max_iterations,
        precision_bits=viewport.precision_bits,
        backend=backend,
        x_min=x_min,
        y_min=y_min,
        pixel_scale=viewport.pixel_scale,
    )


def make_plan(token, *, width=4, height=6, strips=((0, 3), (3, 3))):
    return RenderPlan(
        token=token, width=width, height=height, strips=tuple(strips), precision_bits=128,
        max_iterations=100, sample_step=1, backend="fixed", mode="normal",
    )


def unit(exponent, precision=128):
    return APN(1, exponent, precision)
