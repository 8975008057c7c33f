from concurrent.futures import ThreadPoolExecutor

import pytest

from deepzoom.errors import PrecisionUnderflow
from deepzoom.numeric.apn import APN
from deepzoom.scheduler import TileScheduler, WorkerPool, plan_strips
from deepzoom.viewport import Viewport

from conftest import HeldExecutor, make_plan


@pytest.mark.parametrize("height", [1, 7, 16, 100, 101, 1080])
@pytest.mark.parametrize("strip_rows", [1, 3, 16, 200])
@pytest.mark.parametrize("step", [1, 2, 5])
def test_plan_covers_every_row_once(height, strip_rows, step):
    strips = plan_strips(height, strip_rows, step)
    covered = [y for start, rows in strips for y in range(start, start + rows)]
    assert covered == list(range(height))
    assert all(rows > 0 for _, rows in strips)
    assert all(rows % step == 0 for _, rows in strips[:-1])


@pytest.mark.parametrize("args", [(0, 16), (10, 0), (10, 16, 0)])
def test_plan_rejects_non_positive(args):
    with pytest.raises(ValueError):
        plan_strips(*args)


def test_tokens_increase():
    scheduler = TileScheduler(WorkerPool(1, executor_factory=HeldExecutor))
    tokens = [scheduler.next_token() for _ in range(5)]
    assert tokens == [1, 2, 3, 4, 5]
    assert scheduler.current_token == 5


def test_pool_round_robin():
    executors = []

    def factory():
        executors.append(HeldExecutor())
        return executors[-1]

    pool = WorkerPool(3, executor_factory=factory)
    for i in range(7):
        pool.submit(i, print, i)
    assert [[args[0] for _, args, _ in ex.submitted] for ex in executors] == [[0, 3, 6], [1, 4], [2, 5]]


def test_pool_close_cancels_queued():
    ex = HeldExecutor(in_flight=False)
    pool = WorkerPool(1, executor_factory=lambda: ex)
    fut = pool.submit(0, print, "x")
    pool.close(wait=False)
    assert fut.cancelled()


def test_pool_size_must_be_positive():
    with pytest.raises(ValueError):
        WorkerPool(0, executor_factory=HeldExecutor)


def deep_view(exponent, precision):
    return Viewport(
        center_re=APN.from_decimal("1", precision),
        center_im=APN.zero(precision),
        pixel_scale=APN(1, exponent, precision),
        width=64,
        height=64,
        precision_bits=precision,
    )


def test_locate_detects_vanishing_step():
    vp = deep_view(-300, 128)
    with pytest.raises(PrecisionUnderflow) as info:
        TileScheduler.locate(vp, 128, "float")
    assert info.value.precision_bits == 128
    x_min, y_min, scale = TileScheduler.locate(vp, 512, "float")
    assert scale.precision == 512
    assert not x_min.add(scale).subtract(x_min).is_zero()


def test_locate_fixed_needs_resolution():
    vp = Viewport(center_re=APN.zero(256), center_im=APN.zero(256), pixel_scale=APN(1, -300, 256),
                  width=8, height=8, precision_bits=256)
    TileScheduler.locate(vp, 256, "float")
    with pytest.raises(PrecisionUnderflow):
        TileScheduler.locate(vp, 256, "fixed")


def test_build_jobs_and_dispatch(default_view):
    plan = make_plan(3, width=default_view.width, height=6, strips=((0, 2), (2, 2), (4, 2)))
    x_min, y_min = default_view.origin()
    jobs = TileScheduler.build_jobs(plan, x_min, y_min, default_view.pixel_scale)
    assert [(j.start_row, j.row_count) for j in jobs] == list(plan.strips)
    assert {j.token for j in jobs} == {3}

    with ThreadPoolExecutor(max_workers=2) as shared:
        scheduler = TileScheduler(WorkerPool(2, executor_factory=lambda: shared))
        done = []
        futures = scheduler.dispatch(jobs, lambda job, fut: done.append((job.start_row, fut.result()["type"])))
        for fut in futures:
            fut.result()
    assert sorted(done) == [(0, "strip"), (2, "strip"), (4, "strip")]
