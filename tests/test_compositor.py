import numpy as np
import pytest

from deepzoom.compositor import BACKGROUND, Compositor
from deepzoom.errors import WorkerComputeError
from deepzoom.messages import StripError, StripResult

from conftest import make_plan


def strip(token, start_row, rows=3, width=4, value=200):
    return StripResult(token, start_row, rows, width, bytes([value]) * (rows * width * 4)).to_message()


@pytest.fixture
def events():
    return {"complete": [], "failed": []}


@pytest.fixture
def compositor(events):
    return Compositor(on_complete=events["complete"].append, on_strip_failed=events["failed"].append)


def test_begin_clears_to_background(compositor):
    compositor.begin(make_plan(1))
    pixels = compositor.pixels()
    assert pixels.shape == (6, 4, 4)
    assert (pixels == np.array(BACKGROUND, dtype=np.uint8)).all()
    assert compositor.current_token == 1
    assert not compositor.is_complete


def test_stale_strip_leaves_image_unchanged(compositor):
    compositor.begin(make_plan(1))
    compositor.begin(make_plan(2))
    before = compositor.pixels()
    assert compositor.accept(strip(1, 0)) is False
    assert np.array_equal(compositor.pixels(), before)
    assert compositor.completed == 0


def test_duplicate_strip_applied_once(compositor, events):
    compositor.begin(make_plan(2))
    assert compositor.accept(strip(2, 0, value=10)) is True
    assert compositor.accept(strip(2, 0, value=99)) is False
    assert compositor.completed == 1
    assert (compositor.pixels()[0:3] == 10).all()
    assert events["complete"] == []


def test_completion_fires_once(compositor, events):
    compositor.begin(make_plan(4))
    compositor.accept(strip(4, 3, value=7))
    compositor.accept(strip(4, 0, value=5))
    compositor.accept(strip(4, 0, value=5))
    assert compositor.is_complete
    assert len(events["complete"]) == 1
    done = events["complete"][0]
    assert (done.token, done.strips, done.failed, done.precision_bits) == (4, 2, 0, 128)
    assert done.elapsed >= 0
    assert (compositor.pixels()[3:] == 7).all()


def test_error_counts_towards_completion(compositor, events):
    compositor.begin(make_plan(5))
    compositor.accept(strip(5, 0))
    assert compositor.accept(StripError(5, 3, 3, "RuntimeError: boom").to_message()) is True
    assert compositor.failed == 1
    failure = events["failed"][0]
    assert isinstance(failure, WorkerComputeError)
    assert (failure.token, failure.start_row, failure.row_count, str(failure)) == (5, 3, 3, "RuntimeError: boom")
    assert events["complete"][0].failed == 1
    assert (compositor.pixels()[3:] == np.array(BACKGROUND, dtype=np.uint8)).all()


def test_unknown_strip_geometry_ignored(compositor):
    compositor.begin(make_plan(1))
    assert compositor.accept(strip(1, 1)) is False
    assert compositor.accept(strip(1, 0, rows=2)) is False


def test_malformed_message_dropped(compositor):
    compositor.begin(make_plan(1))
    assert compositor.accept({"type": "strip"}) is False
    assert compositor.accept(None) is False


def test_wrong_width_counts_as_failed(compositor):
    compositor.begin(make_plan(1))
    assert compositor.accept(strip(1, 0, width=3)) is True
    assert compositor.failed == 1


def test_token_must_increase(compositor):
    compositor.begin(make_plan(3))
    with pytest.raises(ValueError):
        compositor.begin(make_plan(3))
    with pytest.raises(ValueError):
        compositor.begin(make_plan(2))


def test_to_image(compositor):
    compositor.begin(make_plan(1))
    img = compositor.to_image()
    assert img.size == (4, 6)
    assert img.mode == "RGBA"
