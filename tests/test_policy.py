import pytest

from deepzoom.errors import PrecisionUnderflow
from deepzoom.numeric.apn import APN
from deepzoom.policy import (MAX_PRECISION_BITS, MIN_PRECISION_BITS, PrecisionRatchet, apply_mode, choose_backend,
                             iteration_budget, required_precision_bits, strip_height, worker_count)


def scale(exponent):
    return APN(1, exponent, 64)


def test_required_precision_floor_and_depth():
    assert required_precision_bits(APN.from_native(0.035), 100) == MIN_PRECISION_BITS
    assert required_precision_bits(scale(-1000), 1024) == 1000 + 10 + 64
    assert required_precision_bits(scale(-20000), 1024) == MAX_PRECISION_BITS


def test_required_precision_is_monotone_in_depth():
    bits = [required_precision_bits(scale(-e), 800) for e in range(0, 3000, 37)]
    assert bits == sorted(bits)


def test_required_precision_rejects_zero_scale():
    with pytest.raises(PrecisionUnderflow):
        required_precision_bits(APN.zero(), 100)


def test_iteration_budget():
    start = scale(-8)
    assert iteration_budget(start, start) == 220
    assert iteration_budget(scale(-108), start) == 220 + 240
    assert iteration_budget(scale(-10_000_000), start) == 20000
    assert iteration_budget(scale(0), start) == 220


def test_iteration_budget_monotone():
    start = scale(-8)
    budgets = [iteration_budget(scale(-8 - k), start) for k in range(0, 5000, 13)]
    assert budgets == sorted(budgets)
    assert all(200 <= b <= 20000 for b in budgets)


def test_ratchet_never_decreases():
    ratchet = PrecisionRatchet(256)
    seen = [ratchet.update(scale(-e), 512) for e in (4, 100, 300, 900, 600, 10, 1200)]
    assert seen == sorted(seen)
    assert seen[0] == 256
    assert seen[-1] == 1200 + 9 + 64


def test_ratchet_raise_to_is_clamped():
    ratchet = PrecisionRatchet(128)
    assert ratchet.raise_to(64) == 128
    assert ratchet.raise_to(99999) == MAX_PRECISION_BITS


def test_choose_backend():
    assert choose_backend(scale(-10), 256) == "fixed"
    assert choose_backend(scale(-250), 256) == "float"
    assert choose_backend(scale(-250), 256, "fixed") == "fixed"
    assert choose_backend(scale(-10), 256, "float") == "float"
    with pytest.raises(ValueError):
        choose_backend(scale(-10), 256, "gpu")


@pytest.mark.parametrize("cpus, expected", [(1, 1), (2, 1), (4, 3), (32, 8)])
def test_worker_count(cpus, expected):
    assert worker_count(cpus) == expected


def test_strip_height():
    assert strip_height(1000, 4) == 41
    assert strip_height(50, 8) == 16


def test_apply_mode_normal_respects_cap():
    s = apply_mode("normal", precision_bits=300, max_iterations=50000, sample_step=2, scale=scale(-20),
                   max_dimension=100, iteration_cap=20000)
    assert (s.precision_bits, s.max_iterations, s.sample_step) == (300, 20000, 2)


def test_apply_mode_preview():
    s = apply_mode("preview", precision_bits=1024, max_iterations=5000, sample_step=2,
                   scale=APN.from_native(0.01), max_dimension=100)
    assert (s.precision_bits, s.max_iterations, s.sample_step) == (192, 700, 6)


def test_apply_mode_preview_keeps_needed_precision():
    s = apply_mode("preview", precision_bits=1024, max_iterations=300, sample_step=8,
                   scale=scale(-500), max_dimension=100)
    assert s.precision_bits == 500 + 7 + 16
    assert s.max_iterations == 300
    assert s.sample_step == 16


def test_apply_mode_hq():
    s = apply_mode("hq", precision_bits=256, max_iterations=400, sample_step=4, scale=scale(-20),
                   max_dimension=100)
    assert (s.precision_bits, s.max_iterations, s.sample_step) == (256, 1500, 1)
    capped = apply_mode("hq", precision_bits=256, max_iterations=400, sample_step=4, scale=scale(-20),
                        max_dimension=100, iteration_cap=1000)
    assert capped.max_iterations == 1000


def test_apply_mode_unknown():
    with pytest.raises(ValueError):
        apply_mode("draft", precision_bits=256, max_iterations=400, sample_step=1, scale=scale(-20),
                   max_dimension=100)
