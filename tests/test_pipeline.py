import os

from PIL import Image

from deepzoom.config import DEFAULTS, normalise_config
from deepzoom.pipeline import render_sequence, render_still


def small_config(tmp_path, **extra):
    cfg = dict(DEFAULTS, width=24, height=18, max_iterations=60, workers=2, strip_rows=6,
               output=str(tmp_path / "out" / "still.png"), frames_dir=str(tmp_path / "frames"))
    cfg.update(extra)
    return normalise_config(cfg)


def test_render_still_writes_png(tmp_path, thread_factory):
    result = render_still(cfg=small_config(tmp_path), executor_factory=thread_factory)
    assert os.path.exists(result["output"])
    assert result["failed_strips"] == 0
    assert result["precision_bits"] == 256
    with Image.open(result["output"]) as img:
        assert img.size == (24, 18)


def test_render_sequence_zooms_in(tmp_path, thread_factory):
    cfg = small_config(tmp_path, total_frames=3, zoom_per_frame="0.125", center=["-0.75", "0.1"])
    result = render_sequence(cfg=cfg, executor_factory=thread_factory, progress=False)
    frames = result["frames"]
    assert [f["frame"] for f in frames] == [0, 1, 2]
    assert all(os.path.exists(f["path"]) for f in frames)
    assert sorted(os.listdir(result["frames_dir"])) == [
        "frame_000000.png", "frame_000001.png", "frame_000002.png"]
    bits = [f["precision_bits"] for f in frames]
    assert bits == sorted(bits)
