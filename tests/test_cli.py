import json
import logging

import pytest

from deepzoom.cli import build_arg_parser, main
from deepzoom.util.logging_setup import get_logger


@pytest.fixture(autouse=True)
def restore_package_logger():
    yield
    logger = get_logger()
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


def test_point_interior(capsys):
    assert main(["--log-file", "", "point", "-1", "0", "--iterations", "50"]) == 0
    out = capsys.readouterr().out
    assert out.startswith("interior iterations=50")
    assert "shortcut=bulb" in out


def test_point_escaped(capsys):
    assert main(["--log-file", "", "point", "2", "0", "--backend", "fixed"]) == 0
    assert capsys.readouterr().out.startswith("escaped iterations=1 ")


def test_point_bad_decimal_exits_with_error(capsys):
    assert main(["--log-file", "", "point", "two", "0"]) == 2


def test_bad_config_exits_with_error(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({"width": -5}), encoding="utf-8")
    assert main(["--log-file", "", "--manifest", "", "--config", str(path), "render"]) == 2


def test_render_writes_image_and_manifest(tmp_path):
    manifest = tmp_path / "artifacts" / "run.json"
    output = tmp_path / "still.png"
    code = main([
        "--log-file", str(tmp_path / "deepzoom.log"), "--manifest", str(manifest),
        "render", "--width", "16", "--height", "12", "--iterations", "30", "--step", "2",
        "--workers", "1", "--no-auto-precision", "--precision", "128", "--output", str(output),
    ])
    assert code == 0
    assert output.exists()
    data = json.loads(manifest.read_text(encoding="utf-8"))
    assert data["command"] == "render"
    assert data["result"]["precision_bits"] == 128
    assert data["result"]["max_iterations"] == 30
    assert data["config"]["sample_step"] == 2
    assert "numpy" in data["environment"]["packages"]
    assert data["numeric"]["guard_bits"] == 64


def test_overrides_parse():
    args = build_arg_parser().parse_args(
        ["zoom", "--center", "-0.75", "0.1", "--frames", "5", "--zoom-per-frame", "0.8", "--mode", "preview"])
    assert args.center == ["-0.75", "0.1"]
    assert (args.frames, args.zoom_per_frame, args.mode) == (5, "0.8", "preview")
