import json

import pytest

from deepzoom.config import DEFAULTS, load_config, normalise_config
from deepzoom.errors import ConfigurationError


def test_defaults_without_path():
    cfg = load_config(None)
    assert cfg == DEFAULTS
    assert cfg is not DEFAULTS


def test_file_overrides_defaults(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({"width": 320, "center": ["-1.25", "0.01"]}), encoding="utf-8")
    cfg = load_config(str(path))
    assert cfg["width"] == 320
    assert cfg["height"] == DEFAULTS["height"]
    assert cfg["center"] == ["-1.25", "0.01"]


def test_unknown_fields_rejected(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({"colour": "red"}), encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_config(str(path))


@pytest.mark.parametrize("text", ["{not json", "[1, 2]"])
def test_bad_json_rejected(tmp_path, text):
    path = tmp_path / "cfg.json"
    path.write_text(text, encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_config(str(path))


def test_normalise_accepts_numbers_for_decimals():
    cfg = dict(DEFAULTS, center=[-0.5, 0], scale=0.01)
    out = normalise_config(cfg)
    assert out["center"] == ["-0.5", "0"]
    assert out["scale"] == "0.01"
    assert out["max_iterations"] is None


@pytest.mark.parametrize("override", [
    {"width": 0},
    {"height": "tall"},
    {"center": ["0"]},
    {"center": ["x", "0"]},
    {"scale": "tiny"},
    {"mode": "draft"},
    {"backend": "gpu"},
    {"workers": -1},
    {"auto_precision": "false"},
    {"auto_precision": 0},
    {"auto_precision": None},
])
def test_normalise_rejects_bad_values(override):
    with pytest.raises(ConfigurationError):
        normalise_config(dict(DEFAULTS, **override))
