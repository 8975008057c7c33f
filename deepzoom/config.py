import json
from typing import Any, Dict, Optional

from deepzoom.errors import ConfigurationError, ParseError
from deepzoom.numeric.apn import APN
from deepzoom.policy import BACKENDS, MAX_ITERATIONS, MODES

DEFAULTS: Dict[str, Any] = {
    "width": 800,
    "height": 600,
    "center": ["-0.5", "0.0"],
    "scale": None,
    "view_width": "3.5",
    "precision_bits": 256,
    "auto_precision": True,
    "max_iterations": None,
    "iteration_cap": MAX_ITERATIONS,
    "sample_step": 1,
    "mode": "normal",
    "backend": "auto",
    "workers": None,
    "strip_rows": None,
    "output": "deepzoom.png",
    "frames_dir": "frames",
    "total_frames": 60,
    "zoom_per_frame": "0.5",
}


def load_config(config_path: Optional[str]) -> Dict[str, Any]:
    if not config_path:
        return dict(DEFAULTS)
    with open(config_path, "r", encoding="utf-8") as f:
        try:
            cfg = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Config {config_path} is not valid JSON: {e}") from e
    if not isinstance(cfg, dict):
        raise ConfigurationError("Config JSON must be an object.")
    unknown = set(cfg) - set(DEFAULTS)
    if unknown:
        raise ConfigurationError(f"Unknown config fields: {sorted(unknown)}")
    out = dict(DEFAULTS)
    out.update(cfg)
    return out


def _positive_int(cfg: Dict[str, Any], key: str, *, optional: bool = False) -> Optional[int]:
    value = cfg.get(key)
    if value is None and optional:
        return None
    try:
        number = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{key} must be an integer, got {value!r}") from e
    if number <= 0:
        raise ConfigurationError(f"{key} must be positive, got {number}")
    return number


def _decimal(key: str, value: Any) -> str:
    # numbers are accepted for convenience but strings keep every digit of deep coordinates
    text = value if isinstance(value, str) else repr(value)
    try:
        APN.from_decimal(text, 64)
    except ParseError as e:
        raise ConfigurationError(f"{key}: {e}") from e
    return text


def normalise_config(cfg: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(cfg)
    for key in ("width", "height", "precision_bits", "iteration_cap", "sample_step", "total_frames"):
        out[key] = _positive_int(cfg, key)
    for key in ("max_iterations", "workers", "strip_rows"):
        out[key] = _positive_int(cfg, key, optional=True)

    center = cfg.get("center")
    if not (isinstance(center, (list, tuple)) and len(center) == 2):
        raise ConfigurationError("center must be [re, im].")
    out["center"] = [_decimal("center", c) for c in center]
    out["scale"] = None if cfg.get("scale") is None else _decimal("scale", cfg["scale"])
    out["view_width"] = _decimal("view_width", cfg.get("view_width", "3.5"))
    out["zoom_per_frame"] = _decimal("zoom_per_frame", cfg.get("zoom_per_frame", "0.5"))

    if cfg.get("mode") not in MODES:
        raise ConfigurationError(f"mode must be one of {MODES}, got {cfg.get('mode')!r}")
    if cfg.get("backend") not in BACKENDS:
        raise ConfigurationError(f"backend must be one of {BACKENDS}, got {cfg.get('backend')!r}")
    auto_precision = cfg.get("auto_precision", True)
    if not isinstance(auto_precision, bool):
        raise ConfigurationError(f"auto_precision must be true or false, got {auto_precision!r}")
    out["auto_precision"] = auto_precision
    out["output"] = str(cfg.get("output", DEFAULTS["output"]))
    out["frames_dir"] = str(cfg.get("frames_dir", DEFAULTS["frames_dir"]))
    return out
