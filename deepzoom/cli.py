from __future__ import annotations

import argparse
import logging
import subprocess
from typing import Any, Dict, Optional

from deepzoom.config import load_config, normalise_config
from deepzoom.errors import DeepZoomError
from deepzoom.kernel import classify_point
from deepzoom.pipeline import render_sequence, render_still
from deepzoom.policy import BACKENDS, MODES
from deepzoom.util.logging_setup import WorkerLogRelay, configure_logging, get_logger
from deepzoom.util.manifest import build_manifest, write_manifest


def _git_commit() -> Optional[str]:
    try:
        r = subprocess.run(["git", "rev-parse", "HEAD"], capture_output=True, text=True, check=True)
        return r.stdout.strip()
    except (OSError, subprocess.CalledProcessError):
        return None


def _add_view_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--width", type=int, default=None, help="Image width in pixels.")
    p.add_argument("--height", type=int, default=None, help="Image height in pixels.")
    p.add_argument("--center", nargs=2, metavar=("RE", "IM"), default=None, help="Centre as decimal strings.")
    p.add_argument("--scale", type=str, default=None, help="Complex units per pixel (decimal string).")
    p.add_argument("--precision", type=int, default=None, help="Starting precision in bits.")
    p.add_argument("--no-auto-precision", action="store_true", help="Keep the given precision fixed.")
    p.add_argument("--iterations", type=int, default=None, help="Iteration budget (default: derived from zoom).")
    p.add_argument("--step", type=int, default=None, help="Sample every N-th pixel and fill blocks.")
    p.add_argument("--mode", type=str, default=None, choices=list(MODES), help="Render mode.")
    p.add_argument("--backend", type=str, default=None, choices=list(BACKENDS), help="Numeric backend.")
    p.add_argument("--workers", type=int, default=None, help="Worker processes (default: CPUs - 1, max 8).")


_OVERRIDES = {
    "width": "width", "height": "height", "center": "center", "scale": "scale",
    "precision": "precision_bits", "iterations": "max_iterations", "step": "sample_step",
    "mode": "mode", "backend": "backend", "workers": "workers",
}


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="deepzoom", description="Arbitrary-precision Mandelbrot renderer.")
    p.add_argument("--config", type=str, default=None, help="Path to config JSON. If omitted, built-in defaults.")
    p.add_argument("--log-level", type=str, default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                   help="Log level.")
    p.add_argument("--log-file", type=str, default="deepzoom.log",
                   help="Log file path (rotating). Set empty to disable file logging.")
    p.add_argument("--manifest", type=str, default="artifacts/run.json", help="Run manifest path. Empty disables.")
    sub = p.add_subparsers(dest="cmd", required=True)

    r = sub.add_parser("render", help="Render one image to PNG.")
    _add_view_args(r)
    r.add_argument("--output", type=str, default=None, help="Output PNG (defaults to config.output).")

    z = sub.add_parser("zoom", help="Render a zoom sequence of PNG frames.")
    _add_view_args(z)
    z.add_argument("--frames-dir", type=str, default=None, help="Override frames_dir from config.")
    z.add_argument("--frames", type=int, default=None, help="Number of frames.")
    z.add_argument("--zoom-per-frame", type=str, default=None, help="Scale multiplier per frame, e.g. 0.5.")
    z.add_argument("--no-progress", action="store_true", help="Disable the progress bar.")

    pt = sub.add_parser("point", help="Classify a single coordinate.")
    pt.add_argument("re", type=str)
    pt.add_argument("im", type=str)
    pt.add_argument("--iterations", type=int, default=1000)
    pt.add_argument("--precision", type=int, default=256)
    pt.add_argument("--backend", type=str, default="float", choices=["fixed", "float"])

    return p


def _apply_overrides(cfg: Dict[str, Any], args: argparse.Namespace) -> Dict[str, Any]:
    for arg, key in _OVERRIDES.items():
        value = getattr(args, arg, None)
        if value is not None:
            cfg[key] = value
    if getattr(args, "no_auto_precision", False):
        cfg["auto_precision"] = False
    if getattr(args, "output", None):
        cfg["output"] = args.output
    if getattr(args, "frames_dir", None):
        cfg["frames_dir"] = args.frames_dir
    if getattr(args, "frames", None):
        cfg["total_frames"] = args.frames
    if getattr(args, "zoom_per_frame", None):
        cfg["zoom_per_frame"] = args.zoom_per_frame
    return cfg


def main(argv: Optional[list] = None) -> int:
    args = build_arg_parser().parse_args(argv)

    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    log_file = args.log_file if args.log_file and args.log_file.strip() else None
    relay = WorkerLogRelay(configure_logging(level=log_level, console=True, log_file=log_file)).start()

    logger = get_logger()

    try:
        if args.cmd == "point":
            result = classify_point(args.re, args.im, max_iterations=args.iterations,
                                    precision_bits=args.precision, backend=args.backend)
            state = "escaped" if result.escaped else "interior"
            print(f"{state} iterations={result.iterations} smooth={result.smooth:.6f}"
                  + (f" shortcut={result.shortcut}" if result.shortcut else ""))
            return 0

        cfg = normalise_config(_apply_overrides(load_config(args.config), args))
        if args.cmd == "render":
            result = render_still(cfg=cfg, log_queue=relay.queue, log_level=log_level)
        elif args.cmd == "zoom":
            result = render_sequence(cfg=cfg, log_queue=relay.queue, log_level=log_level, progress=not args.no_progress)
        else:
            raise RuntimeError("Unknown command.")

        if args.manifest:
            manifest = build_manifest(command=args.cmd, config=cfg, result=result, git_commit=_git_commit())
            write_manifest(args.manifest, manifest)
            logger.info("Run manifest written: %s", args.manifest)
        return 0
    except DeepZoomError as e:
        logger.error("%s", e)
        return 2
    finally:
        relay.stop()
