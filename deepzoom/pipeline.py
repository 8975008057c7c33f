from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, List, Optional

from PIL import Image
from tqdm import tqdm

from deepzoom.errors import ConfigurationError
from deepzoom.events import RenderComplete
from deepzoom.numeric.apn import APN
from deepzoom.render import RenderService
from deepzoom.scheduler import ExecutorFactory
from deepzoom.util.logging_setup import get_logger
from deepzoom.viewport import Viewport


def _ensure_dir(path: str) -> None:
    if path:
        os.makedirs(path, exist_ok=True)


def _save_frame(img: Image.Image, frames_dir: str, frame_index: int) -> str:
    path = os.path.join(frames_dir, f"frame_{frame_index:06d}.png")
    img.save(path, format="PNG", optimize=True)
    return path


def viewport_from_config(cfg: Dict[str, Any]) -> Viewport:
    return Viewport.from_strings(
        (cfg["center"][0], cfg["center"][1]),
        width=int(cfg["width"]),
        height=int(cfg["height"]),
        scale=cfg.get("scale"),
        view_width=cfg.get("view_width", "3.5"),
        precision_bits=int(cfg["precision_bits"]),
        max_iterations=cfg.get("max_iterations"),
        sample_step=int(cfg.get("sample_step", 1)),
    )


def _service(cfg: Dict[str, Any], log_queue, log_level: int,
             executor_factory: Optional[ExecutorFactory]) -> RenderService:
    return RenderService(
        workers=cfg.get("workers"),
        strip_rows=cfg.get("strip_rows"),
        backend=cfg.get("backend", "auto"),
        iteration_cap=int(cfg["iteration_cap"]),
        executor_factory=executor_factory,
        log_queue=log_queue,
        log_level=log_level,
    )


def _summary(event: Optional[RenderComplete]) -> Dict[str, Any]:
    if event is None:
        return {}
    return {
        "token": event.token,
        "elapsed": round(event.elapsed, 3),
        "precision_bits": event.precision_bits,
        "max_iterations": event.max_iterations,
        "sample_step": event.sample_step,
        "backend": event.backend,
        "failed_strips": event.failed,
    }


def render_still(
    *,
    cfg: Dict[str, Any],
    log_queue=None,
    log_level: int = logging.INFO,
    executor_factory: Optional[ExecutorFactory] = None,
) -> Dict[str, Any]:
    logger = get_logger()
    output = str(cfg["output"])
    _ensure_dir(os.path.dirname(output))

    vp = viewport_from_config(cfg)
    logger.info("Render start size=%sx%s center=(%s, %s) scale=%s",
                vp.width, vp.height, cfg["center"][0], cfg["center"][1], vp.pixel_scale)
    with _service(cfg, log_queue, log_level, executor_factory) as service:
        token = service.request_render(vp, auto_precision=cfg["auto_precision"], mode=cfg["mode"])
        event = service.wait(token)
        img = service.image()
    img.save(output, format="PNG", optimize=True)
    logger.info("Saved %s", output)
    out = {"output": output}
    out.update(_summary(event))
    return out


def render_sequence(
    *,
    cfg: Dict[str, Any],
    log_queue=None,
    log_level: int = logging.INFO,
    executor_factory: Optional[ExecutorFactory] = None,
    progress: bool = True,
) -> Dict[str, Any]:
    """Render ``total_frames`` frames, multiplying the pixel scale by ``zoom_per_frame`` each step."""
    logger = get_logger()

    total_frames = int(cfg["total_frames"])
    frames_dir = str(cfg["frames_dir"])
    factor = APN.from_decimal(cfg["zoom_per_frame"], 64)
    if factor.sign() <= 0:
        raise ConfigurationError("zoom_per_frame must be positive.")

    _ensure_dir(frames_dir)
    vp = viewport_from_config(cfg)
    logger.info("Zoom start total_frames=%s size=%sx%s zoom_per_frame=%s", total_frames, vp.width, vp.height,
                cfg["zoom_per_frame"])

    frames: List[Dict[str, Any]] = []
    t0 = time.time()
    with _service(cfg, log_queue, log_level, executor_factory) as service:
        for i in tqdm(range(total_frames), disable=not progress, unit="frame"):
            if service.active_precision is not None and service.active_precision > vp.precision_bits:
                vp = vp.with_precision(service.active_precision)
            token = service.request_render(vp, auto_precision=cfg["auto_precision"], mode=cfg["mode"])
            event = service.wait(token)
            path = _save_frame(service.image(), frames_dir, i)
            info = {"frame": i, "path": path}
            info.update(_summary(event))
            frames.append(info)
            logger.info("Saved frame %s -> %s (bits=%s iter=%s)", i, path, info.get("precision_bits"),
                        info.get("max_iterations"))
            vp = vp.scaled(factor)

    logger.info("Zoom complete frames_dir=%s in %.1fs", frames_dir, time.time() - t0)
    return {"frames_dir": frames_dir, "total_frames": total_frames, "frames": frames}
