"""Run manifest: enough to reproduce a render bit for bit.

Deep renders depend on the numeric settings as much as on the config, so the
guard bits and precision limits in effect are recorded alongside the effective
precision and iteration budget the service chose.
"""

import json
import os
import platform
import sys
import time
from dataclasses import asdict, dataclass
from importlib import metadata
from typing import Any, Dict, Optional

from deepzoom.numeric.apn import GUARD_BITS
from deepzoom.policy import MAX_PRECISION_BITS, MIN_PRECISION_BITS, PRECISION_MARGIN_BITS

_DISTRIBUTIONS = ("deepzoom", "numpy", "Pillow", "mpmath", "tqdm")


@dataclass(frozen=True)
class RunManifest:
    started_utc: str
    command: str
    config: Dict[str, Any]
    numeric: Dict[str, int]
    result: Dict[str, Any]
    environment: Dict[str, Any]
    git: Dict[str, Optional[str]]


def _installed_versions() -> Dict[str, str]:
    found = {}
    for name in _DISTRIBUTIONS:
        try:
            found[name] = metadata.version(name)
        except metadata.PackageNotFoundError:
            continue
    return found


def build_manifest(*, command: str, config: Dict[str, Any], result: Dict[str, Any],
                   git_commit: Optional[str]) -> RunManifest:
    return RunManifest(
        started_utc=time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        command=command,
        config=config,
        numeric={
            "guard_bits": GUARD_BITS,
            "min_precision_bits": MIN_PRECISION_BITS,
            "max_precision_bits": MAX_PRECISION_BITS,
            "precision_margin_bits": PRECISION_MARGIN_BITS,
        },
        result=result,
        environment={
            "python": sys.version.split()[0],
            "executable": sys.executable,
            "platform": platform.platform(),
            "cpu_count": os.cpu_count(),
            "packages": _installed_versions(),
        },
        git={"commit": git_commit},
    )


def write_manifest(path: str, manifest: RunManifest) -> None:
    folder = os.path.dirname(path)
    if folder:
        os.makedirs(folder, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(asdict(manifest), f, indent=2, sort_keys=True)
