"""Wire format between the scheduler, the workers and the compositor.

Messages are plain dicts so they cross process boundaries as cheap pickles.
Every message carries ``version`` and ``type``; parsing demands exactly the
documented keys with the documented types and raises
:class:`~deepzoom.errors.ParseError` otherwise. There are no aliases and no
guessed defaults.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Union

from deepzoom.errors import ParseError
from deepzoom.numeric.apn import APN

SCHEMA_VERSION = 1

TYPE_JOB = "job"
TYPE_STRIP = "strip"
TYPE_ERROR = "error"

BACKEND_NAMES = ("fixed", "float")

_JOB_KEYS = frozenset((
    "version", "type", "token", "image_width", "start_row", "row_count", "sample_step",
    "max_iterations", "precision_bits", "backend", "x_min", "y_min", "pixel_scale",
))
_STRIP_KEYS = frozenset(("version", "type", "token", "start_row", "row_count", "width", "pixels"))
_ERROR_KEYS = frozenset(("version", "type", "token", "start_row", "row_count", "message"))


@dataclass(frozen=True)
class StripJob:
    token: int
    image_width: int
    start_row: int
    row_count: int
    sample_step: int
    max_iterations: int
    precision_bits: int
    backend: str
    x_min: APN
    y_min: APN
    pixel_scale: APN

    def to_message(self) -> Dict[str, Any]:
        return {
            "version": SCHEMA_VERSION,
            "type": TYPE_JOB,
            "token": self.token,
            "image_width": self.image_width,
            "start_row": self.start_row,
            "row_count": self.row_count,
            "sample_step": self.sample_step,
            "max_iterations": self.max_iterations,
            "precision_bits": self.precision_bits,
            "backend": self.backend,
            "x_min": self.x_min.serialize(),
            "y_min": self.y_min.serialize(),
            "pixel_scale": self.pixel_scale.serialize(),
        }


@dataclass(frozen=True)
class StripResult:
    token: int
    start_row: int
    row_count: int
    width: int
    pixels: bytes

    def to_message(self) -> Dict[str, Any]:
        return {
            "version": SCHEMA_VERSION,
            "type": TYPE_STRIP,
            "token": self.token,
            "start_row": self.start_row,
            "row_count": self.row_count,
            "width": self.width,
            "pixels": self.pixels,
        }


@dataclass(frozen=True)
class StripError:
    token: int
    start_row: int
    row_count: int
    message: str

    def to_message(self) -> Dict[str, Any]:
        return {
            "version": SCHEMA_VERSION,
            "type": TYPE_ERROR,
            "token": self.token,
            "start_row": self.start_row,
            "row_count": self.row_count,
            "message": self.message,
        }


def _check_keys(msg: Any, expected: frozenset, kind: str) -> None:
    if not isinstance(msg, dict):
        raise ParseError(f"{kind} message must be a dict, got {type(msg).__name__}")
    keys = set(msg)
    missing = expected - keys
    unknown = keys - expected
    if missing or unknown:
        raise ParseError(f"{kind} message keys mismatch: missing={sorted(missing)} unknown={sorted(unknown)}")
    if msg["version"] != SCHEMA_VERSION:
        raise ParseError(f"{kind} message version {msg['version']!r} is not {SCHEMA_VERSION}")


def _int_field(msg: Dict[str, Any], key: str, *, minimum: int) -> int:
    value = msg[key]
    if not isinstance(value, int) or isinstance(value, bool):
        raise ParseError(f"field {key!r} must be an int, got {value!r}")
    if value < minimum:
        raise ParseError(f"field {key!r} must be >= {minimum}, got {value}")
    return value


def parse_job(msg: Any) -> StripJob:
    _check_keys(msg, _JOB_KEYS, "job")
    if msg["type"] != TYPE_JOB:
        raise ParseError(f"expected a job message, got type {msg['type']!r}")
    backend = msg["backend"]
    if backend not in BACKEND_NAMES:
        raise ParseError(f"field 'backend' must be one of {BACKEND_NAMES}, got {backend!r}")
    return StripJob(
        token=_int_field(msg, "token", minimum=0),
        image_width=_int_field(msg, "image_width", minimum=1),
        start_row=_int_field(msg, "start_row", minimum=0),
        row_count=_int_field(msg, "row_count", minimum=1),
        sample_step=_int_field(msg, "sample_step", minimum=1),
        max_iterations=_int_field(msg, "max_iterations", minimum=1),
        precision_bits=_int_field(msg, "precision_bits", minimum=1),
        backend=backend,
        x_min=APN.deserialize(msg["x_min"]),
        y_min=APN.deserialize(msg["y_min"]),
        pixel_scale=APN.deserialize(msg["pixel_scale"]),
    )


def parse_result(msg: Any) -> Union[StripResult, StripError]:
    kind = msg.get("type") if isinstance(msg, dict) else None
    if kind == TYPE_STRIP:
        _check_keys(msg, _STRIP_KEYS, "strip")
        result = StripResult(
            token=_int_field(msg, "token", minimum=0),
            start_row=_int_field(msg, "start_row", minimum=0),
            row_count=_int_field(msg, "row_count", minimum=1),
            width=_int_field(msg, "width", minimum=1),
            pixels=msg["pixels"],
        )
        if not isinstance(result.pixels, (bytes, bytearray)):
            raise ParseError("field 'pixels' must be bytes")
        expected = result.width * result.row_count * 4
        if len(result.pixels) != expected:
            raise ParseError(f"strip pixel buffer has {len(result.pixels)} bytes, expected {expected}")
        return result
    if kind == TYPE_ERROR:
        _check_keys(msg, _ERROR_KEYS, "error")
        if not isinstance(msg["message"], str):
            raise ParseError("field 'message' must be a str")
        return StripError(
            token=_int_field(msg, "token", minimum=0),
            start_row=_int_field(msg, "start_row", minimum=0),
            row_count=_int_field(msg, "row_count", minimum=1),
            message=msg["message"],
        )
    raise ParseError(f"unknown result message type {kind!r}")
