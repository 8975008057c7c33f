from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Optional, Tuple

from deepzoom.errors import ConfigurationError
from deepzoom.numeric.apn import APN

DEFAULT_CENTER = ("-0.5", "0.0")
DEFAULT_VIEW_WIDTH = "3.5"
MAX_ZOOM_SHIFT = 60


@dataclass(frozen=True)
class Viewport:
    """Immutable render snapshot. ``pixel_scale`` is complex-plane units per output pixel.

    ``max_iterations=None`` asks the render service to derive the budget from the zoom depth.
    """

    center_re: APN
    center_im: APN
    pixel_scale: APN
    width: int
    height: int
    precision_bits: int = 256
    max_iterations: Optional[int] = None
    sample_step: int = 1

    def __post_init__(self) -> None:
        if self.width < 1 or self.height < 1:
            raise ConfigurationError(f"image size must be positive, got {self.width}x{self.height}")
        if self.sample_step < 1:
            raise ConfigurationError(f"sample_step must be >= 1, got {self.sample_step}")
        if self.precision_bits < 1:
            raise ConfigurationError(f"precision_bits must be >= 1, got {self.precision_bits}")
        if self.max_iterations is not None and self.max_iterations < 1:
            raise ConfigurationError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.pixel_scale.sign() <= 0:
            raise ConfigurationError("pixel_scale must be positive")

    @classmethod
    def from_strings(
        cls,
        center: Tuple[str, str] = DEFAULT_CENTER,
        *,
        width: int,
        height: int,
        scale: Optional[str] = None,
        view_width: str = DEFAULT_VIEW_WIDTH,
        precision_bits: int = 256,
        max_iterations: Optional[int] = None,
        sample_step: int = 1,
    ) -> "Viewport":
        """Build a snapshot from decimal strings.

        Without ``scale`` the view spans ``view_width`` complex units across ``width`` pixels.
        Precision is widened when a centre coordinate carries more digits than ``precision_bits`` holds.
        """
        precision_bits = max(precision_bits, decimal_precision_bits(center[0]), decimal_precision_bits(center[1]))
        if scale is not None:
            pixel_scale = APN.from_decimal(scale, precision_bits)
        else:
            span = APN.from_decimal(view_width, precision_bits + 64)
            pixel_scale = _divide_by_int(span, max(1, width)).with_precision(precision_bits)
        return cls(
            center_re=APN.from_decimal(center[0], precision_bits),
            center_im=APN.from_decimal(center[1], precision_bits),
            pixel_scale=pixel_scale,
            width=width,
            height=height,
            precision_bits=precision_bits,
            max_iterations=max_iterations,
            sample_step=sample_step,
        )

    @property
    def max_dimension(self) -> int:
        return max(self.width, self.height)

    def with_precision(self, bits: int) -> "Viewport":
        if bits == self.precision_bits and self.center_re.precision == bits:
            return self
        return replace(
            self,
            center_re=self.center_re.with_precision(bits),
            center_im=self.center_im.with_precision(bits),
            pixel_scale=self.pixel_scale.with_precision(bits),
            precision_bits=bits,
        )

    def origin(self) -> Tuple[APN, APN]:
        """Complex coordinate of pixel (0, 0); pixel (x, y) is ``origin + (x, y) * pixel_scale``."""
        x_min = self.center_re.subtract(self.pixel_scale.multiply_by_small_int(self.width // 2))
        y_min = self.center_im.subtract(self.pixel_scale.multiply_by_small_int(self.height // 2))
        return x_min, y_min

    def pixel_to_complex(self, x: int, y: int) -> Tuple[APN, APN]:
        x_min, y_min = self.origin()
        return (x_min.add(self.pixel_scale.multiply_by_small_int(x)),
                y_min.add(self.pixel_scale.multiply_by_small_int(y)))

    def panned(self, dx: int, dy: int) -> "Viewport":
        """Move the view so the content follows a drag of ``(dx, dy)`` pixels."""
        return replace(
            self,
            center_re=self.center_re.subtract(self.pixel_scale.multiply_by_small_int(dx)),
            center_im=self.center_im.subtract(self.pixel_scale.multiply_by_small_int(dy)),
        )

    def zoomed(self, shift: int, px: Optional[int] = None, py: Optional[int] = None) -> "Viewport":
        """Power-of-two zoom keeping the point under pixel ``(px, py)`` fixed.

        ``shift < 0`` zooms in by ``2**-shift``, ``shift > 0`` zooms out. A single call moves
        at most ``MAX_ZOOM_SHIFT`` octaves.
        """
        if shift == 0:
            return self
        shift = max(-MAX_ZOOM_SHIFT, min(MAX_ZOOM_SHIFT, shift))
        px = self.width // 2 if px is None else px
        py = self.height // 2 if py is None else py
        dx = px - self.width // 2
        dy = py - self.height // 2

        old = self.pixel_scale
        new = APN(old.mantissa, old.exponent + shift, old.precision)
        # anchor: center + d*old == center' + d*new
        return replace(
            self,
            center_re=self.center_re.add(old.multiply_by_small_int(dx)).subtract(new.multiply_by_small_int(dx)),
            center_im=self.center_im.add(old.multiply_by_small_int(dy)).subtract(new.multiply_by_small_int(dy)),
            pixel_scale=new,
        )

    def scaled(self, factor: APN) -> "Viewport":
        return replace(self, pixel_scale=self.pixel_scale.multiply(factor).with_precision(self.precision_bits))


def _divide_by_int(value: APN, n: int) -> APN:
    # value has enough spare bits that floor division keeps ``precision`` significant bits
    shift = n.bit_length() + 1
    return APN((value.mantissa << shift) // n, value.exponent - shift, value.precision)


def decimal_precision_bits(text: str) -> int:
    """Bits needed to keep every significant digit of a decimal string."""
    mantissa = text.strip().lstrip("+-").split("e")[0].split("E")[0].replace(".", "").lstrip("0")
    return math.ceil(len(mantissa) * math.log2(10)) + 16
