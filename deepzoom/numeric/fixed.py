"""Scaled-integer numbers: ``raw / 2**bits``.

Same operation set as :class:`~deepzoom.numeric.apn.APN` with the exponent
pinned at ``-bits``. No normalisation step runs, which makes it the cheaper
backend whenever ``bits`` already covers the smallest magnitude a render
touches (the pixel scale) with headroom to spare.
"""

from __future__ import annotations

import math
import re
from typing import Any, Dict, Tuple, Union

from deepzoom.errors import ParseError
from deepzoom.numeric.apn import APN, GUARD_BITS, NATIVE_BITS, truncate_shift

_SERIAL_KEYS = frozenset(("raw", "bits"))
_INTEGER_RE = re.compile(r"^[+-]?\d+$")


class Fixed:
    __slots__ = ("raw", "bits")

    def __init__(self, raw: int, bits: int) -> None:
        bits = int(bits)
        if bits < 1:
            raise ValueError(f"bits must be positive, got {bits}")
        object.__setattr__(self, "raw", int(raw))
        object.__setattr__(self, "bits", bits)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("Fixed is immutable")

    def __reduce__(self):
        return (Fixed, (self.raw, self.bits))

    @property
    def precision(self) -> int:
        return self.bits

    @property
    def mantissa(self) -> int:
        return self.raw

    @property
    def exponent(self) -> int:
        return -self.bits

    @classmethod
    def from_apn(cls, value: APN, bits: int) -> "Fixed":
        shift = value.exponent + bits
        if shift >= 0:
            return cls(value.mantissa << shift, bits)
        return cls(truncate_shift(value.mantissa, -shift), bits)

    @classmethod
    def from_decimal(cls, text: str, bits: int) -> "Fixed":
        return cls.from_apn(APN.from_decimal(text, bits + GUARD_BITS), bits)

    @classmethod
    def from_native(cls, value: float, bits: int) -> "Fixed":
        return cls.from_apn(APN.from_native(value, NATIVE_BITS), bits)

    @classmethod
    def deserialize(cls, data: Any) -> "Fixed":
        if not isinstance(data, dict) or set(data) != _SERIAL_KEYS:
            raise ParseError(f"fixed-point form needs exactly the keys {sorted(_SERIAL_KEYS)}, got {data!r}")
        raw, bits = data["raw"], data["bits"]
        if not isinstance(raw, str) or not _INTEGER_RE.match(raw):
            raise ParseError(f"fixed-point raw value must be a decimal integer string, got {raw!r}")
        if not isinstance(bits, int) or isinstance(bits, bool) or bits < 1:
            raise ParseError(f"fixed-point bits must be a positive int, got {bits!r}")
        return cls(int(raw), bits)

    def serialize(self) -> Dict[str, Any]:
        return {"raw": str(self.raw), "bits": self.bits}

    def to_apn(self, precision: int = 0) -> APN:
        return APN(self.raw, -self.bits, precision or self.bits)

    def with_precision(self, bits: int) -> "Fixed":
        if bits == self.bits:
            return self
        if bits > self.bits:
            return Fixed(self.raw << (bits - self.bits), bits)
        return Fixed(truncate_shift(self.raw, self.bits - bits), bits)

    def zero_like(self) -> "Fixed":
        return Fixed(0, self.bits)

    def is_zero(self) -> bool:
        return self.raw == 0

    def negate(self) -> "Fixed":
        return Fixed(-self.raw, self.bits)

    def _aligned(self, other: "Fixed") -> Tuple[int, int, int]:
        if self.bits == other.bits:
            return self.raw, other.raw, self.bits
        bits = max(self.bits, other.bits)
        return self.with_precision(bits).raw, other.with_precision(bits).raw, bits

    def add(self, other: "Fixed") -> "Fixed":
        a, b, bits = self._aligned(other)
        return Fixed(a + b, bits)

    def subtract(self, other: "Fixed") -> "Fixed":
        a, b, bits = self._aligned(other)
        return Fixed(a - b, bits)

    def multiply(self, other: "Fixed") -> "Fixed":
        a, b, bits = self._aligned(other)
        return Fixed(truncate_shift(a * b, bits), bits)

    def multiply_by_small_int(self, n: int) -> "Fixed":
        return Fixed(self.raw * n, self.bits)

    def approx_log2_magnitude(self) -> Union[int, float]:
        if self.raw == 0:
            return -math.inf
        return self.raw.bit_length() - 1 - self.bits

    def approx_native(self) -> float:
        raw, e = self.raw, -self.bits
        if raw == 0:
            return 0.0
        excess = raw.bit_length() - NATIVE_BITS
        if excess > 0:
            raw = truncate_shift(raw, excess)
            e += excess
        try:
            return math.ldexp(raw, e)
        except OverflowError:
            return math.copysign(math.inf, raw)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Fixed):
            return NotImplemented
        a, b, _ = self._aligned(other)
        return a == b

    def __hash__(self) -> int:
        return hash(self.to_apn(max(1, self.raw.bit_length())))

    def __add__(self, other: "Fixed") -> "Fixed":
        return self.add(other)

    def __sub__(self, other: "Fixed") -> "Fixed":
        return self.subtract(other)

    def __mul__(self, other: Union["Fixed", int]) -> "Fixed":
        if isinstance(other, Fixed):
            return self.multiply(other)
        return self.multiply_by_small_int(other)

    def __neg__(self) -> "Fixed":
        return self.negate()

    def __float__(self) -> float:
        return self.approx_native()

    def __repr__(self) -> str:
        return f"Fixed({self.raw}, {self.bits})"
