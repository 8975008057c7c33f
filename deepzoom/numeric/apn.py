"""Arbitrary-precision binary floating numbers.

An :class:`APN` is ``mantissa * 2**exponent`` where ``mantissa`` is a Python
int whose magnitude is normalised to exactly ``precision`` bits (top bit set).
Zero is the single value ``mantissa == 0, exponent == 0``.

Every operation returns a new instance; an APN never changes after
construction. The only place bits are lost is normalisation, which truncates
the magnitude (it never rounds up), so repeated products drift slightly
towards zero. That bias is far below one pixel at the precisions the policy
selects and is accepted.

Parsing from decimal keeps ``GUARD_BITS`` extra bits before the final
truncation so the parsed value is within one unit in the last place of the
exact decimal rational.
"""

from __future__ import annotations

import functools
import math
import re
from typing import Any, Dict, Tuple, Union

from mpmath import mp, mpf

from deepzoom.errors import ParseError

GUARD_BITS = 64
DEFAULT_PRECISION = 256
NATIVE_BITS = 53
# Largest |power of ten| from_decimal will expand; 16384-bit coordinates need under 5000.
MAX_DECIMAL_EXPONENT = 10 ** 6

_DECIMAL_RE = re.compile(r"^\s*([+-])?(\d*)(?:\.(\d*))?(?:[eE]([+-]?\d+))?\s*$")
_INTEGER_RE = re.compile(r"^[+-]?\d+$")
_SERIAL_KEYS = frozenset(("mantissa", "exponent", "precision"))


def truncate_shift(value: int, shift: int) -> int:
    """Right-shift ``value`` by ``shift`` bits, dropping low bits of the magnitude."""
    if value >= 0:
        return value >> shift
    return -((-value) >> shift)


def _normalize(mantissa: int, exponent: int, precision: int) -> Tuple[int, int]:
    if mantissa == 0:
        return 0, 0
    length = mantissa.bit_length()
    if length > precision:
        excess = length - precision
        return truncate_shift(mantissa, excess), exponent + excess
    if length < precision:
        deficit = precision - length
        return mantissa << deficit, exponent - deficit
    return mantissa, exponent


def _is_plain_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@functools.total_ordering
class APN:
    __slots__ = ("mantissa", "exponent", "precision")

    def __init__(self, mantissa: int = 0, exponent: int = 0, precision: int = DEFAULT_PRECISION) -> None:
        precision = int(precision)
        if precision < 1:
            raise ValueError(f"precision must be a positive bit count, got {precision}")
        m, e = _normalize(int(mantissa), int(exponent), precision)
        object.__setattr__(self, "mantissa", m)
        object.__setattr__(self, "exponent", e)
        object.__setattr__(self, "precision", precision)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("APN is immutable")

    def __delattr__(self, name: str) -> None:
        raise AttributeError("APN is immutable")

    def __reduce__(self):
        return (APN, (self.mantissa, self.exponent, self.precision))

    # ---- constructors -------------------------------------------------------

    @classmethod
    def zero(cls, precision: int = DEFAULT_PRECISION) -> "APN":
        return cls(0, 0, precision)

    @classmethod
    def from_decimal(cls, text: str, precision: int = DEFAULT_PRECISION) -> "APN":
        """Parse ``[+-]digits[.digits][e[+-]digits]`` exactly, then truncate to ``precision`` bits."""
        match = _DECIMAL_RE.match(text) if isinstance(text, str) else None
        if match is None:
            raise ParseError(f"not a decimal number: {text!r}")
        sign, int_part, frac_part, exp_part = match.groups()
        int_part = int_part or ""
        frac_part = frac_part or ""
        if not int_part and not frac_part:
            raise ParseError(f"not a decimal number: {text!r}")

        exp_digits = (exp_part or "").lstrip("+-").lstrip("0")
        if len(exp_digits) > len(str(MAX_DECIMAL_EXPONENT)):
            raise ParseError(f"decimal exponent out of range: {text!r}")
        power = int(exp_part or 0) - len(frac_part)
        if abs(power) > MAX_DECIMAL_EXPONENT:
            raise ParseError(f"decimal exponent out of range: {text!r}")
        digits = int(int_part + frac_part)
        if digits == 0:
            return cls(0, 0, precision)
        if sign == "-":
            digits = -digits
        if power >= 0:
            return cls(digits * 10 ** power, 0, precision)

        denominator = 10 ** -power
        target = precision + GUARD_BITS
        shift = max(0, target - (abs(digits).bit_length() - denominator.bit_length()) + 1)
        quotient = abs(digits << shift) // denominator
        if digits < 0:
            quotient = -quotient
        return cls(quotient, -shift, precision)

    @classmethod
    def from_native(cls, value: float, precision: int = DEFAULT_PRECISION) -> "APN":
        value = float(value)
        if value == 0.0 or not math.isfinite(value):
            return cls(0, 0, precision)
        frac, exp = math.frexp(value)
        return cls(int(frac * (1 << NATIVE_BITS)), exp - NATIVE_BITS, precision)

    @classmethod
    def from_mpf(cls, value: Any, precision: int = DEFAULT_PRECISION) -> "APN":
        if not isinstance(value, mpf):
            with mp.workprec(max(precision, NATIVE_BITS)):
                value = mpf(value)
        if mp.isinf(value) or mp.isnan(value):
            return cls(0, 0, precision)
        man, exp = value.man_exp
        if value < 0:
            man = -man
        return cls(man, exp, precision)

    @classmethod
    def deserialize(cls, data: Any) -> "APN":
        if not isinstance(data, dict) or set(data) != _SERIAL_KEYS:
            raise ParseError(f"APN form needs exactly the keys {sorted(_SERIAL_KEYS)}, got {data!r}")
        mantissa = data["mantissa"]
        exponent = data["exponent"]
        precision = data["precision"]
        if not isinstance(mantissa, str) or not _INTEGER_RE.match(mantissa):
            raise ParseError(f"APN mantissa must be a decimal integer string, got {mantissa!r}")
        if not _is_plain_int(exponent):
            raise ParseError(f"APN exponent must be an int, got {exponent!r}")
        if not _is_plain_int(precision) or precision < 1:
            raise ParseError(f"APN precision must be a positive int, got {precision!r}")
        return cls(int(mantissa), exponent, precision)

    def serialize(self) -> Dict[str, Any]:
        return {"mantissa": str(self.mantissa), "exponent": self.exponent, "precision": self.precision}

    # ---- arithmetic ---------------------------------------------------------

    def with_precision(self, precision: int) -> "APN":
        """Renormalise to ``precision`` bits. Narrowing drops low bits for good."""
        if precision == self.precision:
            return self
        return APN(self.mantissa, self.exponent, precision)

    def zero_like(self) -> "APN":
        return APN(0, 0, self.precision)

    def is_zero(self) -> bool:
        return self.mantissa == 0

    def sign(self) -> int:
        return (self.mantissa > 0) - (self.mantissa < 0)

    def negate(self) -> "APN":
        return APN(-self.mantissa, self.exponent, self.precision)

    def add(self, other: "APN") -> "APN":
        precision = max(self.precision, other.precision)
        if other.mantissa == 0:
            return self.with_precision(precision)
        if self.mantissa == 0:
            return other.with_precision(precision)
        big = self.with_precision(precision)
        small = other.with_precision(precision)
        if big.exponent < small.exponent:
            big, small = small, big

        delta = big.exponent - small.exponent
        if delta > precision + GUARD_BITS:
            # small is below every bit the result can hold
            return big
        shift = GUARD_BITS - delta
        if shift >= 0:
            aligned = small.mantissa << shift
        else:
            aligned = truncate_shift(small.mantissa, -shift)
        return APN((big.mantissa << GUARD_BITS) + aligned, big.exponent - GUARD_BITS, precision)

    def subtract(self, other: "APN") -> "APN":
        return self.add(other.negate())

    def multiply(self, other: "APN") -> "APN":
        return APN(self.mantissa * other.mantissa, self.exponent + other.exponent,
                   max(self.precision, other.precision))

    def multiply_by_small_int(self, n: int) -> "APN":
        return APN(self.mantissa * n, self.exponent, self.precision)

    def approx_log2_magnitude(self) -> Union[int, float]:
        if self.mantissa == 0:
            return -math.inf
        return self.exponent + self.mantissa.bit_length() - 1

    def approx_native(self) -> float:
        m, e = self.mantissa, self.exponent
        if m == 0:
            return 0.0
        excess = m.bit_length() - NATIVE_BITS
        if excess > 0:
            m = truncate_shift(m, excess)
            e += excess
        try:
            return math.ldexp(m, e)
        except OverflowError:
            return math.copysign(math.inf, m)

    def to_mpf(self) -> mpf:
        with mp.workprec(max(self.precision, NATIVE_BITS)):
            return mp.ldexp(mpf(self.mantissa), self.exponent)

    def to_decimal_string(self, digits: int = 0) -> str:
        """Decimal rendering through mpmath; ``digits=0`` prints every significant digit."""
        if digits <= 0:
            digits = max(1, int(self.precision * math.log10(2)) + 1)
        with mp.workprec(max(self.precision, NATIVE_BITS)):
            return mp.nstr(self.to_mpf(), digits)

    # ---- comparisons --------------------------------------------------------

    def _canonical(self) -> Tuple[int, int]:
        m = self.mantissa
        if m == 0:
            return 0, 0
        trailing = (m & -m).bit_length() - 1
        return m >> trailing, self.exponent + trailing

    def _compare(self, other: "APN") -> int:
        sa, sb = self.sign(), other.sign()
        if sa != sb:
            return -1 if sa < sb else 1
        if sa == 0:
            return 0
        ta, tb = self.approx_log2_magnitude(), other.approx_log2_magnitude()
        if ta != tb:
            larger = 1 if ta > tb else -1
            return larger if sa > 0 else -larger
        low = min(self.exponent, other.exponent)
        diff = (self.mantissa << (self.exponent - low)) - (other.mantissa << (other.exponent - low))
        return (diff > 0) - (diff < 0)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, APN):
            return NotImplemented
        return self._canonical() == other._canonical()

    def __lt__(self, other: Any) -> bool:
        if not isinstance(other, APN):
            return NotImplemented
        return self._compare(other) < 0

    def __hash__(self) -> int:
        return hash(self._canonical())

    # ---- operator sugar -----------------------------------------------------

    def __add__(self, other: "APN") -> "APN":
        if not isinstance(other, APN):
            return NotImplemented
        return self.add(other)

    def __sub__(self, other: "APN") -> "APN":
        if not isinstance(other, APN):
            return NotImplemented
        return self.subtract(other)

    def __mul__(self, other: Union["APN", int]) -> "APN":
        if isinstance(other, APN):
            return self.multiply(other)
        if _is_plain_int(other):
            return self.multiply_by_small_int(other)
        return NotImplemented

    __rmul__ = __mul__

    def __neg__(self) -> "APN":
        return self.negate()

    def __abs__(self) -> "APN":
        return self.negate() if self.mantissa < 0 else self

    def __bool__(self) -> bool:
        return self.mantissa != 0

    def __float__(self) -> float:
        return self.approx_native()

    def __repr__(self) -> str:
        return f"APN({self.mantissa}, {self.exponent}, {self.precision})"

    def __str__(self) -> str:
        return self.to_decimal_string(20)
