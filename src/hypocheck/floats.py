"""Utilities for manipulating IEEE 754 floating point numbers.

Floats are generated from a sign draw and either an integral magnitude, or an
exponent and mantissa.  The exponent is drawn in a reordered ("lexicographic")
encoding, and the low mantissa bits are reversed, so that draws which shrink
toward zero also give simpler floats: small integers first, then values with
short fractional parts, then tiny and huge magnitudes, then infinity and NaN.
"""

import struct
from dataclasses import dataclass
from functools import lru_cache


@dataclass(frozen=True)
class FloatFormat:
    width: int
    exponent_bits: int
    mantissa_bits: int
    struct_code: str

    @property
    def max_exponent(self) -> int:
        return (1 << self.exponent_bits) - 1

    @property
    def bias(self) -> int:
        return (1 << (self.exponent_bits - 1)) - 1


FORMATS = {
    16: FloatFormat(16, 5, 10, "e"),
    32: FloatFormat(32, 8, 23, "f"),
    64: FloatFormat(64, 11, 52, "d"),
}


def float_format(width: int) -> FloatFormat:
    try:
        return FORMATS[width]
    except KeyError:
        raise ValueError(f"width={width!r} must be one of 16, 32 or 64") from None


def float_of_bits(bits: int, width: int = 64) -> float:
    fmt = float_format(width)
    unsigned = {16: "H", 32: "I", 64: "Q"}[width]
    return struct.unpack(
        "!" + fmt.struct_code, struct.pack("!" + unsigned, bits)
    )[0]


def bits_of_float(x: float, width: int = 64) -> int:
    fmt = float_format(width)
    unsigned = {16: "H", 32: "I", 64: "Q"}[width]
    return struct.unpack("!" + unsigned, struct.pack("!" + fmt.struct_code, x))[0]


def assemble(sign: int, exponent: int, mantissa: int, width: int = 64) -> int:
    fmt = float_format(width)
    return (
        ((sign & 1) << (fmt.exponent_bits + fmt.mantissa_bits))
        | ((exponent & fmt.max_exponent) << fmt.mantissa_bits)
        | (mantissa & ((1 << fmt.mantissa_bits) - 1))
    )


def tear(bits: int, width: int = 64) -> tuple[int, int, int]:
    """Split a bit pattern into its (sign, exponent, mantissa) fields."""
    fmt = float_format(width)
    mantissa = bits & ((1 << fmt.mantissa_bits) - 1)
    exponent = (bits >> fmt.mantissa_bits) & fmt.max_exponent
    sign = bits >> (fmt.exponent_bits + fmt.mantissa_bits)
    return (sign, exponent, mantissa)


def exponent_key(exponent: int, width: int = 64) -> float:
    # non-negative unbiased exponents in increasing order, then the negative
    # ones in decreasing order, and the all-ones exponent (inf/nan) last.
    fmt = float_format(width)
    if exponent == fmt.max_exponent:
        return float("inf")
    unbiased = exponent - fmt.bias
    if unbiased < 0:
        return fmt.bias - unbiased
    return unbiased


@lru_cache
def encoding_table(width: int) -> tuple[int, ...]:
    # encoding_table(width)[lex] is the real exponent for lexicographic index lex
    fmt = float_format(width)
    return tuple(
        sorted(range(fmt.max_exponent + 1), key=lambda e: exponent_key(e, width))
    )


@lru_cache
def decoding_table(width: int) -> tuple[int, ...]:
    table = [0] * (float_format(width).max_exponent + 1)
    for lex, exponent in enumerate(encoding_table(width)):
        table[exponent] = lex
    return tuple(table)


def decode_exponent(lex: int, width: int = 64) -> int:
    return encoding_table(width)[lex]


def encode_exponent(exponent: int, width: int = 64) -> int:
    return decoding_table(width)[exponent]


def reverse_bits(x: int, n: int) -> int:
    assert x.bit_length() <= n
    return int(format(x, f"0{n}b")[::-1], 2) if n else 0


def update_mantissa(exponent: int, mantissa: int, width: int = 64) -> int:
    """Reverse the fractional bits of the mantissa, so that shrinking the
    mantissa draw removes fractional bits before integral ones.

    This is its own inverse for a fixed exponent.
    """
    fmt = float_format(width)
    unbiased = exponent - fmt.bias
    if unbiased <= 0:
        return reverse_bits(mantissa, fmt.mantissa_bits)
    if unbiased >= fmt.mantissa_bits:
        return mantissa
    n_fractional_bits = fmt.mantissa_bits - unbiased
    fractional_part = mantissa & ((1 << n_fractional_bits) - 1)
    return (mantissa ^ fractional_part) | reverse_bits(
        fractional_part, n_fractional_bits
    )


def lex_to_float(lex_exponent: int, mantissa: int, width: int = 64) -> float:
    """Build a non-negative float from its lexicographic exponent index and
    the mantissa draw."""
    exponent = decode_exponent(lex_exponent, width)
    mantissa = update_mantissa(exponent, mantissa, width)
    return float_of_bits(assemble(0, exponent, mantissa, width), width)


def float_to_lex(x: float, width: int = 64) -> tuple[int, int]:
    """The inverse of `lex_to_float`, ignoring the sign of ``x``."""
    _, exponent, mantissa = tear(bits_of_float(x, width), width)
    return (
        encode_exponent(exponent, width),
        update_mantissa(exponent, mantissa, width),
    )


def is_simple(x: float, width: int = 64) -> bool:
    """Integral floats small enough to be drawn directly as integers."""
    fmt = float_format(width)
    try:
        integral = int(x)
    except (OverflowError, ValueError):
        return False
    return integral == x and abs(integral).bit_length() <= fmt.width - 8


def round_to_width(x: float, width: int = 64) -> float:
    return float_of_bits(bits_of_float(x, width), width)
