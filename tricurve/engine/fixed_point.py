"""
TriCurve Fixed-Point Math

Deterministic Q64.64 arithmetic on Python integers. Every value is an int
scaled by Q64 = 2**64; unsigned values must fit u128, signed values i128.

  - add / sub / mul / div with explicit range checks (Overflow)
  - mul_div with selectable rounding direction
  - ln  via binary-logarithm bit decomposition (64 fractional bits)
  - exp via ln2 range reduction + Taylor series
  - pow (integer and fixed-point exponents), integer sqrt

The settlement side and the planning side run this exact module, so a
conservation proof computed by one is reproduced bit-for-bit by the other.

Error bounds:
  - ln_q64:  |ln_q64(x) - ln(x)·2^64| <= LN_MAX_ABS_ERROR
  - exp_q64: |exp_q64(x) - e^x·2^64| <= EXP_MAX_REL_ERROR · e^x + 1
"""

from __future__ import annotations

import math
from decimal import Decimal, ROUND_HALF_UP, localcontext
from typing import Union

from tricurve.constants import (
    BPS_DENOMINATOR,
    I128_MAX,
    I128_MIN,
    Q64,
    U128_MAX,
    U256_MAX,
)
from tricurve.exceptions import DomainError, Overflow

ONE = Q64
FRACTIONAL_BITS = 64

# Absolute error of ln_q64 in Q64 ulps (2^-56)
LN_MAX_ABS_ERROR = 1 << 8
# Relative error of exp_q64 (2^-56)
EXP_MAX_REL_ERROR = Decimal(2) ** -56


def _ln2_q64() -> int:
    """ln(2) in Q64, from ln 2 = Σ 1/(k·2^k) with 64 guard bits."""
    guard = 1 << 64
    scale = Q64 * guard
    total = 0
    k = 1
    while True:
        term = scale // (k << k)
        if term == 0:
            break
        total += term
        k += 1
    return (total + guard // 2) // guard


LN2_Q64 = _ln2_q64()

# exp() of anything above this no longer fits u128
EXP_MAX_INPUT = 45 * Q64


# ---------------------------------------------------------------------------
# Range checks
# ---------------------------------------------------------------------------

def check_u128(value: int, op: str = "value") -> int:
    if value < 0:
        raise Overflow(f"{op}: negative result {value} in unsigned context")
    if value > U128_MAX:
        raise Overflow(f"{op}: result exceeds u128")
    return value


def check_i128(value: int, op: str = "value") -> int:
    if value < I128_MIN or value > I128_MAX:
        raise Overflow(f"{op}: result exceeds i128")
    return value


def _check(value: int, signed: bool, op: str) -> int:
    return check_i128(value, op) if signed else check_u128(value, op)


def div_trunc(a: int, b: int) -> int:
    """Integer division rounding toward zero."""
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b > 0) else -q


# ---------------------------------------------------------------------------
# Basic arithmetic
# ---------------------------------------------------------------------------

def add(a: int, b: int, signed: bool = False) -> int:
    return _check(a + b, signed, "add")


def sub(a: int, b: int, signed: bool = False) -> int:
    return _check(a - b, signed, "sub")


def mul(a: int, b: int, signed: bool = False) -> int:
    """Fixed-point product, floor-rounded (arithmetic shift)."""
    return _check((a * b) >> FRACTIONAL_BITS, signed, "mul")


def div(a: int, b: int, signed: bool = False) -> int:
    """Fixed-point quotient, truncated toward zero."""
    if b == 0:
        raise DomainError("division by zero")
    return _check(div_trunc(a << FRACTIONAL_BITS, b), signed, "div")


def mul_div(a: int, b: int, denominator: int, round_up: bool = False) -> int:
    """
    Compute ``a * b / denominator`` with full intermediate precision.

    Operands are unsigned; the result must fit 256 bits.

    Raises:
        DomainError: on a zero denominator or negative operands
        Overflow: if the result exceeds u256
    """
    if denominator == 0:
        raise DomainError("mul_div: division by zero")
    if a < 0 or b < 0 or denominator < 0:
        raise DomainError("mul_div: operands must be non-negative")
    q, r = divmod(a * b, denominator)
    if round_up and r:
        q += 1
    if q > U256_MAX:
        raise Overflow("mul_div: result exceeds u256")
    return q


def div_round_up(a: int, b: int) -> int:
    if b == 0:
        raise DomainError("division by zero")
    return -(-a // b)


def from_int(n: int) -> int:
    return _check(n << FRACTIONAL_BITS, n < 0, "from_int")


def from_decimal(value: Union[Decimal, str, int]) -> int:
    """Convert a human-readable number to Q64 (round half up)."""
    with localcontext() as ctx:
        ctx.prec = 80
        scaled = (Decimal(value) * Q64).to_integral_value(rounding=ROUND_HALF_UP)
    return int(scaled)


def to_decimal(value: int) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = 60
        return Decimal(value) / Decimal(Q64)


def bps_to_q64(bps: int) -> int:
    return bps * Q64 // BPS_DENOMINATOR


def q64_to_bps(value: int) -> int:
    return div_trunc(value * BPS_DENOMINATOR, Q64)


# ---------------------------------------------------------------------------
# Roots, logarithms, exponentials
# ---------------------------------------------------------------------------

def isqrt(value: int) -> int:
    """Integer square root (floor)."""
    if value < 0:
        raise DomainError("sqrt of negative value")
    return math.isqrt(value)


def sqrt_q64(value: int) -> int:
    """Square root of a Q64 value, floor-rounded."""
    if value < 0:
        raise DomainError("sqrt of negative value")
    return isqrt(value << FRACTIONAL_BITS)


def log2_q64(x: int) -> int:
    """
    Binary logarithm of a positive Q64 value, returned as signed Q64.

    The integer part comes from the bit length; each of the 64 fractional
    bits is produced by squaring the normalized mantissa in [1, 2).
    """
    if x <= 0:
        raise DomainError(f"log of non-positive value {x}")

    n = x.bit_length() - 1 - FRACTIONAL_BITS
    y = x >> n if n >= 0 else x << -n
    result = n << FRACTIONAL_BITS

    two = 2 << FRACTIONAL_BITS
    bit = Q64 >> 1
    for _ in range(FRACTIONAL_BITS):
        y = (y * y) >> FRACTIONAL_BITS
        if y >= two:
            y >>= 1
            result += bit
        bit >>= 1
    return result


def ln_q64(x: int) -> int:
    """Natural logarithm of a positive Q64 value, returned as signed Q64."""
    return (log2_q64(x) * LN2_Q64) >> FRACTIONAL_BITS


def exp_q64(x: int) -> int:
    """
    e^x for a signed Q64 exponent, returned as unsigned Q64.

    Results below one ulp flush to zero.

    Raises:
        Overflow: if the result exceeds u128
    """
    if x == 0:
        return Q64
    if x > EXP_MAX_INPUT:
        raise Overflow("exp: result exceeds u128")

    k = x // LN2_Q64
    r = x - k * LN2_Q64  # r in [0, ln2)

    term = Q64
    total = Q64
    i = 1
    while term:
        term = (term * r) // (i * Q64)
        total += term
        i += 1

    result = total << k if k >= 0 else total >> -k
    return check_u128(result, "exp")


def pow_q64(base: int, exponent: int) -> int:
    """base^exponent for an integer exponent, by repeated squaring."""
    if exponent < 0:
        if base == 0:
            raise DomainError("zero base with negative exponent")
        return div(Q64, pow_q64(base, -exponent))
    result = Q64
    square = base
    e = exponent
    while e:
        if e & 1:
            result = mul(result, square)
        e >>= 1
        if e:
            square = mul(square, square)
    return result


def powf_q64(base: int, exponent: int) -> int:
    """base^exponent for a signed Q64 exponent: exp(exponent · ln(base))."""
    if base <= 0:
        raise DomainError("fractional power of non-positive base")
    return exp_q64(mul(ln_q64(base), exponent, signed=True))
