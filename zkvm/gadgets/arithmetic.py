"""
Arithmetic gadgets.

``add``, ``sub``, ``mul`` and ``neg`` compute the field-level result and keep
the operand type without checking it; the interpreter passes the result
through ``conditional_type_check`` so that an overflow in an untaken branch
stays satisfiable.
"""
from typing import Optional, Tuple

from .. import errors
from ..config import MAX_INTEGER_BITLENGTH
from ..constraint_system import LinearCombination
from ..field import Fr
from ..scalar import Scalar, ensure_same_type
from ..types import ScalarType
from .base import alloc_scalar, auto_const, known, linear, product
from .bits import decompose, range_check
from .logical import select


def _ensure_arithmetic(scalar: Scalar, operation: str):
    if scalar.scalar_type.is_boolean:
        raise errors.TypeMismatch(f"`{operation}` is not defined for `bool`")


@auto_const
def add(cs, left: Scalar, right: Scalar) -> Scalar:
    ensure_same_type(left, right, "add")
    _ensure_arithmetic(left, "add")
    value = left.value + right.value if known(left.value, right.value) else None
    return linear(cs, left.lc() + right.lc(), value, left.scalar_type, "add")


@auto_const
def sub(cs, left: Scalar, right: Scalar) -> Scalar:
    ensure_same_type(left, right, "sub")
    _ensure_arithmetic(left, "sub")
    value = left.value - right.value if known(left.value, right.value) else None
    return linear(cs, left.lc() - right.lc(), value, left.scalar_type, "sub")


@auto_const
def mul(cs, left: Scalar, right: Scalar) -> Scalar:
    ensure_same_type(left, right, "mul")
    _ensure_arithmetic(left, "mul")
    value = left.value * right.value if known(left.value, right.value) else None
    return product(cs, left.lc(), right.lc(), value, left.scalar_type, "mul")


@auto_const
def neg(cs, scalar: Scalar) -> Scalar:
    _ensure_arithmetic(scalar, "neg")
    scalar_type = scalar.scalar_type
    if scalar_type.is_integer and not scalar_type.is_signed:
        if scalar_type.bitlength >= MAX_INTEGER_BITLENGTH:
            raise errors.TypeMismatch(f"`neg` needs a wider signed type than `{scalar_type}` allows")
        scalar_type = ScalarType.integer(True, scalar_type.bitlength + 1)
    value = -scalar.value if scalar.value is not None else None
    return linear(cs, -scalar.lc(), value, scalar_type, "neg")


def conditional_type_check(cs, condition: Scalar, scalar: Scalar, scalar_type: ScalarType) -> Scalar:
    """
    Prove ``condition -> scalar fits scalar_type``.

    The check runs on ``select(condition, scalar, 0)``, so a false path
    condition makes any value acceptable. Returns ``scalar`` retyped.
    """
    if scalar_type.is_field:
        return scalar.with_type(scalar_type)
    if condition.is_known_false() and condition.is_constant():
        return scalar.with_type(scalar_type)
    if scalar.is_constant():
        value = scalar.value.to_signed() if scalar_type.is_signed else scalar.value.value
        if scalar_type.contains(value):
            return scalar.with_type(scalar_type)
        if condition.is_known_true():
            raise errors.ValueOverflow(value, scalar_type)
        # the constant can only be tolerated on a false path
        cs.enforce(condition.lc(), LinearCombination.one(), LinearCombination.zero(), f"overflow of {scalar_type}")
        return Scalar.new_unchecked_constant(0, scalar_type)
    if condition.is_constant():
        return range_check(cs, scalar, scalar_type)
    zero = Scalar.new_unchecked_constant(0, scalar.scalar_type)
    if condition.is_known_true() and scalar.value is not None:
        # fail fast instead of producing an unsatisfiable system
        value = scalar.value.to_signed() if scalar_type.is_signed else scalar.value.value
        if not scalar_type.contains(value):
            raise errors.ValueOverflow(value, scalar_type)
    selected = select(cs, condition, scalar, zero)
    range_check(cs, selected, scalar_type)
    return scalar.with_type(scalar_type)


def euclidean_div_rem(numerator: int, denominator: int) -> Tuple[int, int]:
    """Quotient and remainder with ``0 <= remainder < |denominator|``."""
    quotient, remainder = divmod(numerator, denominator)
    if remainder < 0:
        quotient += 1
        remainder -= denominator
    return quotient, remainder


def div_rem_conditional(cs, condition: Scalar, left: Scalar, right: Scalar) -> Tuple[Scalar, Scalar]:
    """
    Euclidean division of integers.

    The divisor is replaced by ``select(condition, right, 1)`` first, so a
    zero divisor on a false path is harmless. Enforces
    ``quotient * divisor = left - remainder`` and
    ``0 <= remainder < |divisor|``; the quotient is range checked under
    ``condition`` since it can overflow (``-128i8 / -1``).
    """
    ensure_same_type(left, right, "div")
    scalar_type = left.scalar_type
    if not scalar_type.is_integer:
        raise errors.TypeMismatch(f"division is not defined for `{scalar_type}`, use `std::ff::invert`")
    one = Scalar.new_constant(1, scalar_type)
    denominator = select(cs, condition, right, one)
    denominator_value = denominator.to_bigint()
    if denominator_value == 0:
        raise errors.DivisionByZero()
    left_value = left.to_bigint()

    if left.is_constant() and denominator.is_constant():
        quotient, remainder = euclidean_div_rem(left_value, denominator_value)
        quotient = Scalar.new_unchecked_constant(quotient, scalar_type)
        quotient = conditional_type_check(cs, condition, quotient, scalar_type)
        return quotient, Scalar.new_constant(remainder, scalar_type)

    quotient_value: Optional[int] = None
    remainder_value: Optional[int] = None
    if known(left_value, denominator_value):
        quotient_value, remainder_value = euclidean_div_rem(left_value, denominator_value)
    quotient = alloc_scalar(cs, quotient_value, scalar_type, "quotient")
    remainder = alloc_scalar(cs, remainder_value, scalar_type, "remainder")

    cs.enforce(quotient.lc(), denominator.lc(), left.lc() - remainder.lc(), "quotient * divisor = left - remainder")

    bitlength = scalar_type.bitlength
    decompose(cs, remainder.lc(), remainder_value, bitlength, "remainder >= 0")

    absolute = denominator
    if scalar_type.is_signed:
        absolute = _absolute(cs, denominator)
    gap_value = None
    if known(remainder_value, denominator_value):
        gap_value = abs(denominator_value) - remainder_value - 1
    decompose(
        cs,
        absolute.lc() - remainder.lc() - LinearCombination.one(),
        gap_value,
        bitlength,
        "remainder < |divisor|",
    )

    quotient = conditional_type_check(cs, condition, quotient, scalar_type)
    return quotient, remainder


def _absolute(cs, scalar: Scalar) -> Scalar:
    """``|scalar|`` for a signed integer, as a field-level value of the same type."""
    if scalar.is_constant():
        return Scalar.new_unchecked_constant(abs(scalar.to_bigint()), scalar.scalar_type)
    scalar_type = scalar.scalar_type
    shift = 1 << (scalar_type.bitlength - 1)
    value = scalar.to_bigint()
    bits = decompose(
        cs,
        scalar.lc() + LinearCombination.constant(shift),
        None if value is None else value + shift,
        scalar_type.bitlength,
        "divisor sign",
    )
    is_non_negative = bits[-1]
    negated = linear(cs, -scalar.lc(), None if value is None else Fr(-value), scalar_type, "negated divisor")
    return select(cs, is_non_negative, scalar, negated)


@auto_const
def invert(cs, scalar: Scalar) -> Scalar:
    """Field inverse; zero has none, so the constraint is unsatisfiable for it."""
    if not scalar.scalar_type.is_field:
        raise errors.TypeMismatch(f"`invert` expects `field`, found `{scalar.scalar_type}`")
    if scalar.value is not None and scalar.value.is_zero():
        raise errors.DivisionByZero()
    value = scalar.value.invert() if scalar.value is not None else None
    result = alloc_scalar(cs, value, scalar.scalar_type, "inverse")
    cs.enforce(scalar.lc(), result.lc(), LinearCombination.one(), "inverse")
    return result
