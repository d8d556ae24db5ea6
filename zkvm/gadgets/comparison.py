from .. import errors
from ..constraint_system import LinearCombination
from ..scalar import Scalar, ensure_same_type
from ..types import BOOLEAN
from .base import alloc_scalar, auto_const, known
from .bits import decompose, lesser_than_bits, to_bits_strict
from .logical import not_


@auto_const
def lesser_than(cs, left: Scalar, right: Scalar) -> Scalar:
    """
    ``left < right`` for integers or field elements.

    Integers: ``left - right + 2^bitlength`` is decomposed into
    ``bitlength + 1`` bits and the top bit is clear exactly when
    ``left < right``. Signed operands need no extra shift since the biases
    cancel in the difference. Field elements are compared bit by bit on
    their canonical decompositions.
    """
    ensure_same_type(left, right, "lt")
    scalar_type = left.scalar_type
    if scalar_type.is_boolean:
        raise errors.TypeMismatch("ordering is not defined for `bool`")
    if scalar_type.is_field:
        return lesser_than_bits(cs, to_bits_strict(cs, left), to_bits_strict(cs, right))
    bitlength = scalar_type.bitlength
    left_value, right_value = left.to_bigint(), right.to_bigint()
    value = left_value - right_value + (1 << bitlength) if known(left_value, right_value) else None
    bits = decompose(
        cs,
        left.lc() - right.lc() + LinearCombination.constant(1 << bitlength),
        value,
        bitlength + 1,
        "lt",
    )
    return not_(cs, bits[-1])


def lesser_or_equals(cs, left: Scalar, right: Scalar) -> Scalar:
    return not_(cs, lesser_than(cs, right, left))


def greater_than(cs, left: Scalar, right: Scalar) -> Scalar:
    return lesser_than(cs, right, left)


def greater_or_equals(cs, left: Scalar, right: Scalar) -> Scalar:
    return not_(cs, lesser_than(cs, left, right))


@auto_const
def equals(cs, left: Scalar, right: Scalar) -> Scalar:
    """
    ``left == right`` via the inverse trick: ``d * inv = 1 - eq`` and
    ``d * eq = 0`` where ``d = left - right``.
    """
    ensure_same_type(left, right, "eq")
    difference = left.lc() - right.lc()
    eq_value = inv_value = None
    if known(left.value, right.value):
        delta = left.value - right.value
        eq_value = 1 if delta.is_zero() else 0
        inv_value = 0 if delta.is_zero() else delta.invert()
    result = alloc_scalar(cs, eq_value, BOOLEAN, "eq", is_boolean_checked=True)
    inverse = alloc_scalar(cs, inv_value, left.scalar_type, "eq inverse")
    cs.enforce(difference, inverse.lc(), LinearCombination.one() - result.lc(), "eq: d * inv = 1 - eq")
    cs.enforce(difference, result.lc(), LinearCombination.zero(), "eq: d * eq = 0")
    return result


def not_equals(cs, left: Scalar, right: Scalar) -> Scalar:
    return not_(cs, equals(cs, left, right))
