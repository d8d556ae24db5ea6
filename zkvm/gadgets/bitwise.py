"""
Bitwise operations on unsigned integers.
"""
from ..constraint_system import LinearCombination
from ..scalar import Scalar, ensure_integer, ensure_same_type
from .base import auto_const, linear
from .bits import from_bits_unsigned, to_bits
from .logical import and_, or_, select, xor


def _bitwise(cs, left, right, operation, bit_gadget):
    ensure_same_type(left, right, operation)
    ensure_integer(left, operation, signed=False)
    left_bits = to_bits(cs, left)
    right_bits = to_bits(cs, right)
    result_bits = [bit_gadget(cs, a, b) for a, b in zip(left_bits, right_bits)]
    return from_bits_unsigned(cs, result_bits).with_type(left.scalar_type)


@auto_const
def bitwise_and(cs, left: Scalar, right: Scalar) -> Scalar:
    return _bitwise(cs, left, right, "bitwise and", and_)


@auto_const
def bitwise_or(cs, left: Scalar, right: Scalar) -> Scalar:
    return _bitwise(cs, left, right, "bitwise or", or_)


@auto_const
def bitwise_xor(cs, left: Scalar, right: Scalar) -> Scalar:
    return _bitwise(cs, left, right, "bitwise xor", xor)


@auto_const
def bitwise_not(cs, scalar: Scalar) -> Scalar:
    """``max - x``; linear, so no decomposition is needed."""
    ensure_integer(scalar, "bitwise not", signed=False)
    scalar_type = scalar.scalar_type
    maximum = scalar_type.max()
    value = None if scalar.value is None else maximum - scalar.value.value
    return linear(cs, LinearCombination.constant(maximum) - scalar.lc(), value, scalar_type, "bitwise not")


def _shift(cs, scalar: Scalar, shift: Scalar, to_left: bool) -> Scalar:
    operation = "shift left" if to_left else "shift right"
    ensure_integer(scalar, operation, signed=False)
    ensure_integer(shift, operation, signed=False)
    bits = to_bits(cs, scalar)
    width = len(bits)
    zero = Scalar.false()

    def shifted(source, amount):
        if to_left:
            return [zero] * min(amount, width) + source[: max(width - amount, 0)]
        return source[amount:] + [zero] * min(amount, width)

    if shift.is_constant():
        result = shifted(bits, shift.value.value)
    else:
        # barrel shifter: stage k shifts by 2^k when bit k of the amount is set
        result = bits
        for k, amount_bit in enumerate(to_bits(cs, shift)):
            moved = shifted(result, 1 << k)
            result = [select(cs, amount_bit, new, old) for new, old in zip(moved, result)]
    return from_bits_unsigned(cs, result).with_type(scalar.scalar_type)


@auto_const
def shift_left(cs, scalar: Scalar, shift: Scalar) -> Scalar:
    return _shift(cs, scalar, shift, to_left=True)


@auto_const
def shift_right(cs, scalar: Scalar, shift: Scalar) -> Scalar:
    return _shift(cs, scalar, shift, to_left=False)
