"""
Bit decomposition, packing and range checks.

Bits are little-endian lists of boolean scalars inside the gadgets; the
library surface reverses them to big-endian.
"""
from typing import List, Optional

from .. import errors
from ..config import FIELD_BITLENGTH
from ..constraint_system import LinearCombination
from ..field import Fr, Fr_modulus
from ..scalar import Scalar
from ..types import ScalarType, FIELD
from .base import alloc_boolean, auto_const, known, linear
from .logical import and_, not_, or_, xor


def pack(bits: List[Scalar]) -> LinearCombination:
    """``sum(2^i * bits[i])``."""
    terms = {}
    for i, bit in enumerate(bits):
        for index, coeff in bit.lc().terms.items():
            terms[index] = (terms.get(index, 0) + coeff * (1 << i)) % Fr_modulus
    return LinearCombination({index: coeff for index, coeff in terms.items() if coeff})


def pack_value(bits: List[Scalar]) -> Optional[int]:
    if not known(*(bit.value for bit in bits)):
        return None
    return sum(bit.value.value << i for i, bit in enumerate(bits))


def decompose(cs, lc: LinearCombination, value: Optional[int], bitlength: int, annotation="bits") -> List[Scalar]:
    """
    Allocate ``bitlength`` booleans whose packing equals ``lc``.

    Unsatisfiable unless the value of ``lc`` lies in ``[0, 2^bitlength)``.
    """
    bits = []
    terms = {}
    for i in range(bitlength):
        bit = alloc_boolean(cs, None if value is None else (value >> i) & 1, annotation)
        bits.append(bit)
        terms[bit.variable] = (1 << i) % Fr_modulus
    cs.enforce(LinearCombination(terms), LinearCombination.one(), lc, annotation)
    return bits


def constant_bits(value: int, bitlength: int) -> List[Scalar]:
    return [Scalar.true() if (value >> i) & 1 else Scalar.false() for i in range(bitlength)]


def range_check(cs, scalar: Scalar, scalar_type: ScalarType) -> Scalar:
    """
    Prove that ``scalar`` fits ``scalar_type`` and return it retyped.

    Signed values are shifted by ``2^(bitlength - 1)`` before the
    decomposition so that the checked range is ``[min, max]``.
    """
    if scalar_type.is_field:
        return scalar.with_type(scalar_type)
    if scalar_type.is_boolean:
        return scalar.with_type(scalar_type).to_boolean(cs)
    value = None
    if scalar.value is not None:
        value = scalar.value.to_signed() if scalar_type.is_signed else scalar.value.value
        if not scalar_type.contains(value):
            raise errors.ValueOverflow(value, scalar_type)
    if scalar.is_constant():
        return scalar.with_type(scalar_type)
    shift = -scalar_type.min()
    shifted_value = None if value is None else value + shift
    decompose(cs, scalar.lc() + LinearCombination.constant(shift), shifted_value, scalar_type.bitlength, f"range check {scalar_type}")
    return scalar.with_type(scalar_type)


def lesser_than_bits(cs, left: List[Scalar], right: List[Scalar]) -> Scalar:
    """Compare two little-endian bit strings of equal length."""
    lesser = Scalar.false()
    equal = Scalar.true()
    for left_bit, right_bit in zip(reversed(left), reversed(right)):
        lesser_here = and_(cs, not_(cs, left_bit), right_bit)
        lesser = or_(cs, lesser, and_(cs, equal, lesser_here))
        equal = and_(cs, equal, not_(cs, xor(cs, left_bit, right_bit)))
    return lesser


def enforce_canonical(cs, bits: List[Scalar]):
    """Prove that 254 bits encode a number below the field modulus."""
    is_canonical = lesser_than_bits(cs, bits, constant_bits(Fr_modulus, FIELD_BITLENGTH))
    if is_canonical.is_constant():
        if not is_canonical.value.value:
            raise errors.UnsatisfiedConstraint("canonical field representation")
        return
    cs.enforce(is_canonical.lc(), LinearCombination.one(), LinearCombination.one(), "canonical field representation")


def to_bits_strict(cs, scalar: Scalar) -> List[Scalar]:
    value = None if scalar.value is None else scalar.value.value
    if scalar.is_constant():
        return constant_bits(value, FIELD_BITLENGTH)
    bits = decompose(cs, scalar.lc(), value, FIELD_BITLENGTH, "field bits")
    enforce_canonical(cs, bits)
    return bits


@auto_const
def to_bits(cs, scalar: Scalar) -> List[Scalar]:
    """Little-endian bits; signed integers come out in two's complement."""
    scalar_type = scalar.scalar_type
    if scalar_type.is_boolean:
        return [scalar.to_boolean(cs)]
    if scalar_type.is_field:
        return to_bits_strict(cs, scalar)
    if not scalar_type.is_signed:
        value = None if scalar.value is None else scalar.value.value
        return decompose(cs, scalar.lc(), value, scalar_type.bitlength, f"{scalar_type} bits")
    shift = 1 << (scalar_type.bitlength - 1)
    value = None if scalar.value is None else scalar.value.to_signed() + shift
    bits = decompose(cs, scalar.lc() + LinearCombination.constant(shift), value, scalar_type.bitlength, f"{scalar_type} bits")
    bits[-1] = not_(cs, bits[-1])
    return bits


@auto_const
def from_bits_unsigned(cs, bits: List[Scalar]) -> Scalar:
    scalar_type = ScalarType.integer(False, len(bits))
    return linear(cs, pack(bits), pack_value(bits), scalar_type, "from bits")


@auto_const
def from_bits_signed(cs, bits: List[Scalar]) -> Scalar:
    scalar_type = ScalarType.integer(True, len(bits))
    top = 1 << (len(bits) - 1)
    lc = pack(bits[:-1]) - bits[-1].lc().scale(top)
    low = pack_value(bits[:-1])
    value = low - top * bits[-1].value.value if known(low, bits[-1].value) else None
    return linear(cs, lc, value, scalar_type, "from bits")


@auto_const
def from_bits_field(cs, bits: List[Scalar]) -> Scalar:
    value = pack_value(bits)
    return linear(cs, pack(bits), None if value is None else Fr(value), FIELD, "from bits")
