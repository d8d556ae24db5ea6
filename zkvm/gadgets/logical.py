from ..constraint_system import LinearCombination
from ..field import Fr
from ..scalar import Scalar, ensure_same_type
from ..types import BOOLEAN
from .base import alloc_scalar, known, linear, product


def not_(cs, scalar: Scalar) -> Scalar:
    scalar = scalar.to_boolean(cs)
    if scalar.is_constant():
        return Scalar.new_constant(1 - scalar.value.value, BOOLEAN)
    value = None if scalar.value is None else 1 - scalar.value.value
    return linear(cs, LinearCombination.one() - scalar.lc(), value, BOOLEAN, "not", is_boolean_checked=True)


def and_(cs, left: Scalar, right: Scalar) -> Scalar:
    left = left.to_boolean(cs)
    right = right.to_boolean(cs)
    if left.is_constant():
        return right if left.value.value else Scalar.false()
    if right.is_constant():
        return left if right.value.value else Scalar.false()
    value = left.value * right.value if known(left.value, right.value) else None
    result = product(cs, left.lc(), right.lc(), value, BOOLEAN, "and")
    result.is_boolean_checked = True
    return result


def or_(cs, left: Scalar, right: Scalar) -> Scalar:
    left = left.to_boolean(cs)
    right = right.to_boolean(cs)
    if left.is_constant():
        return Scalar.true() if left.value.value else right
    if right.is_constant():
        return Scalar.true() if right.value.value else left
    value = Fr(left.value.value | right.value.value) if known(left.value, right.value) else None
    result = alloc_scalar(cs, value, BOOLEAN, "or", is_boolean_checked=True)
    # a * b = a + b - (a or b)
    cs.enforce(left.lc(), right.lc(), left.lc() + right.lc() - result.lc(), "or")
    return result


def xor(cs, left: Scalar, right: Scalar) -> Scalar:
    left = left.to_boolean(cs)
    right = right.to_boolean(cs)
    if left.is_constant():
        return not_(cs, right) if left.value.value else right
    if right.is_constant():
        return not_(cs, left) if right.value.value else left
    value = Fr(left.value.value ^ right.value.value) if known(left.value, right.value) else None
    result = alloc_scalar(cs, value, BOOLEAN, "xor", is_boolean_checked=True)
    # 2a * b = a + b - (a xor b)
    cs.enforce(left.lc().scale(2), right.lc(), left.lc() + right.lc() - result.lc(), "xor")
    return result


def select(cs, condition: Scalar, if_true: Scalar, if_false: Scalar) -> Scalar:
    """
    ``condition ? if_true : if_false`` as ``f + c * (t - f)``.

    Costs one constraint, or nothing when the condition is a constant or both
    alternatives are the same constant.
    """
    ensure_same_type(if_true, if_false, "select")
    condition = condition.to_boolean(cs)
    if condition.is_constant():
        return if_true if condition.value.value else if_false
    if if_true.is_constant() and if_false.is_constant() and if_true.value == if_false.value:
        return if_true
    if known(condition.value, if_true.value, if_false.value):
        value = if_true.value if condition.value.value else if_false.value
    else:
        value = None
    result = alloc_scalar(
        cs,
        value,
        if_true.scalar_type,
        "select",
        is_boolean_checked=if_true.is_boolean_checked and if_false.is_boolean_checked,
    )
    cs.enforce(condition.lc(), if_true.lc() - if_false.lc(), result.lc() - if_false.lc(), "select")
    return result
