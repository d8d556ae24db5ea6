"""
Shared plumbing for gadgets: constant folding and variable allocation.
"""
import functools
from typing import Optional

from ..constraint_system import ConstantSystem, LinearCombination
from ..field import Fr
from ..scalar import Scalar
from ..types import BOOLEAN


def _scalars(value):
    if isinstance(value, Scalar):
        yield value
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _scalars(item)


def _to_constant(value):
    if isinstance(value, Scalar):
        return value.as_constant()
    if isinstance(value, tuple):
        return tuple(_to_constant(item) for item in value)
    if isinstance(value, list):
        return [_to_constant(item) for item in value]
    return value


def auto_const(gadget):
    """
    Run ``gadget`` against a throwaway ``ConstantSystem`` when every scalar
    argument is a constant, and return constants. The real constraint system
    sees neither variables nor constraints in that case.
    """

    @functools.wraps(gadget)
    def wrapper(cs, *args, **kwargs):
        scalars = list(_scalars(args)) + list(_scalars(list(kwargs.values())))
        if scalars and all(scalar.is_constant() for scalar in scalars):
            return _to_constant(gadget(ConstantSystem(), *args, **kwargs))
        return gadget(cs, *args, **kwargs)

    return wrapper


def known(*values):
    """True if no value is ``None``."""
    return all(value is not None for value in values)


def alloc_scalar(cs, value, scalar_type, annotation="", is_boolean_checked=False) -> Scalar:
    """Allocate a variable without any range check."""
    if value is not None and not isinstance(value, Fr):
        value = Fr(value)
    variable = cs.alloc(value, annotation)
    return Scalar.new_variable(value, variable, scalar_type, is_boolean_checked)


def alloc_boolean(cs, value: Optional[int], annotation="") -> Scalar:
    """Allocate a variable and prove it is 0 or 1."""
    scalar = alloc_scalar(cs, value, BOOLEAN, annotation)
    return scalar.to_boolean(cs)


def product(cs, left_lc, right_lc, value, scalar_type, annotation="") -> Scalar:
    """Allocate ``left * right`` with one constraint."""
    scalar = alloc_scalar(cs, value, scalar_type, annotation)
    cs.enforce(left_lc, right_lc, scalar.lc(), annotation)
    return scalar


def linear(cs, lc, value, scalar_type, annotation="", is_boolean_checked=False) -> Scalar:
    """Allocate a variable equal to the linear combination ``lc``."""
    scalar = alloc_scalar(cs, value, scalar_type, annotation, is_boolean_checked)
    cs.enforce(lc, LinearCombination.one(), scalar.lc(), annotation)
    return scalar
