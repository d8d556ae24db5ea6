from dataclasses import dataclass
from typing import Optional

from . import errors
from .constraint_system import LinearCombination
from .field import Fr
from .types import ScalarType, BOOLEAN


class Scalar:
    """
    One field element together with what it means.

    ``value`` is known whenever the witness is (it is ``None`` while
    generating keys); ``variable`` is ``None`` for constants and the index
    of the backing circuit variable otherwise.
    """

    __slots__ = ("value", "variable", "scalar_type", "is_boolean_checked")

    def __init__(self, value: Optional[Fr], variable: Optional[int], scalar_type: ScalarType, is_boolean_checked=False):
        self.value = value
        self.variable = variable
        self.scalar_type = scalar_type
        self.is_boolean_checked = is_boolean_checked or variable is None

    @classmethod
    def new_constant(cls, value, scalar_type: ScalarType) -> "Scalar":
        value = int(value)
        if not scalar_type.is_field and not scalar_type.contains(value):
            raise errors.ValueOverflow(value, scalar_type)
        return cls(Fr(value), None, scalar_type)

    @classmethod
    def new_unchecked_constant(cls, value, scalar_type: ScalarType) -> "Scalar":
        return cls(Fr(value), None, scalar_type)

    @classmethod
    def new_variable(cls, value: Optional[Fr], variable: int, scalar_type: ScalarType, is_boolean_checked=False):
        return cls(value, variable, scalar_type, is_boolean_checked)

    @classmethod
    def true(cls):
        return cls(Fr(1), None, BOOLEAN)

    @classmethod
    def false(cls):
        return cls(Fr(0), None, BOOLEAN)

    def is_constant(self):
        return self.variable is None

    def get_type(self):
        return self.scalar_type

    def to_bigint(self) -> Optional[int]:
        """Integer value with sign, or ``None`` if unknown."""
        if self.value is None:
            return None
        if self.scalar_type.is_signed:
            return self.value.to_signed()
        return self.value.value

    def is_known_true(self):
        return self.value is not None and self.value.value == 1

    def is_known_false(self):
        return self.value is not None and self.value.value == 0

    def lc(self) -> LinearCombination:
        if self.variable is None:
            return LinearCombination.constant(self.value.value)
        return LinearCombination.variable(self.variable)

    def with_type(self, scalar_type: ScalarType) -> "Scalar":
        return Scalar(self.value, self.variable, scalar_type, self.is_boolean_checked)

    def as_constant(self) -> "Scalar":
        return Scalar(self.value, None, self.scalar_type)

    def cast(self, to_type: ScalarType) -> "Scalar":
        from_type = self.scalar_type
        if from_type == to_type:
            return self
        allowed = False
        if from_type.is_integer and to_type.is_field:
            allowed = True
        elif from_type.is_integer and to_type.is_integer:
            if from_type.is_signed == to_type.is_signed:
                allowed = from_type.bitlength <= to_type.bitlength
            elif not from_type.is_signed:
                allowed = from_type.bitlength < to_type.bitlength
        if not allowed:
            raise errors.CastingError(from_type, to_type)
        return self.with_type(to_type)

    def to_boolean(self, cs) -> "Scalar":
        if not self.scalar_type.is_boolean:
            raise errors.TypeMismatch(f"expected `bool`, found `{self.scalar_type}`")
        if not self.is_boolean_checked:
            variable = LinearCombination.variable(self.variable)
            cs.enforce(variable, LinearCombination.one() - variable, LinearCombination.zero(), "boolean check")
            self.is_boolean_checked = True
        return self

    def __repr__(self):
        value = "?" if self.value is None else self.to_bigint()
        where = "const" if self.variable is None else f"w[{self.variable}]"
        return f"Scalar({value}: {self.scalar_type}, {where})"


@dataclass
class Cell:
    value: Scalar


def ensure_same_type(left: Scalar, right: Scalar, operation: str):
    if left.scalar_type != right.scalar_type:
        raise errors.TypeMismatch(
            f"`{operation}` expects operands of the same type, found `{left.scalar_type}` and `{right.scalar_type}`"
        )


def ensure_integer(scalar: Scalar, operation: str, signed=None):
    if not scalar.scalar_type.is_integer:
        raise errors.TypeMismatch(f"`{operation}` expects an integer, found `{scalar.scalar_type}`")
    if signed is not None and scalar.scalar_type.is_signed != signed:
        kind = "a signed" if signed else "an unsigned"
        raise errors.TypeMismatch(f"`{operation}` expects {kind} integer, found `{scalar.scalar_type}`")
