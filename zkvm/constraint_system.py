"""
Rank-1 constraint systems.

Gadgets talk to a ``ConstraintSystem``: they allocate private and public
variables and enforce ``a * b = c`` where ``a``, ``b`` and ``c`` are linear
combinations of variables. Variable 0 is the constant ``ONE``.

``R1CS`` records everything and can check and print itself; it also feeds
the Groth16 backend. ``ConstantSystem`` keeps nothing but values and checks
each constraint as it is enforced; it backs constant folding.
"""
import abc
import logging
from typing import Dict, List, Optional

from .errors import UnsatisfiedConstraint
from .field import Fr, Fr_modulus


logger = logging.getLogger(__name__)

ONE = 0


class LinearCombination:
    __slots__ = ("terms",)

    def __init__(self, terms: Optional[Dict[int, int]] = None):
        self.terms = terms if terms is not None else {}

    @classmethod
    def zero(cls):
        return cls()

    @classmethod
    def one(cls):
        return cls({ONE: 1})

    @classmethod
    def constant(cls, value):
        value = int(value) % Fr_modulus
        return cls({ONE: value} if value else {})

    @classmethod
    def variable(cls, index: int, coeff=1):
        coeff = int(coeff) % Fr_modulus
        return cls({index: coeff} if coeff else {})

    def _combine(self, other, sign):
        terms = dict(self.terms)
        for index, coeff in other.terms.items():
            value = (terms.get(index, 0) + sign * coeff) % Fr_modulus
            if value:
                terms[index] = value
            else:
                terms.pop(index, None)
        return LinearCombination(terms)

    def __add__(self, other):
        return self._combine(other, 1)

    def __sub__(self, other):
        return self._combine(other, -1)

    def __neg__(self):
        return LinearCombination({index: Fr_modulus - coeff for index, coeff in self.terms.items()})

    def scale(self, factor):
        factor = int(factor) % Fr_modulus
        if factor == 0:
            return LinearCombination()
        return LinearCombination({index: coeff * factor % Fr_modulus for index, coeff in self.terms.items()})

    def __mul__(self, factor):
        return self.scale(factor)

    __rmul__ = __mul__

    def evaluate(self, values: List[Optional[Fr]]) -> Optional[Fr]:
        total = 0
        for index, coeff in self.terms.items():
            value = values[index]
            if value is None:
                return None
            total += coeff * value.value
        return Fr(total)

    def format(self):
        if not self.terms:
            return "0"
        parts = []
        for index, coeff in sorted(self.terms.items()):
            coeff_str = Fr(coeff).short_str()
            body = "ONE" if index == ONE else f"w[{index}]"
            if coeff_str == "1":
                parts.append(body)
            elif coeff_str == "-1":
                parts.append(f"-{body}")
            else:
                parts.append(f"{coeff_str}*{body}")
        return " + ".join(parts).replace("+ -", "- ")

    def __repr__(self):
        return f"LC({self.format()})"


class ConstraintSystem(abc.ABC):
    @abc.abstractmethod
    def alloc(self, value: Optional[Fr], annotation: str = "") -> int:
        """Allocate a private variable and return its index."""

    @abc.abstractmethod
    def alloc_input(self, value: Optional[Fr], annotation: str = "") -> int:
        """Allocate a public input and return its index."""

    @abc.abstractmethod
    def enforce(self, a: LinearCombination, b: LinearCombination, c: LinearCombination, annotation: str = ""):
        """Add the constraint ``a * b = c``."""

    @abc.abstractmethod
    def get_value(self, index: int) -> Optional[Fr]:
        pass


class R1CS(ConstraintSystem):
    def __init__(self):
        self.values: List[Optional[Fr]] = [Fr(1)]
        self.annotations: List[str] = ["ONE"]
        self.input_indices: List[int] = []
        self.constraints = []

    def alloc(self, value, annotation=""):
        self.values.append(value)
        self.annotations.append(annotation)
        return len(self.values) - 1

    def alloc_input(self, value, annotation=""):
        index = self.alloc(value, annotation)
        self.input_indices.append(index)
        return index

    def enforce(self, a, b, c, annotation=""):
        self.constraints.append((a, b, c, annotation))

    def get_value(self, index):
        return self.values[index]

    @property
    def num_variables(self):
        return len(self.values)

    @property
    def num_constraints(self):
        return len(self.constraints)

    @property
    def num_inputs(self):
        return len(self.input_indices)

    def public_inputs(self) -> List[Optional[Fr]]:
        return [self.values[index] for index in self.input_indices]

    def _is_constraint_satisfied(self, constraint):
        a, b, c, _ = constraint
        a_value = a.evaluate(self.values)
        b_value = b.evaluate(self.values)
        c_value = c.evaluate(self.values)
        if a_value is None or b_value is None or c_value is None:
            return False
        return a_value * b_value == c_value

    def which_is_unsatisfied(self) -> Optional[str]:
        for index, constraint in enumerate(self.constraints):
            if not self._is_constraint_satisfied(constraint):
                return f"#{index} {constraint[3]}"
        return None

    def is_satisfied(self):
        return self.which_is_unsatisfied() is None

    def check(self):
        unsatisfied = self.which_is_unsatisfied()
        if unsatisfied is not None:
            raise UnsatisfiedConstraint(unsatisfied)

    def print_constraints(self, show_values=False):
        """
        Print all constraints in a readable form.

        Args:
            show_values (bool): If True, also prints the values of a, b and c.
                                Defaults to False to avoid leaking witness information.
        """
        for index, (a, b, c, annotation) in enumerate(self.constraints):
            line = f"constraint {index}: ({a.format()}) * ({b.format()}) == ({c.format()})"
            if annotation:
                line += f"  # {annotation}"
            if show_values:
                values = []
                for lc in (a, b, c):
                    value = lc.evaluate(self.values)
                    values.append("None" if value is None else value.short_str())
                line += f" | a={values[0]}, b={values[1]}, c={values[2]}"
            print(line)


class ConstantSystem(ConstraintSystem):
    """
    Constraint system for computations whose inputs are all known
    constants. It allocates nothing that outlives the computation and fails
    immediately on a violated constraint.
    """

    def __init__(self):
        self.values: List[Optional[Fr]] = [Fr(1)]

    def alloc(self, value, annotation=""):
        self.values.append(value)
        return len(self.values) - 1

    def alloc_input(self, value, annotation=""):
        return self.alloc(value, annotation)

    def enforce(self, a, b, c, annotation=""):
        a_value = a.evaluate(self.values)
        b_value = b.evaluate(self.values)
        c_value = c.evaluate(self.values)
        if a_value is None or b_value is None or c_value is None or a_value * b_value != c_value:
            raise UnsatisfiedConstraint(annotation)

    def get_value(self, index):
        return self.values[index]
