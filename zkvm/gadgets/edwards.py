"""
Baby Jubjub, the twisted Edwards curve ``a*x^2 + y^2 = 1 + d*x^2*y^2``
over the BN254 scalar field, in-circuit and natively (via ``ecpy``).

Points are ``(x, y)`` tuples of field scalars. The addition law is
complete on this curve, so doubling and adding the identity need no
special cases.
"""
from typing import List, Tuple

from ecpy.curves import Point, TwistedEdwardCurve

from ..constraint_system import LinearCombination
from ..field import Fr, Fr_modulus
from ..scalar import Scalar
from ..types import FIELD
from .base import alloc_scalar, auto_const, known, product
from .logical import select

A = 168700
D = 168696
SUBGROUP_ORDER = 2736030358979909402780800718157159386076813972158567259200215660948447373041
COFACTOR = 8
BASE_X = 5299619240641551281634865583518297030282874472190772894086521144482721001553
BASE_Y = 16950150798460657717958625567821834550301663161624707787222815936182638968203

BABYJUBJUB = TwistedEdwardCurve(
    {
        "name": "babyjubjub",
        "type": "twistededward",
        "size": 254,
        "field": Fr_modulus,
        "generator": (BASE_X, BASE_Y),
        "order": SUBGROUP_ORDER,
        "cofactor": COFACTOR,
        "a": A,
        "d": D,
    }
)
G: Point = BABYJUBJUB.generator

ScalarPoint = Tuple[Scalar, Scalar]


def constant_point(x: int, y: int) -> ScalarPoint:
    return Scalar.new_unchecked_constant(x, FIELD), Scalar.new_unchecked_constant(y, FIELD)


def identity() -> ScalarPoint:
    return constant_point(0, 1)


def generator() -> ScalarPoint:
    return constant_point(BASE_X, BASE_Y)


def assert_on_curve(cs, point: ScalarPoint):
    """Enforce the curve equation; three constraints."""
    x, y = point
    if x.is_constant() and y.is_constant():
        native_x, native_y = x.value.value, y.value.value
        if not BABYJUBJUB.is_on_curve(Point(native_x, native_y, BABYJUBJUB, check=False)):
            cs.enforce(LinearCombination.one(), LinearCombination.one(), LinearCombination.zero(), "point on curve")
        return
    x2 = product(cs, x.lc(), x.lc(), x.value * x.value if x.value is not None else None, FIELD, "x^2")
    y2 = product(cs, y.lc(), y.lc(), y.value * y.value if y.value is not None else None, FIELD, "y^2")
    # d * x^2 * y^2 = a * x^2 + y^2 - 1
    cs.enforce(
        x2.lc().scale(D),
        y2.lc(),
        x2.lc().scale(A) + y2.lc() - LinearCombination.one(),
        "point on curve",
    )


@auto_const
def add(cs, left: ScalarPoint, right: ScalarPoint) -> ScalarPoint:
    """
    Point addition, six constraints:

        beta = x1*y2, gamma = y1*x2, delta = (-a*x1 + y1)*(x2 + y2),
        tau = beta*gamma,
        x3 * (1 + d*tau) = beta + gamma,
        y3 * (1 - d*tau) = delta + a*beta - gamma
    """
    (x1, y1), (x2, y2) = left, right
    values_known = known(x1.value, y1.value, x2.value, y2.value)

    beta = product(cs, x1.lc(), y2.lc(), x1.value * y2.value if values_known else None, FIELD, "beta")
    gamma = product(cs, y1.lc(), x2.lc(), y1.value * x2.value if values_known else None, FIELD, "gamma")
    delta = product(
        cs,
        x1.lc().scale(-A) + y1.lc(),
        x2.lc() + y2.lc(),
        (y1.value - x1.value * A) * (x2.value + y2.value) if values_known else None,
        FIELD,
        "delta",
    )
    tau = product(cs, beta.lc(), gamma.lc(), beta.value * gamma.value if values_known else None, FIELD, "tau")

    x3_value = y3_value = None
    if values_known:
        x_denominator = Fr(1) + tau.value * D
        y_denominator = Fr(1) - tau.value * D
        # both are non-zero for points on the curve
        if not x_denominator.is_zero():
            x3_value = (beta.value + gamma.value) / x_denominator
        if not y_denominator.is_zero():
            y3_value = (delta.value + beta.value * A - gamma.value) / y_denominator
    x3 = _alloc_quotient(cs, beta.lc() + gamma.lc(), LinearCombination.one() + tau.lc().scale(D), x3_value, "x3")
    y3 = _alloc_quotient(
        cs,
        delta.lc() + beta.lc().scale(A) - gamma.lc(),
        LinearCombination.one() - tau.lc().scale(D),
        y3_value,
        "y3",
    )
    return x3, y3


def _alloc_quotient(cs, numerator: LinearCombination, denominator: LinearCombination, value, annotation) -> Scalar:
    result = alloc_scalar(cs, value, FIELD, annotation)
    cs.enforce(result.lc(), denominator, numerator, annotation)
    return result


def select_point(cs, condition: Scalar, if_true: ScalarPoint, if_false: ScalarPoint) -> ScalarPoint:
    return (
        select(cs, condition, if_true[0], if_false[0]),
        select(cs, condition, if_true[1], if_false[1]),
    )


def scalar_mult(cs, bits: List[Scalar], point: ScalarPoint) -> ScalarPoint:
    """``k * point`` for ``k`` given as little-endian bits, by double-and-add."""
    accumulator = identity()
    base = point
    for i, bit in enumerate(bits):
        accumulator = select_point(cs, bit, add(cs, accumulator, base), accumulator)
        if i + 1 < len(bits):
            base = add(cs, base, base)
    return accumulator


def to_native(point: ScalarPoint) -> Point:
    return Point(point[0].value.value, point[1].value.value, BABYJUBJUB)
