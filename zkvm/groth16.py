"""
Groth16 over BN254 (``py_ecc.optimized_bn128``).

The QAP is evaluated over the radix-2 domain of size ``I``, the smallest
power of two covering the constraints. Setup evaluates the column
polynomials at tau through the inverse FFT of ``[tau^0 .. tau^(I-1)]``, which
is cheap because the constraint matrices are sparse. The prover computes
``H = (A*B - C) / Z`` on the coset ``q * <p>`` where ``Z = -2``.

Every public input gets an extra constraint ``x * 0 = 0`` so that the
public polynomials stay linearly independent.
"""
import logging
import secrets
from dataclasses import dataclass
from typing import List, Optional

from py_ecc.optimized_bn128 import (
    FQ,
    FQ2,
    G1,
    G2,
    Z1,
    Z2,
    add,
    b as curve_b,
    b2 as twist_b,
    is_inf,
    is_on_curve,
    multiply,
    neg,
    normalize,
    pairing,
)

from . import errors
from .constraint_system import R1CS, LinearCombination
from .field import Fr_modulus, fft, powers, root_of_unity

logger = logging.getLogger(__name__)

POINT_BYTES = 32


def _to_int(coefficient) -> int:
    return coefficient.n if hasattr(coefficient, "n") else int(coefficient)


def _g1_to_ints(point) -> List[int]:
    if is_inf(point):
        return [0, 0]
    x, y = normalize(point)
    return [_to_int(x), _to_int(y)]


def _g1_from_ints(values) -> tuple:
    x, y = values
    if x == 0 and y == 0:
        return Z1
    return (FQ(x), FQ(y), FQ.one())


def _g2_to_ints(point) -> List[int]:
    if is_inf(point):
        return [0, 0, 0, 0]
    x, y = normalize(point)
    return [_to_int(c) for c in x.coeffs] + [_to_int(c) for c in y.coeffs]


def _g2_from_ints(values) -> tuple:
    if not any(values):
        return Z2
    return (FQ2(list(values[0:2])), FQ2(list(values[2:4])), FQ2.one())


def _g1_to_json(point):
    return [hex(value) for value in _g1_to_ints(point)]


def _g2_to_json(point):
    return [hex(value) for value in _g2_to_ints(point)]


def _g1_from_json(data):
    return _g1_from_ints([int(value, 16) for value in data])


def _g2_from_json(data):
    return _g2_from_ints([int(value, 16) for value in data])


def _msm(points, scalars, zero):
    """``sum(scalar_i * point_i)``, skipping zero scalars."""
    total = zero
    for point, scalar in zip(points, scalars):
        scalar %= Fr_modulus
        if scalar:
            total = add(total, multiply(point, scalar))
    return total


@dataclass
class ProvingKey:
    num_variables: int
    num_constraints: int
    public_indices: List[int]
    alpha_g1: tuple
    beta_g1: tuple
    delta_g1: tuple
    beta_g2: tuple
    delta_g2: tuple
    private_g1: List[tuple]
    tau_g1: List[tuple]
    tau_g2: List[tuple]
    h_g1: List[tuple]

    def to_json(self):
        return {
            "num_variables": self.num_variables,
            "num_constraints": self.num_constraints,
            "public_indices": self.public_indices,
            "alpha_g1": _g1_to_json(self.alpha_g1),
            "beta_g1": _g1_to_json(self.beta_g1),
            "delta_g1": _g1_to_json(self.delta_g1),
            "beta_g2": _g2_to_json(self.beta_g2),
            "delta_g2": _g2_to_json(self.delta_g2),
            "private_g1": [_g1_to_json(point) for point in self.private_g1],
            "tau_g1": [_g1_to_json(point) for point in self.tau_g1],
            "tau_g2": [_g2_to_json(point) for point in self.tau_g2],
            "h_g1": [_g1_to_json(point) for point in self.h_g1],
        }

    @classmethod
    def from_json(cls, data):
        return cls(
            data["num_variables"],
            data["num_constraints"],
            list(data["public_indices"]),
            _g1_from_json(data["alpha_g1"]),
            _g1_from_json(data["beta_g1"]),
            _g1_from_json(data["delta_g1"]),
            _g2_from_json(data["beta_g2"]),
            _g2_from_json(data["delta_g2"]),
            [_g1_from_json(point) for point in data["private_g1"]],
            [_g1_from_json(point) for point in data["tau_g1"]],
            [_g2_from_json(point) for point in data["tau_g2"]],
            [_g1_from_json(point) for point in data["h_g1"]],
        )


@dataclass
class VerifyingKey:
    alpha_g1: tuple
    beta_g2: tuple
    gamma_g2: tuple
    delta_g2: tuple
    public_g1: List[tuple]

    def to_json(self):
        return {
            "alpha_g1": _g1_to_json(self.alpha_g1),
            "beta_g2": _g2_to_json(self.beta_g2),
            "gamma_g2": _g2_to_json(self.gamma_g2),
            "delta_g2": _g2_to_json(self.delta_g2),
            "public_g1": [_g1_to_json(point) for point in self.public_g1],
        }

    @classmethod
    def from_json(cls, data):
        return cls(
            _g1_from_json(data["alpha_g1"]),
            _g2_from_json(data["beta_g2"]),
            _g2_from_json(data["gamma_g2"]),
            _g2_from_json(data["delta_g2"]),
            [_g1_from_json(point) for point in data["public_g1"]],
        )


@dataclass
class Proof:
    a: tuple
    b: tuple
    c: tuple

    def to_bytes(self) -> bytes:
        ints = _g1_to_ints(self.a) + _g2_to_ints(self.b) + _g1_to_ints(self.c)
        return b"".join(value.to_bytes(POINT_BYTES, "big") for value in ints)

    @classmethod
    def from_bytes(cls, data: bytes) -> "Proof":
        if len(data) != 8 * POINT_BYTES:
            raise errors.InvalidInput(f"a proof is {8 * POINT_BYTES} bytes, got {len(data)}")
        ints = [int.from_bytes(data[i:i + POINT_BYTES], "big") for i in range(0, len(data), POINT_BYTES)]
        return cls(_g1_from_ints(ints[0:2]), _g2_from_ints(ints[2:6]), _g1_from_ints(ints[6:8]))

    def to_hex(self) -> str:
        return self.to_bytes().hex()

    @classmethod
    def from_hex(cls, text: str) -> "Proof":
        try:
            data = bytes.fromhex(text.strip())
        except ValueError:
            raise errors.InvalidInput("the proof is not valid hex")
        return cls.from_bytes(data)


def _constraints(cs: R1CS):
    zero = LinearCombination.zero()
    extra = [(LinearCombination.variable(index), zero, zero, "public input") for index in _public_indices(cs)]
    return list(cs.constraints) + extra


def _public_indices(cs: R1CS) -> List[int]:
    return [0] + list(cs.input_indices)


def _domain_size(num_constraints: int) -> int:
    return max(2, 1 << (num_constraints - 1).bit_length())


def _random_scalar() -> int:
    return secrets.randbelow(Fr_modulus - 1) + 1


def setup(cs: R1CS, toxic_waste: Optional[dict] = None):
    """
    Generate a key pair for the circuit recorded in ``cs``; values are not
    needed. ``toxic_waste`` fixes ``alpha, beta, gamma, delta, tau`` for tests.
    """
    waste = toxic_waste or {name: _random_scalar() for name in ("alpha", "beta", "gamma", "delta", "tau")}
    alpha, beta, gamma, delta, tau = (waste[name] for name in ("alpha", "beta", "gamma", "delta", "tau"))

    constraints = _constraints(cs)
    num_variables = cs.num_variables
    size = _domain_size(len(constraints))
    logger.info(f"Setup: {len(constraints)} constraints, {num_variables} variables, domain of {size}")

    lagrange_at_tau = fft(powers(tau, size), root_of_unity(size), inv=True)
    a_at_tau = [0] * num_variables
    b_at_tau = [0] * num_variables
    c_at_tau = [0] * num_variables
    for lagrange, (a, b, c, _) in zip(lagrange_at_tau, constraints):
        for index, coefficient in a.terms.items():
            a_at_tau[index] += lagrange * coefficient
        for index, coefficient in b.terms.items():
            b_at_tau[index] += lagrange * coefficient
        for index, coefficient in c.terms.items():
            c_at_tau[index] += lagrange * coefficient

    z_at_tau = (pow(tau, size, Fr_modulus) - 1) % Fr_modulus
    gamma_inverse = pow(gamma, Fr_modulus - 2, Fr_modulus)
    delta_inverse = pow(delta, Fr_modulus - 2, Fr_modulus)

    public = set(_public_indices(cs))

    def column(m, inverse):
        return (beta * a_at_tau[m] + alpha * b_at_tau[m] + c_at_tau[m]) * inverse % Fr_modulus

    tau_powers = powers(tau, size)
    proving_key = ProvingKey(
        num_variables=num_variables,
        num_constraints=len(constraints),
        public_indices=_public_indices(cs),
        alpha_g1=multiply(G1, alpha),
        beta_g1=multiply(G1, beta),
        delta_g1=multiply(G1, delta),
        beta_g2=multiply(G2, beta),
        delta_g2=multiply(G2, delta),
        private_g1=[multiply(G1, column(m, delta_inverse)) for m in range(num_variables) if m not in public],
        tau_g1=[multiply(G1, x) for x in tau_powers],
        tau_g2=[multiply(G2, x) for x in tau_powers],
        h_g1=[multiply(G1, x * delta_inverse * z_at_tau % Fr_modulus) for x in tau_powers[:size - 1]],
    )
    verifying_key = VerifyingKey(
        alpha_g1=proving_key.alpha_g1,
        beta_g2=proving_key.beta_g2,
        gamma_g2=multiply(G2, gamma),
        delta_g2=proving_key.delta_g2,
        public_g1=[multiply(G1, column(m, gamma_inverse)) for m in _public_indices(cs)],
    )
    return proving_key, verifying_key


def prove(proving_key: ProvingKey, cs: R1CS) -> Proof:
    """Prove the satisfied assignment recorded in ``cs``."""
    if cs.num_variables != proving_key.num_variables or _public_indices(cs) != proving_key.public_indices:
        raise errors.MalformedBytecode("the proving key was generated for a different circuit")
    constraints = _constraints(cs)
    if len(constraints) != proving_key.num_constraints:
        raise errors.MalformedBytecode("the proving key was generated for a different circuit")
    cs.check()

    if any(value is None for value in cs.values):
        raise errors.UnsatisfiedConstraint("unassigned variable")
    witness = [value.value for value in cs.values]
    size = _domain_size(len(constraints))
    p = root_of_unity(size)
    q = root_of_unity(2 * size)

    evaluations = ([], [], [])
    for a, b, c, _ in constraints:
        for column, lc in zip(evaluations, (a, b, c)):
            column.append(sum(witness[index] * coefficient for index, coefficient in lc.terms.items()) % Fr_modulus)
    padding = [0] * (size - len(constraints))
    a_coefficients, b_coefficients, c_coefficients = (fft(column + padding, p, inv=True) for column in evaluations)

    shifts = powers(q, size)
    on_coset = [
        fft([coefficient * shift % Fr_modulus for coefficient, shift in zip(coefficients, shifts)], p)
        for coefficients in (a_coefficients, b_coefficients, c_coefficients)
    ]
    # Z = q^size - 1 = -2 on the coset
    inverse_of_z = (Fr_modulus - 1) // 2
    h_on_coset = [inverse_of_z * (a * b - c) % Fr_modulus for a, b, c in zip(*on_coset)]
    unshifts = powers(pow(q, Fr_modulus - 2, Fr_modulus), size)
    h_coefficients = [h * k % Fr_modulus for h, k in zip(fft(h_on_coset, p, inv=True), unshifts)]

    r, s = _random_scalar(), _random_scalar()
    public = set(proving_key.public_indices)
    private_witness = [value for index, value in enumerate(witness) if index not in public]

    a1 = add(add(proving_key.alpha_g1, multiply(proving_key.delta_g1, r)), _msm(proving_key.tau_g1, a_coefficients, Z1))
    b1 = add(add(proving_key.beta_g1, multiply(proving_key.delta_g1, s)), _msm(proving_key.tau_g1, b_coefficients, Z1))
    b2 = add(add(proving_key.beta_g2, multiply(proving_key.delta_g2, s)), _msm(proving_key.tau_g2, b_coefficients, Z2))
    c1 = add(multiply(a1, s), multiply(b1, r))
    c1 = add(c1, neg(multiply(proving_key.delta_g1, r * s % Fr_modulus)))
    c1 = add(c1, _msm(proving_key.h_g1, h_coefficients, Z1))
    c1 = add(c1, _msm(proving_key.private_g1, private_witness, Z1))
    logger.info(f"Proof generated for {len(constraints)} constraints")
    return Proof(a1, b2, c1)


def verify(verifying_key: VerifyingKey, proof: Proof, public_inputs: List[int]) -> bool:
    """``public_inputs`` excludes the leading constant one."""
    if len(public_inputs) + 1 != len(verifying_key.public_g1):
        raise errors.InvalidInput(
            f"expected {len(verifying_key.public_g1) - 1} public inputs, got {len(public_inputs)}"
        )
    if not is_on_curve(proof.a, curve_b) or not is_on_curve(proof.b, twist_b) or not is_on_curve(proof.c, curve_b):
        raise errors.InvalidInput("the proof points are not on the curve")
    inputs = _msm(verifying_key.public_g1, [1] + list(public_inputs), Z1)
    lhs = pairing(proof.b, proof.a)
    rhs = pairing(verifying_key.beta_g2, verifying_key.alpha_g1)
    rhs = rhs * pairing(verifying_key.gamma_g2, inputs) * pairing(verifying_key.delta_g2, proof.c)
    return lhs == rhs
