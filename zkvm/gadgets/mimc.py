"""
MiMC-7 over the scalar field, as a Miyaguchi-Preneel hash.

The round function is ``x -> (x + k + c_i)^7``; 7 is coprime with
``p - 1`` so it is a permutation. Round constants are derived from SHA-256
of a fixed seed, the first one being zero.
"""
from functools import lru_cache
from hashlib import sha256
from typing import List

from ..constraint_system import LinearCombination
from ..field import Fr_modulus
from ..scalar import Scalar
from ..types import FIELD
from .base import auto_const, known, linear, product

MIMC_ROUNDS = 91
MIMC_SEED = b"zkvm.mimc"


@lru_cache(maxsize=None)
def round_constants() -> List[int]:
    constants = [0]
    for i in range(1, MIMC_ROUNDS):
        digest = sha256(MIMC_SEED + i.to_bytes(4, "big")).digest()
        constants.append(int.from_bytes(digest, "big") % Fr_modulus)
    return constants


def mimc_encrypt_native(value: int, key: int) -> int:
    for constant in round_constants():
        value = pow((value + key + constant) % Fr_modulus, 7, Fr_modulus)
    return (value + key) % Fr_modulus


def mimc_hash_native(values: List[int]) -> int:
    state = 0
    for value in values:
        value %= Fr_modulus
        state = (mimc_encrypt_native(value, state) + state + value) % Fr_modulus
    return state


def _encrypt(cs, value_lc, value, key_lc, key):
    """Linear combination and value of ``E_key(value)``."""
    current_lc, current = value_lc, value
    for constant in round_constants():
        base_lc = current_lc + key_lc + LinearCombination.constant(constant)
        base = current + key + constant if known(current, key) else None
        x2 = product(cs, base_lc, base_lc, None if base is None else base * base, FIELD, "mimc x^2")
        x4 = product(cs, x2.lc(), x2.lc(), None if base is None else x2.value * x2.value, FIELD, "mimc x^4")
        x6 = product(cs, x4.lc(), x2.lc(), None if base is None else x4.value * x2.value, FIELD, "mimc x^6")
        x7 = product(cs, x6.lc(), base_lc, None if base is None else x6.value * base, FIELD, "mimc x^7")
        current_lc, current = x7.lc(), x7.value
    return current_lc + key_lc, (current + key if known(current, key) else None)


@auto_const
def mimc_hash(cs, values: List[Scalar]) -> Scalar:
    """Hash field elements; the result is a single field element."""
    state = Scalar.new_unchecked_constant(0, FIELD)
    for value in values:
        encrypted_lc, encrypted = _encrypt(cs, value.lc(), value.value, state.lc(), state.value)
        total = encrypted + state.value + value.value if known(encrypted, state.value, value.value) else None
        state = linear(cs, encrypted_lc + state.lc() + value.lc(), total, FIELD, "mimc state")
    return state
