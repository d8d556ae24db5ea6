"""
Schnorr signatures over Baby Jubjub with a MiMC challenge.

A signature on message ``m`` under key ``PK = sk * G`` is ``(R, s)`` with
``R = k * G``, ``e = MiMC(R.x, R.y, PK.x, PK.y, pack(m))`` and
``s = k + e * sk mod l``. It is valid when ``s * G == R + e * PK``.

The message is a bit string; it is packed into field elements of 248 bits
each, most significant bit first.
"""
from dataclasses import dataclass
from secrets import randbelow
from typing import List, Tuple

from ecpy.curves import Point

from ..scalar import Scalar
from .bits import from_bits_field, to_bits_strict
from .comparison import equals
from .edwards import BABYJUBJUB, G, SUBGROUP_ORDER, add, assert_on_curve, generator, scalar_mult
from .logical import and_
from .mimc import mimc_hash, mimc_hash_native

MESSAGE_CHUNK_BITS = 248


@dataclass
class Signature:
    r: Tuple[int, int]
    s: int
    public_key: Tuple[int, int]

    def to_field_elements(self) -> List[int]:
        return [self.r[0], self.r[1], self.s, self.public_key[0], self.public_key[1]]


def message_to_bits(message: bytes) -> List[int]:
    return [(byte >> (7 - i)) & 1 for byte in message for i in range(8)]


def _pack_message_native(bits: List[int]) -> List[int]:
    chunks = []
    for offset in range(0, len(bits), MESSAGE_CHUNK_BITS):
        value = 0
        for bit in bits[offset:offset + MESSAGE_CHUNK_BITS]:
            value = (value << 1) | bit
        chunks.append(value)
    return chunks


def challenge_native(r: Point, public_key: Point, bits: List[int]) -> int:
    return mimc_hash_native([r.x, r.y, public_key.x, public_key.y] + _pack_message_native(bits))


def generate_key() -> Tuple[int, Point]:
    private_key = randbelow(SUBGROUP_ORDER - 1) + 1
    return private_key, private_key * G


def sign(private_key: int, message: bytes) -> Signature:
    public_key = private_key * G
    nonce = randbelow(SUBGROUP_ORDER - 1) + 1
    r = nonce * G
    e = challenge_native(r, public_key, message_to_bits(message))
    s = (nonce + e * private_key) % SUBGROUP_ORDER
    return Signature((r.x, r.y), s, (public_key.x, public_key.y))


def verify_native(signature: Signature, message: bytes) -> bool:
    r = Point(signature.r[0], signature.r[1], BABYJUBJUB)
    public_key = Point(signature.public_key[0], signature.public_key[1], BABYJUBJUB)
    e = challenge_native(r, public_key, message_to_bits(message))
    return signature.s * G == r + e * public_key


def verify(cs, r, s: Scalar, public_key, message: List[Scalar]) -> Scalar:
    """
    In-circuit verification; returns a boolean scalar.

    ``R`` and ``PK`` must lie on the curve, otherwise the system is
    unsatisfiable rather than the result being false.
    """
    assert_on_curve(cs, r)
    assert_on_curve(cs, public_key)
    chunks = []
    for offset in range(0, len(message), MESSAGE_CHUNK_BITS):
        chunk = message[offset:offset + MESSAGE_CHUNK_BITS]
        chunks.append(from_bits_field(cs, list(reversed(chunk))))
    e = mimc_hash(cs, [r[0], r[1], public_key[0], public_key[1]] + chunks)

    lhs = scalar_mult(cs, to_bits_strict(cs, s), generator())
    rhs = add(cs, r, scalar_mult(cs, to_bits_strict(cs, e), public_key))
    return and_(cs, equals(cs, lhs[0], rhs[0]), equals(cs, lhs[1], rhs[1]))
