"""
SHA-256 (FIPS 180-4) over boolean scalars.

Words are lists of 32 bits, most significant first, matching the byte
order of the digest. Modular additions are done on packed words and
decomposed once per sum, with enough extra bits for the carries.
"""
from typing import List

from ..scalar import Scalar
from .bits import decompose, pack, pack_value
from .logical import select, xor

ROUND_CONSTANTS = [
    0x428A2F98, 0x71374491, 0xB5C0FBCF, 0xE9B5DBA5, 0x3956C25B, 0x59F111F1, 0x923F82A4, 0xAB1C5ED5,
    0xD807AA98, 0x12835B01, 0x243185BE, 0x550C7DC3, 0x72BE5D74, 0x80DEB1FE, 0x9BDC06A7, 0xC19BF174,
    0xE49B69C1, 0xEFBE4786, 0x0FC19DC6, 0x240CA1CC, 0x2DE92C6F, 0x4A7484AA, 0x5CB0A9DC, 0x76F988DA,
    0x983E5152, 0xA831C66D, 0xB00327C8, 0xBF597FC7, 0xC6E00BF3, 0xD5A79147, 0x06CA6351, 0x14292967,
    0x27B70A85, 0x2E1B2138, 0x4D2C6DFC, 0x53380D13, 0x650A7354, 0x766A0ABB, 0x81C2C92E, 0x92722C85,
    0xA2BFE8A1, 0xA81A664B, 0xC24B8B70, 0xC76C51A3, 0xD192E819, 0xD6990624, 0xF40E3585, 0x106AA070,
    0x19A4C116, 0x1E376C08, 0x2748774C, 0x34B0BCB5, 0x391C0CB3, 0x4ED8AA4A, 0x5B9CCA4F, 0x682E6FF3,
    0x748F82EE, 0x78A5636F, 0x84C87814, 0x8CC70208, 0x90BEFFFA, 0xA4506CEB, 0xBEF9A3F7, 0xC67178F2,
]

INITIAL_HASH = [
    0x6A09E667, 0xBB67AE85, 0x3C6EF372, 0xA54FF53A, 0x510E527F, 0x9B05688C, 0x1F83D9AB, 0x5BE0CD19,
]

WORD_BITS = 32
BLOCK_BITS = 512
DIGEST_BITS = 256


def constant_word(value: int) -> List[Scalar]:
    return [Scalar.true() if (value >> (WORD_BITS - 1 - i)) & 1 else Scalar.false() for i in range(WORD_BITS)]


def _rotr(word, n):
    return word[-n:] + word[:-n]


def _shr(word, n):
    return [Scalar.false()] * n + word[:-n]


def _xor3(cs, a, b, c):
    return [xor(cs, xor(cs, x, y), z) for x, y, z in zip(a, b, c)]


def _add(cs, *words) -> List[Scalar]:
    """Sum modulo 2^32."""
    little_endian = [list(reversed(word)) for word in words]
    values = [pack_value(word) for word in little_endian]
    value = None if any(v is None for v in values) else sum(values)
    if all(bit.is_constant() for word in words for bit in word):
        return constant_word(value % (1 << WORD_BITS))
    lc = pack(little_endian[0])
    for word in little_endian[1:]:
        lc = lc + pack(word)
    carry_bits = (len(words) - 1).bit_length()
    bits = decompose(cs, lc, value, WORD_BITS + carry_bits, "sha256 add")
    return list(reversed(bits[:WORD_BITS]))


def _compress(cs, state, block):
    schedule = [block[i * WORD_BITS:(i + 1) * WORD_BITS] for i in range(16)]
    for t in range(16, 64):
        w15, w2 = schedule[t - 15], schedule[t - 2]
        s0 = _xor3(cs, _rotr(w15, 7), _rotr(w15, 18), _shr(w15, 3))
        s1 = _xor3(cs, _rotr(w2, 17), _rotr(w2, 19), _shr(w2, 10))
        schedule.append(_add(cs, schedule[t - 16], s0, schedule[t - 7], s1))

    a, b, c, d, e, f, g, h = state
    for t in range(64):
        big_sigma1 = _xor3(cs, _rotr(e, 6), _rotr(e, 11), _rotr(e, 25))
        choice = [select(cs, x, y, z) for x, y, z in zip(e, f, g)]
        big_sigma0 = _xor3(cs, _rotr(a, 2), _rotr(a, 13), _rotr(a, 22))
        majority = [select(cs, xor(cs, x, y), z, x) for x, y, z in zip(a, b, c)]
        k = constant_word(ROUND_CONSTANTS[t])
        temp1 = (h, big_sigma1, choice, k, schedule[t])
        new_e = _add(cs, d, *temp1)
        new_a = _add(cs, *temp1, big_sigma0, majority)
        h, g, f, e, d, c, b, a = g, f, e, new_e, c, b, a, new_a

    return [_add(cs, old, new) for old, new in zip(state, (a, b, c, d, e, f, g, h))]


def padding(length: int) -> List[Scalar]:
    zeros = (BLOCK_BITS - (length + 1 + 64) % BLOCK_BITS) % BLOCK_BITS
    bits = [Scalar.true()] + [Scalar.false()] * zeros
    bits += [Scalar.true() if (length >> (63 - i)) & 1 else Scalar.false() for i in range(64)]
    return bits


def sha256(cs, message: List[Scalar]) -> List[Scalar]:
    """Digest of a big-endian bit string, as 256 big-endian bits."""
    message = [bit.to_boolean(cs) for bit in message]
    padded = message + padding(len(message))
    state = [constant_word(value) for value in INITIAL_HASH]
    for offset in range(0, len(padded), BLOCK_BITS):
        state = _compress(cs, state, padded[offset:offset + BLOCK_BITS])
    return [bit for word in state for bit in word]
