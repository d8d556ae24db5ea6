"""
Functions reachable through ``CallLibrary``.

Every function takes the virtual machine and the popped arguments (in push
order) and returns the scalars to push. Bit strings cross this boundary
big-endian.
"""
import logging
from typing import Callable, Dict, List

from . import errors
from .config import FIELD_BITLENGTH
from .gadgets.arithmetic import invert
from .gadgets.bits import from_bits_field, from_bits_signed, from_bits_unsigned, to_bits
from .gadgets.edwards import generator, select_point
from .gadgets.logical import and_, select
from .gadgets.mimc import mimc_hash
from .gadgets.schnorr import verify
from .gadgets.sha256 import sha256
from .scalar import Scalar
from .types import ADDRESS, FIELD

logger = logging.getLogger(__name__)

SIGNATURE_SIZE = 5


def _expect_type(arguments: List[Scalar], check, expected: str, identifier: str):
    for argument in arguments:
        if not check(argument.scalar_type):
            raise errors.TypeMismatch(f"`{identifier}` expects `{expected}`, found `{argument.scalar_type}`")


def _expect_count(arguments, count: int, identifier: str):
    if len(arguments) != count:
        raise errors.MalformedBytecode(f"`{identifier}` takes {count} arguments, got {len(arguments)}")


def crypto_sha256(vm, arguments):
    _expect_type(arguments, lambda t: t.is_boolean, "bool", "std::crypto::sha256")
    if len(arguments) % 8:
        raise errors.MalformedBytecode(f"`std::crypto::sha256` expects whole bytes, got {len(arguments)} bits")
    return sha256(vm.cs, arguments)


def crypto_mimc(vm, arguments):
    _expect_type(arguments, lambda t: t.is_field, "field", "std::crypto::mimc")
    if not arguments:
        raise errors.MalformedBytecode("`std::crypto::mimc` takes at least one argument")
    return [mimc_hash(vm.cs, arguments)]


def crypto_schnorr_verify(vm, arguments):
    """
    Arguments: ``R.x, R.y, s, PK.x, PK.y`` as field elements, then the
    message bits. Off the taken path both points are swapped for the
    generator so that arbitrary values stay satisfiable.
    """
    if len(arguments) < SIGNATURE_SIZE:
        raise errors.MalformedBytecode("`std::crypto::schnorr::verify` expects a signature and a message")
    signature, message = arguments[:SIGNATURE_SIZE], arguments[SIGNATURE_SIZE:]
    _expect_type(signature, lambda t: t.is_field, "field", "std::crypto::schnorr::verify")
    _expect_type(message, lambda t: t.is_boolean, "bool", "std::crypto::schnorr::verify")
    condition = vm.condition()
    r = select_point(vm.cs, condition, (signature[0], signature[1]), generator())
    public_key = select_point(vm.cs, condition, (signature[3], signature[4]), generator())
    is_valid = verify(vm.cs, r, signature[2], public_key, message)
    return [and_(vm.cs, condition, is_valid)]


def convert_to_bits(vm, arguments):
    _expect_count(arguments, 1, "std::convert::to_bits")
    return list(reversed(to_bits(vm.cs, arguments[0])))


def _bits_argument(arguments, identifier):
    _expect_type(arguments, lambda t: t.is_boolean, "bool", identifier)
    if not arguments:
        raise errors.MalformedBytecode(f"`{identifier}` takes at least one bit")
    return list(reversed(arguments))


def convert_from_bits_unsigned(vm, arguments):
    return [from_bits_unsigned(vm.cs, _bits_argument(arguments, "std::convert::from_bits_unsigned"))]


def convert_from_bits_signed(vm, arguments):
    return [from_bits_signed(vm.cs, _bits_argument(arguments, "std::convert::from_bits_signed"))]


def convert_from_bits_field(vm, arguments):
    bits = _bits_argument(arguments, "std::convert::from_bits_field")
    if len(bits) != FIELD_BITLENGTH:
        raise errors.MalformedBytecode(f"`std::convert::from_bits_field` takes {FIELD_BITLENGTH} bits, got {len(bits)}")
    return [from_bits_field(vm.cs, bits)]


def array_reverse(vm, arguments):
    return list(reversed(arguments))


def ff_invert(vm, arguments):
    _expect_count(arguments, 1, "std::ff::invert")
    _expect_type(arguments, lambda t: t.is_field, "field", "std::ff::invert")
    one = Scalar.new_constant(1, FIELD)
    return [invert(vm.cs, select(vm.cs, vm.condition(), arguments[0], one))]


def _map_arguments(vm, arguments, identifier: str):
    """Split ``[address, field_index, rest...]``; the index must be a constant."""
    if len(arguments) < 2:
        raise errors.MalformedBytecode(f"`{identifier}` expects an address and a field index")
    if vm.storages is None:
        raise errors.OnlyForContracts(identifier)
    address, index = arguments[0], arguments[1]
    if address.scalar_type != ADDRESS:
        raise errors.TypeMismatch(f"`{identifier}` expects a `{ADDRESS}` address, found `{address.scalar_type}`")
    if not index.is_constant():
        raise errors.MalformedBytecode(f"`{identifier}` needs a constant field index")
    gadget = vm.storages.get(address)
    return gadget, index.value.value, arguments[2:]


def _split_key(gadget, index: int, rest):
    map_type = gadget.map_type(index)
    key_size = map_type.key.size()
    return map_type, rest[:key_size], rest[key_size:]


def mtreemap_get(vm, arguments):
    gadget, index, rest = _map_arguments(vm, arguments, "std::collections::mtreemap::get")
    _, key, extra = _split_key(gadget, index, rest)
    if extra:
        raise errors.MalformedBytecode("`std::collections::mtreemap::get` takes an address, an index and a key")
    value, found = gadget.map_get(vm.cs, index, key)
    return value + [found]


def mtreemap_contains(vm, arguments):
    gadget, index, rest = _map_arguments(vm, arguments, "std::collections::mtreemap::contains")
    _, key, extra = _split_key(gadget, index, rest)
    if extra:
        raise errors.MalformedBytecode("`std::collections::mtreemap::contains` takes an address, an index and a key")
    _, found = gadget.map_get(vm.cs, index, key)
    return [found]


def mtreemap_insert(vm, arguments):
    vm.ensure_mutable("std::collections::mtreemap::insert")
    gadget, index, rest = _map_arguments(vm, arguments, "std::collections::mtreemap::insert")
    map_type, key, value = _split_key(gadget, index, rest)
    if len(value) != map_type.value.size():
        raise errors.MalformedBytecode(
            f"`std::collections::mtreemap::insert` expects a value of {map_type.value.size()} scalars, got {len(value)}"
        )
    old_value, existed = gadget.map_insert(vm.cs, vm.condition(), index, key, value)
    return old_value + [existed]


def mtreemap_remove(vm, arguments):
    vm.ensure_mutable("std::collections::mtreemap::remove")
    gadget, index, rest = _map_arguments(vm, arguments, "std::collections::mtreemap::remove")
    _, key, extra = _split_key(gadget, index, rest)
    if extra:
        raise errors.MalformedBytecode("`std::collections::mtreemap::remove` takes an address, an index and a key")
    old_value, existed = gadget.map_remove(vm.cs, vm.condition(), index, key)
    return old_value + [existed]


LIBRARY: Dict[str, Callable] = {
    "std::crypto::sha256": crypto_sha256,
    "std::crypto::mimc": crypto_mimc,
    "std::crypto::schnorr::verify": crypto_schnorr_verify,
    "std::convert::to_bits": convert_to_bits,
    "std::convert::from_bits_unsigned": convert_from_bits_unsigned,
    "std::convert::from_bits_signed": convert_from_bits_signed,
    "std::convert::from_bits_field": convert_from_bits_field,
    "std::array::reverse": array_reverse,
    "std::ff::invert": ff_invert,
    "std::collections::mtreemap::get": mtreemap_get,
    "std::collections::mtreemap::contains": mtreemap_contains,
    "std::collections::mtreemap::insert": mtreemap_insert,
    "std::collections::mtreemap::remove": mtreemap_remove,
}


def call(vm, identifier: str, arguments: List[Scalar], output_size: int) -> List[Scalar]:
    function = LIBRARY.get(identifier)
    if function is None:
        raise errors.UnknownLibraryFunction(identifier)
    outputs = function(vm, arguments)
    if len(outputs) != output_size:
        raise errors.MalformedBytecode(f"`{identifier}` returns {len(outputs)} values, expected {output_size}")
    logger.debug(f"{identifier}: {len(arguments)} arguments, {len(outputs)} results")
    return outputs
