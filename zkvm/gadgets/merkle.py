"""
In-circuit contract storage.

Each fetched or created contract gets a ``StorageGadget`` holding the
current Merkle root as a field scalar. A load allocates the leaf and its
authentication path as witnesses and proves they hash up to the current
root; a store authenticates the old leaf the same way and adopts the root
computed from the new leaf over the same path.

Hashers come in two flavours with one interface, usable natively and in
the circuit: ``Sha256Hasher`` (bit strings, root truncated to 248 bits) and
``MimcHasher`` (one field element per digest, much cheaper).
"""
import hashlib
import logging
import threading
from typing import Callable, Dict, List, Optional, Set

from .. import errors
from ..config import MERKLE_HASHER
from ..constraint_system import LinearCombination
from ..field import Fr_modulus
from ..scalar import Scalar
from ..storage import (
    MerkleTree,
    derive_address,
    leaf_from_values,
    leaf_types,
    leaves_from_record,
    record_from_leaves,
    tree_depth,
)
from ..types import ADDRESS, FIELD, ContractField, MapType
from .base import alloc_boolean, alloc_scalar, known
from .bits import from_bits_field, range_check, to_bits
from .comparison import equals
from .logical import and_, not_, or_, select
from .mimc import mimc_hash, mimc_hash_native
from .sha256 import sha256

logger = logging.getLogger(__name__)

ROOT_BITS = 248


def _bit_width(scalar_type) -> int:
    if scalar_type.is_boolean:
        return 1
    return scalar_type.bitlength


def _padded_width(scalar_type) -> int:
    return (_bit_width(scalar_type) + 7) // 8 * 8


class Sha256Hasher:
    name = "sha256"

    def leaf_bytes(self, values, scalar_types) -> bytes:
        """Every value in its type's width, two's complement, left-padded to whole bytes."""
        data = b""
        for value, scalar_type in zip(values, scalar_types):
            width = _bit_width(scalar_type)
            data += (value % (1 << width)).to_bytes(_padded_width(scalar_type) // 8, "big")
        return data

    def leaf_hash_native(self, values, scalar_types) -> bytes:
        return hashlib.sha256(self.leaf_bytes(values, scalar_types)).digest()

    def empty_leaf_native(self) -> bytes:
        return hashlib.sha256(b"").digest()

    def node_hash_native(self, left: bytes, right: bytes) -> bytes:
        return hashlib.sha256(left + right).digest()

    def digest_to_field_native(self, digest: bytes) -> int:
        return int.from_bytes(digest[:ROOT_BITS // 8], "big")

    def constant_digest(self, digest: bytes) -> List[Scalar]:
        return [Scalar.true() if (byte >> (7 - i)) & 1 else Scalar.false() for byte in digest for i in range(8)]

    def alloc_digest(self, cs, digest: Optional[bytes], annotation="digest") -> List[Scalar]:
        if digest is None:
            return [alloc_boolean(cs, None, annotation) for _ in range(256)]
        return [alloc_boolean(cs, (byte >> (7 - i)) & 1, annotation) for byte in digest for i in range(8)]

    def _hash_bits(self, cs, bits: List[Scalar]) -> List[Scalar]:
        if all(bit.is_constant() for bit in bits):
            value = 0
            for bit in bits:
                value = (value << 1) | bit.value.value
            # the hashed bit strings are always whole bytes
            return self.constant_digest(hashlib.sha256(value.to_bytes(len(bits) // 8, "big")).digest())
        return sha256(cs, bits)

    def leaf_hash(self, cs, scalars: List[Scalar]) -> List[Scalar]:
        bits = []
        for scalar in scalars:
            big_endian = list(reversed(to_bits(cs, scalar)))
            bits += [Scalar.false()] * (_padded_width(scalar.scalar_type) - len(big_endian)) + big_endian
        return self._hash_bits(cs, bits)

    def node_hash(self, cs, left: List[Scalar], right: List[Scalar]) -> List[Scalar]:
        return self._hash_bits(cs, left + right)

    def digest_to_field(self, cs, digest: List[Scalar]) -> Scalar:
        return from_bits_field(cs, list(reversed(digest[:ROOT_BITS])))

    def select_digest(self, cs, condition, if_true, if_false) -> List[Scalar]:
        return [select(cs, condition, a, b) for a, b in zip(if_true, if_false)]


class MimcHasher:
    name = "mimc"

    def leaf_hash_native(self, values, scalar_types) -> int:
        return mimc_hash_native([value % Fr_modulus for value in values])

    def empty_leaf_native(self) -> int:
        return mimc_hash_native([])

    def node_hash_native(self, left: int, right: int) -> int:
        return mimc_hash_native([left, right])

    def digest_to_field_native(self, digest: int) -> int:
        return digest

    def constant_digest(self, digest: int) -> Scalar:
        return Scalar.new_unchecked_constant(digest, FIELD)

    def alloc_digest(self, cs, digest: Optional[int], annotation="digest") -> Scalar:
        return alloc_scalar(cs, digest, FIELD, annotation)

    def leaf_hash(self, cs, scalars: List[Scalar]) -> Scalar:
        return mimc_hash(cs, [scalar.with_type(FIELD) for scalar in scalars])

    def node_hash(self, cs, left: Scalar, right: Scalar) -> Scalar:
        return mimc_hash(cs, [left, right])

    def digest_to_field(self, cs, digest: Scalar) -> Scalar:
        return digest

    def select_digest(self, cs, condition, if_true, if_false) -> Scalar:
        return select(cs, condition, if_true, if_false)


HASHERS = {Sha256Hasher.name: Sha256Hasher, MimcHasher.name: MimcHasher}


def get_hasher(name: str = MERKLE_HASHER):
    if name not in HASHERS:
        raise ValueError(f"unknown merkle hasher `{name}`, expected one of {sorted(HASHERS)}")
    return HASHERS[name]()


def alloc_typed(cs, value, scalar_type, annotation="") -> Scalar:
    """Allocate a witness and prove it fits ``scalar_type``."""
    if scalar_type.is_boolean:
        return alloc_boolean(cs, value, annotation)
    scalar = alloc_scalar(cs, value, scalar_type, annotation)
    return range_check(cs, scalar, scalar_type)


class StorageGadget:
    """
    One contract storage inside the circuit.

    ``tree`` is the native mirror and is ``None`` when values are unknown
    (key generation); the constraints are the same either way.
    """

    def __init__(self, cs, hasher, name: str, fields: List[ContractField], address: Scalar, tree: Optional[MerkleTree]):
        self.hasher = hasher
        self.name = name
        self.fields = list(fields)
        self.address = address
        self.tree = tree
        self.depth = tree_depth(len(self.fields))
        self.modified = False
        self.is_new = False
        self.initial_root = alloc_scalar(cs, None if tree is None else tree.root_field(), FIELD, "initial root")
        self.root = self.initial_root

    @classmethod
    def from_scalars(cls, cs, hasher, name, fields, address: Scalar, leaves: List[List[Scalar]]):
        """A new storage whose root is computed in the circuit from ``leaves``."""
        gadget = cls.__new__(cls)
        gadget.hasher = hasher
        gadget.name = name
        gadget.fields = list(fields)
        gadget.address = address
        gadget.depth = tree_depth(len(fields))
        gadget.modified = True
        gadget.is_new = True

        values = [[scalar.to_bigint() for scalar in leaf] for leaf in leaves]
        if all(known(*leaf) for leaf in values):
            gadget.tree = MerkleTree(hasher, [leaf_from_values(f, v) for f, v in zip(fields, values)])
        else:
            gadget.tree = None

        layer = [hasher.leaf_hash(cs, leaf) for leaf in leaves]
        empty = hasher.constant_digest(hasher.empty_leaf_native())
        layer += [empty] * ((1 << gadget.depth) - len(layer))
        while len(layer) > 1:
            layer = [hasher.node_hash(cs, layer[i], layer[i + 1]) for i in range(0, len(layer), 2)]
        gadget.initial_root = hasher.digest_to_field(cs, layer[0])
        gadget.root = gadget.initial_root
        return gadget

    def _check_index(self, index: int):
        if not 0 <= index < len(self.fields):
            raise errors.MalformedBytecode(
                f"storage field index {index} is out of range for `{self.name}` with {len(self.fields)} fields"
            )

    def _root_from_path(self, cs, leaf_digest, path, index: int) -> Scalar:
        current = leaf_digest
        for level, sibling in enumerate(path):
            is_right = Scalar.true() if (index >> level) & 1 else Scalar.false()
            left = self.hasher.select_digest(cs, is_right, sibling, current)
            right = self.hasher.select_digest(cs, is_right, current, sibling)
            current = self.hasher.node_hash(cs, left, right)
        return self.hasher.digest_to_field(cs, current)

    def _authenticate(self, cs, index: int):
        """Allocate the leaf at ``index`` with its path and prove both against the root."""
        self._check_index(index)
        types = leaf_types(self.fields[index])
        if self.tree is not None:
            leaf, native_path = self.tree.load(index)
            values = leaf.values
        else:
            values, native_path = [None] * len(types), [None] * self.depth
        leaf_scalars = [
            alloc_typed(cs, value, scalar_type, f"storage {self.fields[index].name}")
            for value, scalar_type in zip(values, types)
        ]
        path = [self.hasher.alloc_digest(cs, digest, "authentication path") for digest in native_path]
        root = self._root_from_path(cs, self.hasher.leaf_hash(cs, leaf_scalars), path, index)
        cs.enforce(root.lc(), LinearCombination.one(), self.root.lc(), f"storage root of {self.name}")
        return leaf_scalars, path

    def load(self, cs, index: int) -> List[Scalar]:
        leaf_scalars, _ = self._authenticate(cs, index)
        return leaf_scalars

    def modify(self, cs, index: int, update) -> List[Scalar]:
        """
        Replace the leaf at ``index`` by ``update(old_leaf)``; returns the old
        leaf. ``update`` must return scalars of the leaf's types.
        """
        old_leaf, path = self._authenticate(cs, index)
        new_leaf = update(old_leaf)
        types = leaf_types(self.fields[index])
        for scalar, scalar_type in zip(new_leaf, types):
            if scalar.scalar_type != scalar_type:
                raise errors.TypeMismatch(
                    f"storage field `{self.fields[index].name}` expects `{scalar_type}`, found `{scalar.scalar_type}`"
                )
        if len(new_leaf) != len(types):
            raise errors.MalformedBytecode(
                f"storage field `{self.fields[index].name}` has {len(types)} values, got {len(new_leaf)}"
            )
        self.root = self._root_from_path(cs, self.hasher.leaf_hash(cs, new_leaf), path, index)
        new_values = [scalar.to_bigint() for scalar in new_leaf]
        if self.tree is not None and known(*new_values):
            self.tree.store(index, leaf_from_values(self.fields[index], new_values))
        self.modified = True
        return old_leaf

    def store(self, cs, condition: Scalar, index: int, values: List[Scalar]):
        """Write ``values`` to field ``index`` when ``condition`` holds."""
        def update(old_leaf):
            if len(values) != len(old_leaf):
                raise errors.MalformedBytecode(
                    f"storage field `{self.fields[index].name}` has {len(old_leaf)} values, got {len(values)}"
                )
            return [select(cs, condition, new, old) for new, old in zip(values, old_leaf)]

        self.modify(cs, index, update)

    def map_type(self, index: int) -> MapType:
        self._check_index(index)
        data_type = self.fields[index].data_type
        if not isinstance(data_type, MapType):
            raise errors.TypeMismatch(f"storage field `{self.fields[index].name}` is not a map")
        return data_type

    @staticmethod
    def _slots(map_type: MapType, leaf: List[Scalar]) -> List[List[Scalar]]:
        width = len(map_type.slot_types())
        return [leaf[i:i + width] for i in range(0, len(leaf), width)]

    def _matches(self, cs, map_type, slots, key: List[Scalar]) -> List[Scalar]:
        key_size = map_type.key.size()
        if len(key) != key_size:
            raise errors.MalformedBytecode(f"map key has {key_size} values, got {len(key)}")
        matches = []
        for slot in slots:
            match = slot[0]
            for stored, wanted in zip(slot[1:1 + key_size], key):
                match = and_(cs, match, equals(cs, stored, wanted))
            matches.append(match)
        return matches

    def _lookup(self, cs, map_type, slots, matches):
        key_size = map_type.key.size()
        value = [Scalar.new_unchecked_constant(0, t) for t in map_type.value.flat_scalar_types()]
        found = Scalar.false()
        for slot, match in zip(slots, matches):
            value = [select(cs, match, stored, current) for stored, current in zip(slot[1 + key_size:], value)]
            found = or_(cs, found, match)
        return value, found

    def map_get(self, cs, index: int, key: List[Scalar]):
        """``(value, found)``; an absent key yields the zero value."""
        map_type = self.map_type(index)
        slots = self._slots(map_type, self.load(cs, index))
        return self._lookup(cs, map_type, slots, self._matches(cs, map_type, slots, key))

    def map_insert(self, cs, condition: Scalar, index: int, key: List[Scalar], value: List[Scalar]):
        """
        Insert or overwrite ``key``; returns the previous value and whether
        it existed. A new key takes the first free slot.
        """
        map_type = self.map_type(index)
        result = {}

        def update(old_leaf):
            slots = self._slots(map_type, old_leaf)
            matches = self._matches(cs, map_type, slots, key)
            old_value, existed = self._lookup(cs, map_type, slots, matches)
            result["old"] = (old_value, existed)

            entry = [Scalar.true()] + list(key) + list(value)
            free_seen = Scalar.false()
            placed = Scalar.false()
            new_leaf = []
            for slot, match in zip(slots, matches):
                is_free = not_(cs, slot[0])
                first_free = and_(cs, is_free, not_(cs, free_seen))
                free_seen = or_(cs, free_seen, is_free)
                target = or_(cs, match, and_(cs, not_(cs, existed), first_free))
                placed = or_(cs, placed, target)
                write = and_(cs, condition, target)
                new_leaf += [select(cs, write, new, old) for new, old in zip(entry, slot)]

            if condition.is_known_true() and placed.is_known_false():
                raise errors.MapCapacityExceeded(map_type.capacity)
            cs.enforce(condition.lc(), LinearCombination.one() - placed.lc(), LinearCombination.zero(), "map capacity")
            return new_leaf

        self.modify(cs, index, update)
        return result["old"]

    def map_remove(self, cs, condition: Scalar, index: int, key: List[Scalar]):
        """Free the slot of ``key``; returns the removed value and whether it existed."""
        map_type = self.map_type(index)
        result = {}

        def update(old_leaf):
            slots = self._slots(map_type, old_leaf)
            matches = self._matches(cs, map_type, slots, key)
            result["old"] = self._lookup(cs, map_type, slots, matches)
            new_leaf = []
            for slot, match in zip(slots, matches):
                write = and_(cs, condition, match)
                empty = [Scalar.new_unchecked_constant(0, scalar.scalar_type) for scalar in slot]
                new_leaf += [select(cs, write, new, old) for new, old in zip(empty, slot)]
            return new_leaf

        self.modify(cs, index, update)
        return result["old"]

    def leaves(self):
        return self.tree.leaves if self.tree is not None else None


class AddressBook:
    """
    Addresses handed out to constructor runs that have not committed yet.
    Runs sharing a book never derive the same address.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._pending: Set[int] = set()

    def claim(self, name: str, is_taken: Callable[[int], bool]) -> int:
        with self._lock:
            nonce = 0
            while derive_address(name, nonce) in self._pending or is_taken(derive_address(name, nonce)):
                nonce += 1
            address = derive_address(name, nonce)
            self._pending.add(address)
            return address

    def release(self, addresses):
        with self._lock:
            self._pending.difference_update(addresses)


class StorageManager:
    """
    Storages touched by one run, keyed by the address value and by the
    address variable so that lookups work with and without a witness.
    """

    def __init__(self, backend=None, hasher=None, address_book: Optional[AddressBook] = None):
        self.backend = backend
        self.hasher = hasher or get_hasher()
        self.address_book = address_book
        self.claimed: List[int] = []
        self.storages: List[StorageGadget] = []
        self.created: List[StorageGadget] = []
        self._by_value: Dict[int, StorageGadget] = {}
        self._by_variable: Dict[int, StorageGadget] = {}

    def _register(self, gadget: StorageGadget):
        self.storages.append(gadget)
        if gadget.address.value is not None:
            self._by_value[gadget.address.value.value] = gadget
        if gadget.address.variable is not None:
            self._by_variable[gadget.address.variable] = gadget

    def _is_taken(self, address: int) -> bool:
        if address in self._by_value:
            return True
        return self.backend is not None and self.backend.exists(address)

    def fetch(self, cs, address: Scalar, fields: List[ContractField], name: str = ""):
        address_value = address.value.value if address.value is not None else None
        if address_value is not None and address_value in self._by_value:
            raise errors.ContractAlreadyFetched(address_value)
        if address.variable is not None and address.variable in self._by_variable:
            raise errors.ContractAlreadyFetched(address_value or 0)
        tree = None
        if address_value is not None:
            if self.backend is None:
                raise errors.ContractNotFound(address_value)
            record = self.backend.get(address_value)
            name = record.get("name", name)
            tree = MerkleTree(self.hasher, leaves_from_record(fields, record))
        logger.info(f"Fetched storage of {name or 'contract'}")
        gadget = StorageGadget(cs, self.hasher, name, fields, address, tree)
        self._register(gadget)
        return gadget

    def init(self, cs, condition: Scalar, name: str, fields: List[ContractField], values: List[Scalar]) -> Scalar:
        """Create a storage from the flat values of its non-map fields; returns its address."""
        leaves = []
        offset = 0
        for contract_field in fields:
            if isinstance(contract_field.data_type, MapType):
                leaves.append([
                    Scalar.new_unchecked_constant(0, scalar_type) for scalar_type in leaf_types(contract_field)
                ])
                continue
            size = contract_field.data_type.size()
            leaves.append(values[offset:offset + size])
            offset += size

        address_value = None
        if all(value.value is not None for value in values) and self.address_book is not None:
            address_value = self.address_book.claim(name, self._is_taken)
            self.claimed.append(address_value)
        elif all(value.value is not None for value in values):
            nonce = 0
            while self._is_taken(derive_address(name, nonce)):
                nonce += 1
            address_value = derive_address(name, nonce)
        address = alloc_scalar(cs, address_value, ADDRESS, "contract address")

        gadget = StorageGadget.from_scalars(cs, self.hasher, name, fields, address, leaves)
        self._register(gadget)
        if condition.is_known_true():
            self.created.append(gadget)
        if address_value is not None:
            logger.info(f"Initialized storage of {name} at {address_value:#042x}")
        return address

    def get(self, address: Scalar) -> StorageGadget:
        if address.variable is not None and address.variable in self._by_variable:
            return self._by_variable[address.variable]
        if address.value is not None and address.value.value in self._by_value:
            return self._by_value[address.value.value]
        if address.value is not None:
            raise errors.MalformedBytecode(f"storage of {address.value.value:#042x} is not fetched")
        raise errors.MalformedBytecode("storage is not fetched")

    def expose_public_inputs(self, cs):
        """Address, initial root and final root of every storage, in fetch order."""
        for gadget in self.storages:
            for scalar, annotation in (
                (gadget.address, "storage address"),
                (gadget.initial_root, "initial storage root"),
                (gadget.root, "final storage root"),
            ):
                index = cs.alloc_input(scalar.value, annotation)
                cs.enforce(LinearCombination.variable(index), LinearCombination.one(), scalar.lc(), annotation)

    def public_data(self) -> List[Dict]:
        data = []
        for gadget in self.storages:
            data.append(
                {
                    "address": _hex_or_none(gadget.address.value, 40),
                    "initial_root": _hex_or_none(gadget.initial_root.value, 64),
                    "final_root": _hex_or_none(gadget.root.value, 64),
                }
            )
        return data

    def commit(self):
        """Persist created and modified storages; call only after a satisfied run."""
        if self.backend is None:
            return
        for gadget in self.storages:
            if gadget.tree is None or gadget.address.value is None:
                continue
            address = gadget.address.value.value
            record = record_from_leaves(gadget.name, address, gadget.fields, gadget.tree.leaves)
            if gadget.is_new:
                if gadget in self.created:
                    self.backend.create(address, record)
            elif gadget.modified:
                self.backend.update(address, record)


def _hex_or_none(value, digits: int):
    if value is None:
        return None
    return f"{value.value:#0{digits + 2}x}"


def public_storage_inputs(storages: List[Dict]) -> List[int]:
    """Public inputs contributed by the ``storages`` part of public data."""
    inputs = []
    for storage in storages:
        for key in ("address", "initial_root", "final_root"):
            inputs.append(int(storage[key], 16))
    return inputs
