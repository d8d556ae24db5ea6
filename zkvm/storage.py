"""
Native side of contract storage: leaves, the Merkle tree over them,
storage records and the backends that keep them between runs.

A contract's storage is one leaf per field. Non-map fields become an
``ArrayLeaf`` with the field's flat values; map fields become a ``MapLeaf``
of ``capacity`` slots. The tree is hashed with a pluggable hasher (see
``zkvm.gadgets.merkle``) and padded with empty leaves to a power of two.
"""
import abc
import json
import logging
import os
from dataclasses import dataclass
from hashlib import sha256
from typing import Dict, List

from . import errors
from .config import ADDRESS_BITLENGTH
from .types import ContractField, MapType, ScalarType
from .values import from_json, map_from_json, map_to_json, to_json


logger = logging.getLogger(__name__)


@dataclass
class ArrayLeaf:
    values: List[int]
    scalar_types: List[ScalarType]

    def copy(self):
        return ArrayLeaf(list(self.values), list(self.scalar_types))


@dataclass
class MapLeaf:
    map_type: MapType
    slots: List[List[int]]

    @property
    def values(self) -> List[int]:
        return [value for slot in self.slots for value in slot]

    @property
    def scalar_types(self) -> List[ScalarType]:
        return self.map_type.slot_types() * self.map_type.capacity

    def copy(self):
        return MapLeaf(self.map_type, [list(slot) for slot in self.slots])

    @classmethod
    def from_values(cls, map_type: MapType, values: List[int]) -> "MapLeaf":
        width = len(map_type.slot_types())
        return cls(map_type, [list(values[i:i + width]) for i in range(0, len(values), width)])


def leaf_types(contract_field: ContractField) -> List[ScalarType]:
    data_type = contract_field.data_type
    if isinstance(data_type, MapType):
        return data_type.slot_types() * data_type.capacity
    return data_type.flat_scalar_types()


def leaf_from_values(contract_field: ContractField, values: List[int]):
    data_type = contract_field.data_type
    if isinstance(data_type, MapType):
        return MapLeaf.from_values(data_type, values)
    return ArrayLeaf(list(values), data_type.flat_scalar_types())


def default_leaves(fields: List[ContractField]):
    return [leaf_from_values(f, [0] * len(leaf_types(f))) for f in fields]


def tree_depth(leaves_count: int) -> int:
    return max(1, (leaves_count - 1).bit_length())


class MerkleTree:
    """
    Binary hash tree over the storage leaves.

    ``layers[0]`` holds the leaf hashes and ``layers[-1]`` the root; an
    authentication path lists the sibling hashes from the leaf upwards.
    """

    def __init__(self, hasher, leaves):
        self.hasher = hasher
        self.leaves = [leaf.copy() for leaf in leaves]
        self.depth = tree_depth(len(self.leaves))
        empty = hasher.empty_leaf_native()
        bottom = [hasher.leaf_hash_native(leaf.values, leaf.scalar_types) for leaf in self.leaves]
        bottom += [empty] * ((1 << self.depth) - len(bottom))
        self.layers = [bottom]
        for _ in range(self.depth):
            below = self.layers[-1]
            self.layers.append(
                [hasher.node_hash_native(below[i], below[i + 1]) for i in range(0, len(below), 2)]
            )

    def root(self):
        return self.layers[-1][0]

    def root_field(self) -> int:
        return self.hasher.digest_to_field_native(self.root())

    def path(self, index: int):
        path = []
        for level in range(self.depth):
            path.append(self.layers[level][index ^ 1])
            index >>= 1
        return path

    def load(self, index: int):
        """The leaf at ``index`` and its authentication path."""
        return self.leaves[index].copy(), self.path(index)

    def store(self, index: int, leaf):
        """Replace a leaf; returns the old leaf and its authentication path."""
        old_leaf, path = self.load(index)
        self.leaves[index] = leaf.copy()
        self.layers[0][index] = self.hasher.leaf_hash_native(leaf.values, leaf.scalar_types)
        position = index
        for level in range(1, self.depth + 1):
            position >>= 1
            below = self.layers[level - 1]
            self.layers[level][position] = self.hasher.node_hash_native(below[2 * position], below[2 * position + 1])
        return old_leaf, path


def derive_address(name: str, nonce: int) -> int:
    digest = sha256(name.encode() + nonce.to_bytes(8, "big")).digest()
    return int.from_bytes(digest, "big") >> (256 - ADDRESS_BITLENGTH)


def record_from_leaves(name: str, address: int, fields: List[ContractField], leaves) -> Dict:
    record_fields = []
    for contract_field, leaf in zip(fields, leaves):
        if isinstance(contract_field.data_type, MapType):
            value = map_to_json(contract_field.data_type, leaf.slots)
        else:
            value = to_json(contract_field.data_type, leaf.values)
        record_fields.append({"name": contract_field.name, "value": value})
    return {"name": name, "address": f"{address:#042x}", "fields": record_fields}


def leaves_from_record(fields: List[ContractField], record: Dict):
    """Validate a stored record against the declared fields and return its leaves."""
    stored = record.get("fields", [])
    if [item.get("name") for item in stored] != [f.name for f in fields]:
        raise errors.InvalidInput(
            f"storage fields {[item.get('name') for item in stored]} do not match {[f.name for f in fields]}"
        )
    leaves = []
    for contract_field, item in zip(fields, stored):
        data_type = contract_field.data_type
        if isinstance(data_type, MapType):
            leaves.append(MapLeaf(data_type, map_from_json(data_type, item["value"])))
        else:
            leaves.append(ArrayLeaf(from_json(data_type, item["value"]), data_type.flat_scalar_types()))
    return leaves


def default_record(name: str, address: int, fields: List[ContractField]) -> Dict:
    return record_from_leaves(name, address, fields, default_leaves(fields))


class StorageBackend(abc.ABC):
    @abc.abstractmethod
    def get(self, address: int) -> Dict:
        """Return the record of ``address`` or raise ``ContractNotFound``."""

    @abc.abstractmethod
    def update(self, address: int, record: Dict):
        pass

    @abc.abstractmethod
    def create(self, address: int, record: Dict):
        """Store a new record; ``ContractAlreadyExists`` if the address is taken."""

    @abc.abstractmethod
    def exists(self, address: int) -> bool:
        pass


class InMemoryBackend(StorageBackend):
    def __init__(self, records=None):
        self.records: Dict[int, Dict] = dict(records or {})

    def get(self, address):
        if address not in self.records:
            raise errors.ContractNotFound(address)
        return json.loads(json.dumps(self.records[address]))

    def update(self, address, record):
        if address not in self.records:
            raise errors.ContractNotFound(address)
        self.records[address] = record

    def create(self, address, record):
        if address in self.records:
            raise errors.ContractAlreadyExists(address)
        self.records[address] = record

    def exists(self, address):
        return address in self.records


class DirectoryBackend(StorageBackend):
    """One ``<address>.json`` file per contract."""

    def __init__(self, path: str):
        self.path = path
        os.makedirs(path, exist_ok=True)

    def _file(self, address: int) -> str:
        return os.path.join(self.path, f"{address:040x}.json")

    def get(self, address):
        try:
            with open(self._file(address)) as f:
                return json.load(f)
        except FileNotFoundError:
            raise errors.ContractNotFound(address)

    def _write(self, address, record):
        with open(self._file(address), "w") as f:
            json.dump(record, f, indent=2)
        logger.info(f"Storage of {address:#042x} written to {self._file(address)}")

    def update(self, address, record):
        if not self.exists(address):
            raise errors.ContractNotFound(address)
        self._write(address, record)

    def create(self, address, record):
        if self.exists(address):
            raise errors.ContractAlreadyExists(address)
        self._write(address, record)

    def exists(self, address):
        return os.path.exists(self._file(address))
