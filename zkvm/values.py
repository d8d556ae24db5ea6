"""
Typed JSON values.

Witnesses, public data and storage records are JSON trees that must match
a data type exactly. They are converted to and from the flat list of
integers the VM works with (signed integers keep their sign here; the field
encoding happens in ``Scalar``).

JSON encoding: booleans are ``true``/``false``; integers and field elements
are decimal or ``0x`` hexadecimal strings (plain JSON numbers are accepted
on input); arrays and tuples are lists; structures are objects with exactly
the declared fields; maps are lists of ``{"key", "value"}`` objects or
``null`` for free slots.
"""
from typing import List

from .errors import InvalidInput
from .field import Fr_modulus
from .types import (
    ArrayType,
    DataType,
    MapType,
    PrimitiveType,
    ScalarType,
    StructureType,
    TupleType,
    UnitType,
)


def parse_integer(value, scalar_type: ScalarType) -> int:
    if isinstance(value, bool):
        raise InvalidInput(f"expected `{scalar_type}`, found a boolean")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str):
        text = value.strip().replace("_", "")
        negative = text.startswith("-")
        if negative:
            text = text[1:]
        try:
            number = int(text, 16) if text.lower().startswith("0x") else int(text, 10)
        except ValueError:
            raise InvalidInput(f"`{value}` is not a valid `{scalar_type}` literal")
        if negative:
            number = -number
    else:
        raise InvalidInput(f"expected `{scalar_type}`, found `{value!r}`")
    if scalar_type.is_field:
        if not 0 <= number < Fr_modulus:
            raise InvalidInput(f"{number} is not a canonical field element")
    elif not scalar_type.contains(number):
        raise InvalidInput(f"{number} does not fit `{scalar_type}`")
    return number


def parse_scalar(value, scalar_type: ScalarType) -> int:
    if scalar_type.is_boolean:
        if not isinstance(value, bool):
            raise InvalidInput(f"expected `bool`, found `{value!r}`")
        return int(value)
    return parse_integer(value, scalar_type)


def from_json(data_type: DataType, value) -> List[int]:
    """Validate ``value`` against ``data_type`` and flatten it."""
    flat: List[int] = []
    _flatten(data_type, value, flat)
    return flat


def _flatten(data_type, value, flat):
    if isinstance(data_type, UnitType):
        if value not in (None, [], {}):
            raise InvalidInput(f"expected `()`, found `{value!r}`")
    elif isinstance(data_type, PrimitiveType):
        flat.append(parse_scalar(value, data_type.scalar_type))
    elif isinstance(data_type, ArrayType):
        if not isinstance(value, list) or len(value) != data_type.length:
            raise InvalidInput(f"expected an array of {data_type.length} elements, found `{value!r}`")
        for item in value:
            _flatten(data_type.element, item, flat)
    elif isinstance(data_type, TupleType):
        if not isinstance(value, list) or len(value) != len(data_type.elements):
            raise InvalidInput(f"expected a tuple of {len(data_type.elements)} elements, found `{value!r}`")
        for element_type, item in zip(data_type.elements, value):
            _flatten(element_type, item, flat)
    elif isinstance(data_type, StructureType):
        if not isinstance(value, dict):
            raise InvalidInput(f"expected a structure, found `{value!r}`")
        expected = [name for name, _ in data_type.fields]
        extra = sorted(set(value) - set(expected))
        missing = [name for name in expected if name not in value]
        if extra:
            raise InvalidInput(f"unexpected fields: {', '.join(extra)}")
        if missing:
            raise InvalidInput(f"missing fields: {', '.join(missing)}")
        for name, field_type in data_type.fields:
            _flatten(field_type, value[name], flat)
    elif isinstance(data_type, MapType):
        raise InvalidInput("maps have no flat representation, use `map_from_json`")
    else:
        raise InvalidInput(f"unsupported data type `{data_type}`")


def to_json(data_type: DataType, flat: List[int]):
    """Inverse of ``from_json``; ``flat`` must have exactly the right size."""
    value, rest = _unflatten(data_type, list(flat))
    if rest:
        raise InvalidInput(f"{len(rest)} values left over after `{data_type}`")
    return value


def _scalar_to_json(scalar_type: ScalarType, value: int):
    if scalar_type.is_boolean:
        return bool(value)
    return str(value)


def _unflatten(data_type, flat):
    if isinstance(data_type, UnitType):
        return None, flat
    if isinstance(data_type, PrimitiveType):
        if not flat:
            raise InvalidInput("not enough values")
        return _scalar_to_json(data_type.scalar_type, flat[0]), flat[1:]
    if isinstance(data_type, ArrayType):
        items = []
        for _ in range(data_type.length):
            item, flat = _unflatten(data_type.element, flat)
            items.append(item)
        return items, flat
    if isinstance(data_type, TupleType):
        items = []
        for element_type in data_type.elements:
            item, flat = _unflatten(element_type, flat)
            items.append(item)
        return items, flat
    if isinstance(data_type, StructureType):
        fields = {}
        for name, field_type in data_type.fields:
            fields[name], flat = _unflatten(field_type, flat)
        return fields, flat
    raise InvalidInput(f"unsupported data type `{data_type}`")


def default_flat(data_type: DataType) -> List[int]:
    return [0] * data_type.size()


def map_from_json(map_type: MapType, value) -> List[List[int]]:
    """
    Flatten a map into ``capacity`` slots of ``[present, key..., value...]``.
    Slot positions are kept as given so roots survive a round trip.
    """
    if not isinstance(value, list) or len(value) > map_type.capacity:
        raise InvalidInput(f"expected a list of at most {map_type.capacity} map entries, found `{value!r}`")
    slots = []
    keys = set()
    for entry in value:
        if entry is None:
            slots.append(empty_slot(map_type))
            continue
        if not isinstance(entry, dict) or set(entry) != {"key", "value"}:
            raise InvalidInput(f"map entries must be objects with `key` and `value`, found `{entry!r}`")
        key = from_json(map_type.key, entry["key"])
        if tuple(key) in keys:
            raise InvalidInput(f"duplicate map key `{entry['key']!r}`")
        keys.add(tuple(key))
        slots.append([1] + key + from_json(map_type.value, entry["value"]))
    while len(slots) < map_type.capacity:
        slots.append(empty_slot(map_type))
    return slots


def map_to_json(map_type: MapType, slots: List[List[int]]):
    key_size = map_type.key.size()
    entries = []
    for slot in slots:
        if not slot[0]:
            entries.append(None)
            continue
        entries.append(
            {
                "key": to_json(map_type.key, slot[1:1 + key_size]),
                "value": to_json(map_type.value, slot[1 + key_size:]),
            }
        )
    while entries and entries[-1] is None:
        entries.pop()
    return entries


def empty_slot(map_type: MapType) -> List[int]:
    return [0] * len(map_type.slot_types())
