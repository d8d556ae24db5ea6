"""
Scalar and data types of the virtual machine.

A ``ScalarType`` describes what one field element stands for. A data type
(``UnitType``, ``PrimitiveType``, ``ArrayType``, ``TupleType``,
``StructureType``, ``MapType``) describes the shape of program inputs,
outputs and storage fields; every data type except ``MapType`` flattens into
an ordered list of scalar types.
"""
import re
from dataclasses import dataclass
from typing import List, Tuple

from .config import ADDRESS_BITLENGTH, FIELD_BITLENGTH, MAP_DEFAULT_CAPACITY, MAX_INTEGER_BITLENGTH
from .field import Fr_modulus


BOOLEAN_KIND = "bool"
INTEGER_KIND = "int"
FIELD_KIND = "field"

_INTEGER_RE = re.compile(r"^([ui])(\d+)$")


@dataclass(frozen=True)
class ScalarType:
    kind: str
    is_signed: bool = False
    bitlength: int = 1

    @classmethod
    def boolean(cls):
        return cls(BOOLEAN_KIND, False, 1)

    @classmethod
    def integer(cls, is_signed: bool, bitlength: int):
        if not 1 <= bitlength <= MAX_INTEGER_BITLENGTH:
            raise ValueError(f"integer bitlength must be in 1..={MAX_INTEGER_BITLENGTH}, got {bitlength}")
        return cls(INTEGER_KIND, is_signed, bitlength)

    @classmethod
    def field(cls):
        return cls(FIELD_KIND, False, FIELD_BITLENGTH)

    @classmethod
    def parse(cls, text: str) -> "ScalarType":
        if text == BOOLEAN_KIND:
            return cls.boolean()
        if text == FIELD_KIND:
            return cls.field()
        match = _INTEGER_RE.match(text)
        if match is None:
            raise ValueError(f"unknown scalar type `{text}`")
        return cls.integer(match.group(1) == "i", int(match.group(2)))

    @property
    def is_boolean(self):
        return self.kind == BOOLEAN_KIND

    @property
    def is_integer(self):
        return self.kind == INTEGER_KIND

    @property
    def is_field(self):
        return self.kind == FIELD_KIND

    def min(self) -> int:
        if self.is_integer and self.is_signed:
            return -(1 << (self.bitlength - 1))
        return 0

    def max(self) -> int:
        if self.is_field:
            return Fr_modulus - 1
        if self.is_signed:
            return (1 << (self.bitlength - 1)) - 1
        return (1 << self.bitlength) - 1

    def contains(self, value: int) -> bool:
        return self.min() <= value <= self.max()

    def __str__(self):
        if self.is_boolean:
            return BOOLEAN_KIND
        if self.is_field:
            return FIELD_KIND
        return f"{'i' if self.is_signed else 'u'}{self.bitlength}"


BOOLEAN = ScalarType.boolean()
FIELD = ScalarType.field()
U8 = ScalarType.integer(False, 8)
U16 = ScalarType.integer(False, 16)
U32 = ScalarType.integer(False, 32)
U64 = ScalarType.integer(False, 64)
U248 = ScalarType.integer(False, 248)
I8 = ScalarType.integer(True, 8)
I16 = ScalarType.integer(True, 16)
I32 = ScalarType.integer(True, 32)
I64 = ScalarType.integer(True, 64)
ADDRESS = ScalarType.integer(False, ADDRESS_BITLENGTH)


class DataType:
    def size(self) -> int:
        return len(self.flat_scalar_types())

    def flat_scalar_types(self) -> List[ScalarType]:
        raise NotImplementedError


@dataclass(frozen=True)
class UnitType(DataType):
    def flat_scalar_types(self):
        return []

    def __str__(self):
        return "()"


@dataclass(frozen=True)
class PrimitiveType(DataType):
    scalar_type: ScalarType

    def flat_scalar_types(self):
        return [self.scalar_type]

    def __str__(self):
        return str(self.scalar_type)


@dataclass(frozen=True)
class ArrayType(DataType):
    element: DataType
    length: int

    def flat_scalar_types(self):
        return self.element.flat_scalar_types() * self.length

    def __str__(self):
        return f"[{self.element}; {self.length}]"


@dataclass(frozen=True)
class TupleType(DataType):
    elements: Tuple[DataType, ...]

    def flat_scalar_types(self):
        types = []
        for element in self.elements:
            types.extend(element.flat_scalar_types())
        return types

    def __str__(self):
        return "(" + ", ".join(str(element) for element in self.elements) + ")"


@dataclass(frozen=True)
class StructureType(DataType):
    fields: Tuple[Tuple[str, DataType], ...]

    def flat_scalar_types(self):
        types = []
        for _, field_type in self.fields:
            types.extend(field_type.flat_scalar_types())
        return types

    def __str__(self):
        return "{ " + ", ".join(f"{name}: {field_type}" for name, field_type in self.fields) + " }"


@dataclass(frozen=True)
class MapType(DataType):
    """
    A bounded key-value table. Maps only live in contract storage and take
    no room on the evaluation stack; their leaf is ``capacity`` slots of
    ``(present, key, value)``.
    """

    key: DataType
    value: DataType
    capacity: int = MAP_DEFAULT_CAPACITY

    def flat_scalar_types(self):
        return []

    def slot_types(self):
        return [BOOLEAN] + self.key.flat_scalar_types() + self.value.flat_scalar_types()

    def __str__(self):
        return f"MTreeMap<{self.key}, {self.value}; {self.capacity}>"


def scalar(scalar_type: ScalarType) -> PrimitiveType:
    return PrimitiveType(scalar_type)


def structure(*fields) -> StructureType:
    return StructureType(tuple(fields))


def tuple_of(*elements) -> TupleType:
    return TupleType(tuple(elements))


@dataclass(frozen=True)
class ContractField:
    name: str
    data_type: DataType
    is_public: bool = False
