"""
Bytecode: the closed set of instructions, the two program kinds and their
binary form.

The binary form is RLP. Every operand is a tagged list so it decodes
without a schema:

    [b"n"]                         None
    [b"b", 0|1]                    bool
    [b"i", sign, magnitude]        int
    [b"s", utf-8]                  str
    [b"t", kind, signed, bits]     ScalarType
    [b"d", data type]              DataType
    [b"f", name, type, public]     ContractField
    [b"l", [operand, ...]]         tuple

and an instruction is ``[name, [operand, ...]]``.
"""
from dataclasses import dataclass, field, fields
from typing import Dict, List, Optional, Tuple

import rlp

from .errors import MalformedBytecode, UnknownInstruction
from .types import (
    ArrayType,
    ContractField,
    DataType,
    MapType,
    PrimitiveType,
    ScalarType,
    StructureType,
    TupleType,
    UnitType,
)


class Instruction:
    @property
    def name(self):
        return type(self).__name__


@dataclass(frozen=True)
class NoOperation(Instruction):
    pass


@dataclass(frozen=True)
class Push(Instruction):
    value: int
    scalar_type: ScalarType


@dataclass(frozen=True)
class Pop(Instruction):
    count: int = 1


@dataclass(frozen=True)
class Copy(Instruction):
    """Duplicate the top of the evaluation stack."""


@dataclass(frozen=True)
class Load(Instruction):
    address: int
    size: int = 1


@dataclass(frozen=True)
class Store(Instruction):
    address: int
    size: int = 1


@dataclass(frozen=True)
class LoadByIndex(Instruction):
    address: int
    value_size: int
    total_size: int


@dataclass(frozen=True)
class StoreByIndex(Instruction):
    address: int
    value_size: int
    total_size: int


@dataclass(frozen=True)
class StorageInit(Instruction):
    storage_name: str
    fields: Tuple[ContractField, ...]


@dataclass(frozen=True)
class StorageFetch(Instruction):
    fields: Tuple[ContractField, ...]


@dataclass(frozen=True)
class StorageLoad(Instruction):
    size: int


@dataclass(frozen=True)
class StorageStore(Instruction):
    size: int


@dataclass(frozen=True)
class Add(Instruction):
    pass


@dataclass(frozen=True)
class Sub(Instruction):
    pass


@dataclass(frozen=True)
class Mul(Instruction):
    pass


@dataclass(frozen=True)
class Div(Instruction):
    pass


@dataclass(frozen=True)
class Rem(Instruction):
    pass


@dataclass(frozen=True)
class Neg(Instruction):
    pass


@dataclass(frozen=True)
class Not(Instruction):
    pass


@dataclass(frozen=True)
class And(Instruction):
    pass


@dataclass(frozen=True)
class Or(Instruction):
    pass


@dataclass(frozen=True)
class Xor(Instruction):
    pass


@dataclass(frozen=True)
class Lt(Instruction):
    pass


@dataclass(frozen=True)
class Le(Instruction):
    pass


@dataclass(frozen=True)
class Eq(Instruction):
    pass


@dataclass(frozen=True)
class Ne(Instruction):
    pass


@dataclass(frozen=True)
class Ge(Instruction):
    pass


@dataclass(frozen=True)
class Gt(Instruction):
    pass


@dataclass(frozen=True)
class BitwiseShiftLeft(Instruction):
    pass


@dataclass(frozen=True)
class BitwiseShiftRight(Instruction):
    pass


@dataclass(frozen=True)
class BitwiseAnd(Instruction):
    pass


@dataclass(frozen=True)
class BitwiseOr(Instruction):
    pass


@dataclass(frozen=True)
class BitwiseXor(Instruction):
    pass


@dataclass(frozen=True)
class BitwiseNot(Instruction):
    pass


@dataclass(frozen=True)
class Cast(Instruction):
    scalar_type: ScalarType


@dataclass(frozen=True)
class If(Instruction):
    pass


@dataclass(frozen=True)
class Else(Instruction):
    pass


@dataclass(frozen=True)
class EndIf(Instruction):
    pass


@dataclass(frozen=True)
class LoopBegin(Instruction):
    iterations: int


@dataclass(frozen=True)
class LoopEnd(Instruction):
    pass


@dataclass(frozen=True)
class Call(Instruction):
    address: int
    input_size: int


@dataclass(frozen=True)
class Return(Instruction):
    output_size: int


@dataclass(frozen=True)
class Dbg(Instruction):
    format: str
    arg_types: Tuple[DataType, ...] = ()


@dataclass(frozen=True)
class Require(Instruction):
    message: Optional[str] = None


@dataclass(frozen=True)
class CallLibrary(Instruction):
    identifier: str
    input_size: int
    output_size: int


@dataclass(frozen=True)
class FileMarker(Instruction):
    file: str


@dataclass(frozen=True)
class FunctionMarker(Instruction):
    function: str


@dataclass(frozen=True)
class LineMarker(Instruction):
    line: int


@dataclass(frozen=True)
class ColumnMarker(Instruction):
    column: int


ALL_INSTRUCTIONS = [
    NoOperation, Push, Pop, Copy, Load, Store, LoadByIndex, StoreByIndex,
    StorageInit, StorageFetch, StorageLoad, StorageStore,
    Add, Sub, Mul, Div, Rem, Neg, Not, And, Or, Xor, Lt, Le, Eq, Ne, Ge, Gt,
    BitwiseShiftLeft, BitwiseShiftRight, BitwiseAnd, BitwiseOr, BitwiseXor, BitwiseNot,
    Cast, If, Else, EndIf, LoopBegin, LoopEnd, Call, Return,
    Dbg, Require, CallLibrary, FileMarker, FunctionMarker, LineMarker, ColumnMarker,
]

INSTRUCTIONS_BY_NAME = {cls.__name__: cls for cls in ALL_INSTRUCTIONS}


@dataclass
class Circuit:
    name: str
    address: int
    input: DataType
    output: DataType
    instructions: List[Instruction]

    def to_bytes(self) -> bytes:
        return rlp.encode(
            [
                b"circuit",
                self.name.encode(),
                _int_to_bytes(self.address),
                encode_data_type(self.input),
                encode_data_type(self.output),
                [encode_instruction(instruction) for instruction in self.instructions],
            ]
        )


@dataclass
class ContractMethod:
    name: str
    address: int
    input: DataType
    output: DataType
    is_mutable: bool = False
    is_constructor: bool = False


@dataclass
class Contract:
    name: str
    storage: List[ContractField]
    methods: Dict[str, ContractMethod]
    instructions: List[Instruction] = field(default_factory=list)

    def to_bytes(self) -> bytes:
        return rlp.encode(
            [
                b"contract",
                self.name.encode(),
                [encode_operand(contract_field) for contract_field in self.storage],
                [
                    [
                        method.name.encode(),
                        _int_to_bytes(method.address),
                        encode_data_type(method.input),
                        encode_data_type(method.output),
                        _int_to_bytes(int(method.is_mutable)),
                        _int_to_bytes(int(method.is_constructor)),
                    ]
                    for method in self.methods.values()
                ],
                [encode_instruction(instruction) for instruction in self.instructions],
            ]
        )


def program_from_bytes(data: bytes):
    try:
        decoded = rlp.decode(data)
    except rlp.DecodingError as error:
        raise MalformedBytecode(f"cannot decode the program: {error}")
    try:
        return _decode_program(decoded)
    except (IndexError, TypeError, ValueError) as error:
        raise MalformedBytecode(f"malformed program structure: {error}")


def _decode_program(decoded):
    kind = decoded[0]
    if kind == b"circuit":
        _, name, address, input_type, output_type, instructions = decoded
        return Circuit(
            name.decode(),
            _bytes_to_int(address),
            decode_data_type(input_type),
            decode_data_type(output_type),
            [decode_instruction(item) for item in instructions],
        )
    if kind == b"contract":
        _, name, storage, methods, instructions = decoded
        decoded_methods = {}
        for method_name, address, input_type, output_type, is_mutable, is_constructor in methods:
            method = ContractMethod(
                method_name.decode(),
                _bytes_to_int(address),
                decode_data_type(input_type),
                decode_data_type(output_type),
                bool(_bytes_to_int(is_mutable)),
                bool(_bytes_to_int(is_constructor)),
            )
            decoded_methods[method.name] = method
        return Contract(
            name.decode(),
            [decode_operand(item) for item in storage],
            decoded_methods,
            [decode_instruction(item) for item in instructions],
        )
    raise MalformedBytecode(f"unknown program kind {kind!r}")


def encode_instruction(instruction: Instruction):
    operands = [encode_operand(getattr(instruction, f.name)) for f in fields(instruction)]
    return [instruction.name.encode(), operands]


def decode_instruction(item) -> Instruction:
    name, operands = item
    cls = INSTRUCTIONS_BY_NAME.get(name.decode())
    if cls is None:
        raise UnknownInstruction(name.decode(errors="replace"))
    return cls(*(decode_operand(operand) for operand in operands))


def _int_to_bytes(value: int) -> bytes:
    return value.to_bytes((value.bit_length() + 7) // 8, "big")


def _bytes_to_int(data: bytes) -> int:
    return int.from_bytes(data, "big")


def encode_scalar_type(scalar_type: ScalarType):
    return [
        scalar_type.kind.encode(),
        _int_to_bytes(int(scalar_type.is_signed)),
        _int_to_bytes(scalar_type.bitlength),
    ]


def decode_scalar_type(item) -> ScalarType:
    kind, is_signed, bitlength = item
    return ScalarType(kind.decode(), bool(_bytes_to_int(is_signed)), _bytes_to_int(bitlength))


def encode_data_type(data_type: DataType):
    if isinstance(data_type, UnitType):
        return [b"unit"]
    if isinstance(data_type, PrimitiveType):
        return [b"scalar", encode_scalar_type(data_type.scalar_type)]
    if isinstance(data_type, ArrayType):
        return [b"array", encode_data_type(data_type.element), _int_to_bytes(data_type.length)]
    if isinstance(data_type, TupleType):
        return [b"tuple", [encode_data_type(element) for element in data_type.elements]]
    if isinstance(data_type, StructureType):
        return [b"struct", [[name.encode(), encode_data_type(field_type)] for name, field_type in data_type.fields]]
    if isinstance(data_type, MapType):
        return [
            b"map",
            encode_data_type(data_type.key),
            encode_data_type(data_type.value),
            _int_to_bytes(data_type.capacity),
        ]
    raise MalformedBytecode(f"cannot encode data type {data_type!r}")


def decode_data_type(item) -> DataType:
    kind = item[0]
    if kind == b"unit":
        return UnitType()
    if kind == b"scalar":
        return PrimitiveType(decode_scalar_type(item[1]))
    if kind == b"array":
        return ArrayType(decode_data_type(item[1]), _bytes_to_int(item[2]))
    if kind == b"tuple":
        return TupleType(tuple(decode_data_type(element) for element in item[1]))
    if kind == b"struct":
        return StructureType(tuple((name.decode(), decode_data_type(field_type)) for name, field_type in item[1]))
    if kind == b"map":
        return MapType(decode_data_type(item[1]), decode_data_type(item[2]), _bytes_to_int(item[3]))
    raise MalformedBytecode(f"unknown data type tag {kind!r}")


def encode_operand(value):
    if value is None:
        return [b"n"]
    if isinstance(value, bool):
        return [b"b", _int_to_bytes(int(value))]
    if isinstance(value, int):
        return [b"i", _int_to_bytes(int(value < 0)), _int_to_bytes(abs(value))]
    if isinstance(value, str):
        return [b"s", value.encode()]
    if isinstance(value, ScalarType):
        return [b"t"] + encode_scalar_type(value)
    if isinstance(value, DataType):
        return [b"d", encode_data_type(value)]
    if isinstance(value, ContractField):
        return [b"f", value.name.encode(), encode_data_type(value.data_type), _int_to_bytes(int(value.is_public))]
    if isinstance(value, (tuple, list)):
        return [b"l", [encode_operand(item) for item in value]]
    raise MalformedBytecode(f"cannot encode operand {value!r}")


def decode_operand(item):
    tag = item[0]
    if tag == b"n":
        return None
    if tag == b"b":
        return bool(_bytes_to_int(item[1]))
    if tag == b"i":
        magnitude = _bytes_to_int(item[2])
        return -magnitude if _bytes_to_int(item[1]) else magnitude
    if tag == b"s":
        return item[1].decode()
    if tag == b"t":
        return decode_scalar_type(item[1:])
    if tag == b"d":
        return decode_data_type(item[1])
    if tag == b"f":
        return ContractField(item[1].decode(), decode_data_type(item[2]), bool(_bytes_to_int(item[3])))
    if tag == b"l":
        return tuple(decode_operand(element) for element in item[1])
    raise MalformedBytecode(f"unknown operand tag {tag!r}")
