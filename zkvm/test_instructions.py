import unittest

import rlp

from zkvm import errors
from zkvm.instructions import (
    Add,
    CallLibrary,
    Cast,
    Circuit,
    Contract,
    ContractMethod,
    Dbg,
    LoadByIndex,
    LoopBegin,
    NoOperation,
    Push,
    Require,
    Return,
    StorageInit,
    StorageStore,
    decode_instruction,
    encode_instruction,
    program_from_bytes,
)
from zkvm.types import (
    BOOLEAN,
    FIELD,
    I16,
    U8,
    U64,
    ArrayType,
    ContractField,
    MapType,
    UnitType,
    scalar,
    structure,
    tuple_of,
)


class TestInstructionCodec(unittest.TestCase):
    def test_operands_survive(self):
        instructions = [
            NoOperation(),
            Push(-300, I16),
            Push(1, BOOLEAN),
            Cast(FIELD),
            LoadByIndex(2, 3, 12),
            LoopBegin(0),
            Require(None),
            Require("balance too low"),
            Dbg("{} and {}", (scalar(U8), ArrayType(scalar(BOOLEAN), 2))),
            CallLibrary("std::crypto::sha256", 16, 256),
            StorageInit("Token", (ContractField("owner", scalar(FIELD), True),)),
        ]
        for instruction in instructions:
            with self.subTest(instruction=instruction.name):
                self.assertEqual(decode_instruction(rlp.decode(rlp.encode(encode_instruction(instruction)))), instruction)

    def test_storage_init_opcode(self):
        instruction = StorageInit("Token", (ContractField("owner", scalar(FIELD), True),))
        encoded = encode_instruction(instruction)
        self.assertEqual(encoded[0], b"StorageInit")
        self.assertEqual(decode_instruction(rlp.decode(rlp.encode(encoded))).storage_name, "Token")

    def test_unknown_instruction(self):
        with self.assertRaises(errors.UnknownInstruction):
            decode_instruction([b"Teleport", []])


class TestProgramCodec(unittest.TestCase):
    def test_circuit(self):
        program = Circuit(
            "main",
            0,
            tuple_of(scalar(U8), structure(("flag", scalar(BOOLEAN)))),
            scalar(U8),
            [Push(1, U8), Add(), Return(1)],
        )
        self.assertEqual(program_from_bytes(program.to_bytes()), program)

    def test_contract(self):
        balances = MapType(scalar(FIELD), scalar(U64), 4)
        program = Contract(
            "Token",
            [ContractField("supply", scalar(U64), True), ContractField("balances", balances)],
            {
                "new": ContractMethod("new", 0, scalar(U64), UnitType(), is_mutable=True, is_constructor=True),
                "supply": ContractMethod("supply", 3, UnitType(), scalar(U64)),
                "mint": ContractMethod("mint", 5, scalar(U64), UnitType(), is_mutable=True),
            },
            [Push(0, U8), StorageStore(1), Return(0)],
        )
        decoded = program_from_bytes(program.to_bytes())
        self.assertEqual(decoded, program)
        self.assertTrue(decoded.methods["new"].is_constructor)
        self.assertEqual(decoded.storage[1].data_type.capacity, 4)

    def test_garbage(self):
        for data in (b"", b"\xff\x00\x01", rlp.encode([b"spaceship"]), rlp.encode([b"circuit", b"x"])):
            with self.subTest(data=data):
                with self.assertRaises(errors.MalformedBytecode):
                    program_from_bytes(data)


if __name__ == "__main__":
    unittest.main()
