import hashlib
import unittest

from zkvm import errors
from zkvm.facade import Facade
from zkvm.field import Fr_modulus
from zkvm.gadgets import schnorr
from zkvm.gadgets.mimc import mimc_hash_native
from zkvm.instructions import CallLibrary, Circuit, Load, Push, Return
from zkvm.types import BOOLEAN, FIELD, I8, U8, ArrayType, UnitType, scalar, tuple_of

BOOL = scalar(BOOLEAN)


def call(identifier, input_type, output_type, witness):
    size, output_size = input_type.size(), output_type.size()
    program = Circuit(
        "library", 0, input_type, output_type,
        [Load(0, size), CallLibrary(identifier, size, output_size), Return(output_size)],
    )
    return Facade(program).run(witness).output


class TestCrypto(unittest.TestCase):
    def test_sha256(self):
        bits = [bool((0x61 >> (7 - i)) & 1) for i in range(8)]
        digest = call("std::crypto::sha256", ArrayType(BOOL, 8), ArrayType(BOOL, 256), bits)
        expected = hashlib.sha256(b"a").digest()
        self.assertEqual(digest, [bool((byte >> (7 - i)) & 1) for byte in expected for i in range(8)])

    def test_sha256_needs_whole_bytes(self):
        with self.assertRaises(errors.MalformedBytecode):
            call("std::crypto::sha256", ArrayType(BOOL, 3), ArrayType(BOOL, 256), [True, False, True])

    def test_mimc(self):
        result = call("std::crypto::mimc", tuple_of(scalar(FIELD), scalar(FIELD)), scalar(FIELD), ["3", "4"])
        self.assertEqual(result, str(mimc_hash_native([3, 4])))

    def test_schnorr_verify(self):
        message = b"hello"
        private_key, _ = schnorr.generate_key()
        signature = schnorr.sign(private_key, message)
        bits = [bool(bit) for bit in schnorr.message_to_bits(message)]
        input_type = tuple_of(*[scalar(FIELD)] * 5, ArrayType(BOOL, len(bits)))
        witness = [
            str(signature.r[0]), str(signature.r[1]), str(signature.s),
            str(signature.public_key[0]), str(signature.public_key[1]),
            bits,
        ]
        self.assertIs(call("std::crypto::schnorr::verify", input_type, BOOL, witness), True)
        witness[2] = str(signature.s + 1)
        self.assertIs(call("std::crypto::schnorr::verify", input_type, BOOL, witness), False)

    def test_type_mismatch(self):
        with self.assertRaises(errors.TypeMismatch):
            call("std::crypto::mimc", scalar(U8), scalar(FIELD), "1")


class TestConvert(unittest.TestCase):
    def test_to_bits_is_big_endian(self):
        bits = call("std::convert::to_bits", scalar(U8), ArrayType(BOOL, 8), "5")
        self.assertEqual(bits, [False] * 5 + [True, False, True])

    def test_from_bits(self):
        bits = [False] * 5 + [True, False, True]
        self.assertEqual(call("std::convert::from_bits_unsigned", ArrayType(BOOL, 8), scalar(U8), bits), "5")
        self.assertEqual(call("std::convert::from_bits_signed", ArrayType(BOOL, 8), scalar(I8), [True] * 8), "-1")

    def test_array_reverse(self):
        array = ArrayType(scalar(U8), 3)
        self.assertEqual(call("std::array::reverse", array, array, ["1", "2", "3"]), ["3", "2", "1"])

    def test_ff_invert(self):
        result = call("std::ff::invert", scalar(FIELD), scalar(FIELD), "4")
        self.assertEqual(int(result) * 4 % Fr_modulus, 1)


class TestDispatch(unittest.TestCase):
    def test_unknown_function(self):
        with self.assertRaises(errors.UnknownLibraryFunction):
            call("std::crypto::md5", scalar(U8), scalar(U8), "1")

    def test_wrong_output_count(self):
        with self.assertRaises(errors.MalformedBytecode):
            call("std::array::reverse", ArrayType(scalar(U8), 2), scalar(U8), ["1", "2"])

    def test_map_outside_contract(self):
        program = Circuit(
            "library", 0, UnitType(), tuple_of(scalar(U8), BOOL),
            [Push(0, U8), Push(0, U8), Push(1, FIELD), CallLibrary("std::collections::mtreemap::get", 3, 2), Return(2)],
        )
        with self.assertRaises(errors.OnlyForContracts):
            Facade(program).run(None)


if __name__ == "__main__":
    unittest.main()
