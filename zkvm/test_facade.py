import contextlib
import io
import json
import os
import tempfile
import unittest
from unittest import mock

from zkvm import cli, errors, groth16
from zkvm.facade import Facade, RunResult
from zkvm.instructions import Circuit, Load, Mul, Return
from zkvm.types import U8, scalar, tuple_of

MULTIPLY = Circuit("multiply", 0, tuple_of(scalar(U8), scalar(U8)), scalar(U8), [Load(0), Load(1), Mul(), Return(1)])


class TestGroth16(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.facade = Facade(MULTIPLY)
        cls.proving_key, cls.verifying_key = cls.facade.setup()
        cls.proof, cls.public_data = cls.facade.prove(cls.proving_key, ["3", "5"])

    def test_valid_proof(self):
        self.assertEqual(self.public_data, {"output": "15"})
        self.assertTrue(self.facade.verify(self.verifying_key, self.proof, self.public_data))

    def test_wrong_output_is_rejected(self):
        self.assertFalse(self.facade.verify(self.verifying_key, self.proof, {"output": "16"}))

    def test_keys_and_proof_survive_serialization(self):
        verifying_key = groth16.VerifyingKey.from_json(json.loads(json.dumps(self.verifying_key.to_json())))
        proof = groth16.Proof.from_hex(self.proof.to_hex() + "\n")
        self.assertEqual(len(self.proof.to_bytes()), 256)
        self.assertTrue(self.facade.verify(verifying_key, proof, self.public_data))

    def test_proving_key_survives_serialization(self):
        proving_key = groth16.ProvingKey.from_json(json.loads(json.dumps(self.proving_key.to_json())))
        proof, public_data = self.facade.prove(proving_key, ["2", "7"])
        self.assertTrue(self.facade.verify(self.verifying_key, proof, public_data))

    def test_unsatisfied_witness_is_not_proved(self):
        with self.assertRaises(errors.ValueOverflow):
            self.facade.prove(self.proving_key, ["16", "16"])

    def test_malformed_proof(self):
        for text in ("zz", "00" * 10):
            with self.subTest(text=text):
                with self.assertRaises(errors.InvalidInput):
                    groth16.Proof.from_hex(text)

    def test_public_input_count(self):
        with self.assertRaises(errors.InvalidInput):
            groth16.verify(self.verifying_key, self.proof, [15, 1])


class TestFacade(unittest.TestCase):
    def test_run_result(self):
        result = Facade(MULTIPLY).run(["3", "5"])
        self.assertIsInstance(result, RunResult)
        self.assertEqual(result.public_inputs, [15])
        self.assertGreater(result.constraints, 0)

    def test_method_on_circuit(self):
        with self.assertRaises(errors.OnlyForContracts):
            Facade(MULTIPLY).run(["3", "5"], method="main")

    def test_malformed_public_data(self):
        with self.assertRaises(errors.InvalidInput):
            Facade(MULTIPLY).public_inputs({"outputs": "15"})

    def test_run_batch(self):
        results = Facade(MULTIPLY).run_batch([["3", "5"], ["16", "16"], ["0", "9"]])
        self.assertEqual(results[0].output, "15")
        self.assertIsInstance(results[1], errors.ValueOverflow)
        self.assertEqual(results[2].output, "0")


class TestCommandLine(unittest.TestCase):
    def setUp(self):
        self.directory = tempfile.TemporaryDirectory()
        self.addCleanup(self.directory.cleanup)
        self.binary = self.path("multiply.znb")
        with open(self.binary, "wb") as f:
            f.write(MULTIPLY.to_bytes())
        self.write("witness.json", ["3", "5"])

    def path(self, name):
        return os.path.join(self.directory.name, name)

    def write(self, name, data):
        with open(self.path(name), "w") as f:
            json.dump(data, f)

    def read(self, name):
        with open(self.path(name)) as f:
            return json.load(f)

    def main(self, *argv, stdin=""):
        stdout, stderr = io.StringIO(), io.StringIO()
        with mock.patch("sys.stdin", io.StringIO(stdin)), contextlib.redirect_stdout(stdout), contextlib.redirect_stderr(stderr):
            code = cli.main(list(argv) + ["--binary", self.binary, "--storage", self.path("storage")])
        return code, stdout.getvalue(), stderr.getvalue()

    def test_run(self):
        code, stdout, _ = self.main("run", "--witness", self.path("witness.json"), "--public-data", self.path("public.json"))
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(stdout), "15")
        self.assertEqual(self.read("public.json"), {"output": "15"})
        self.assertFalse(os.path.exists(self.path("storage")))

    def test_run_with_bad_witness(self):
        self.write("witness.json", ["300", "5"])
        code, _, stderr = self.main("run", "--witness", self.path("witness.json"), "--public-data", self.path("public.json"))
        self.assertEqual(code, 1)
        self.assertIn("error:", stderr)

    def test_missing_file(self):
        code, _, _ = self.main("run", "--witness", self.path("nothing.json"), "--public-data", self.path("public.json"))
        self.assertEqual(code, 1)

    def test_setup_prove_verify(self):
        keys = ["--proving-key", self.path("pk.json"), "--verifying-key", self.path("vk.json")]
        self.assertEqual(self.main("setup", *keys)[0], 0)
        code, proof, _ = self.main(
            "prove", "--proving-key", self.path("pk.json"),
            "--witness", self.path("witness.json"), "--public-data", self.path("public.json"),
        )
        self.assertEqual(code, 0)
        verify = ["verify", "--verifying-key", self.path("vk.json"), "--public-data", self.path("public.json")]
        code, stdout, _ = self.main(*verify, stdin=proof)
        self.assertEqual((code, stdout.strip()), (0, "OK"))

        self.write("public.json", {"output": "14"})
        code, _, stderr = self.main(*verify, stdin=proof)
        self.assertEqual(code, 1)
        self.assertIn("failed to verify", stderr.lower())

    def test_no_command(self):
        with contextlib.redirect_stdout(io.StringIO()):
            self.assertEqual(cli.main([]), 1)


if __name__ == "__main__":
    unittest.main()
