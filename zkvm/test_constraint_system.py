import unittest

from zkvm import errors
from zkvm.constraint_system import ConstantSystem, LinearCombination, R1CS
from zkvm.field import Fr, Fr_modulus, fft, powers, root_of_unity
from zkvm.gadgets.base import alloc_boolean, alloc_scalar
from zkvm.scalar import Scalar
from zkvm.types import BOOLEAN, FIELD, I8, I16, U8, U16, ScalarType


class TestField(unittest.TestCase):
    def test_negative_values_wrap(self):
        self.assertEqual(Fr(-1).value, Fr_modulus - 1)
        self.assertEqual(Fr(-1).to_signed(), -1)
        self.assertEqual(Fr(3) - Fr(5), Fr(-2))

    def test_inverse(self):
        x = Fr(1234567)
        self.assertEqual(x * x.invert(), Fr(1))
        self.assertEqual(Fr(10) / Fr(5), Fr(2))

    def test_root_of_unity_order(self):
        root = root_of_unity(8)
        self.assertEqual(pow(root, 8, Fr_modulus), 1)
        self.assertNotEqual(pow(root, 4, Fr_modulus), 1)
        with self.assertRaises(ValueError):
            root_of_unity(6)

    def test_fft_inverts(self):
        root = root_of_unity(4)
        values = [3, 1, 4, 1]
        evaluations = fft(values, root)
        self.assertEqual([int(v) % Fr_modulus for v in fft(evaluations, root, inv=True)], values)
        # evaluating the polynomial at 1 sums its coefficients
        self.assertEqual(int(evaluations[0]) % Fr_modulus, 9)

    def test_powers(self):
        self.assertEqual([int(p) for p in powers(3, 4)], [1, 3, 9, 27])


class TestLinearCombination(unittest.TestCase):
    def test_terms_cancel(self):
        lc = LinearCombination.variable(1, 3) - LinearCombination.variable(1, 3)
        self.assertEqual(lc.terms, {})

    def test_evaluate(self):
        values = [Fr(1), Fr(5), Fr(7)]
        lc = LinearCombination.variable(1, 2) + LinearCombination.variable(2) + LinearCombination.constant(-1)
        self.assertEqual(lc.evaluate(values), Fr(16))
        self.assertIsNone(LinearCombination.variable(1).evaluate([Fr(1), None]))

    def test_format(self):
        lc = LinearCombination.variable(2) - LinearCombination.one()
        self.assertEqual(lc.format(), "-ONE + w[2]")


class TestR1CS(unittest.TestCase):
    def test_satisfied_product(self):
        cs = R1CS()
        a = cs.alloc(Fr(3), "a")
        b = cs.alloc(Fr(4), "b")
        c = cs.alloc_input(Fr(12), "c")
        cs.enforce(LinearCombination.variable(a), LinearCombination.variable(b), LinearCombination.variable(c), "a*b=c")
        self.assertTrue(cs.is_satisfied())
        self.assertEqual(cs.public_inputs(), [Fr(12)])
        self.assertEqual(cs.num_variables, 4)

    def test_unsatisfied_names_constraint(self):
        cs = R1CS()
        a = cs.alloc(Fr(3), "a")
        cs.enforce(LinearCombination.variable(a), LinearCombination.one(), LinearCombination.constant(4), "a is four")
        self.assertEqual(cs.which_is_unsatisfied(), "#0 a is four")
        with self.assertRaises(errors.UnsatisfiedConstraint) as context:
            cs.check()
        self.assertIn("a is four", str(context.exception))

    def test_unknown_value_is_unsatisfied(self):
        cs = R1CS()
        a = cs.alloc(None)
        cs.enforce(LinearCombination.variable(a), LinearCombination.one(), LinearCombination.zero())
        self.assertFalse(cs.is_satisfied())

    def test_constant_system_fails_eagerly(self):
        cs = ConstantSystem()
        with self.assertRaises(errors.UnsatisfiedConstraint):
            cs.enforce(LinearCombination.one(), LinearCombination.one(), LinearCombination.zero(), "one is zero")


class TestScalar(unittest.TestCase):
    def test_constant_out_of_range(self):
        with self.assertRaises(errors.ValueOverflow):
            Scalar.new_constant(256, U8)
        with self.assertRaises(errors.ValueOverflow):
            Scalar.new_constant(-129, I8)
        self.assertEqual(Scalar.new_constant(-128, I8).to_bigint(), -128)

    def test_allowed_casts(self):
        value = Scalar.new_constant(200, U8)
        self.assertEqual(value.cast(U16).scalar_type, U16)
        self.assertEqual(value.cast(I16).scalar_type, I16)
        self.assertEqual(value.cast(FIELD).scalar_type, FIELD)
        self.assertEqual(Scalar.new_constant(-5, I8).cast(I16).to_bigint(), -5)

    def test_forbidden_casts(self):
        for from_type, to_type in ((U16, U8), (U8, I8), (I8, U16), (FIELD, U8), (BOOLEAN, U8)):
            with self.subTest(from_type=str(from_type), to_type=str(to_type)):
                with self.assertRaises(errors.CastingError) as context:
                    Scalar.new_constant(0, from_type).cast(to_type)
                self.assertIn(str(from_type), str(context.exception))
                self.assertIn(str(to_type), str(context.exception))

    def test_boolean_check_is_added_once(self):
        cs = R1CS()
        scalar = alloc_scalar(cs, 1, BOOLEAN)
        scalar.to_boolean(cs)
        scalar.to_boolean(cs)
        self.assertEqual(cs.num_constraints, 1)

    def test_to_boolean_rejects_integers(self):
        cs = R1CS()
        with self.assertRaises(errors.TypeMismatch):
            alloc_scalar(cs, 1, U8).to_boolean(cs)

    def test_non_boolean_witness_is_unsatisfiable(self):
        cs = R1CS()
        alloc_boolean(cs, 2)
        self.assertFalse(cs.is_satisfied())

    def test_parse_types(self):
        self.assertEqual(ScalarType.parse("u8"), U8)
        self.assertEqual(ScalarType.parse("i16"), I16)
        self.assertEqual(ScalarType.parse("field"), FIELD)
        with self.assertRaises(ValueError):
            ScalarType.parse("u249")


if __name__ == "__main__":
    unittest.main()
