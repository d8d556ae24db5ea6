import unittest

from zkvm import errors
from zkvm.constraint_system import R1CS
from zkvm.gadgets import arithmetic, bitwise, comparison
from zkvm.gadgets.base import alloc_boolean, alloc_scalar
from zkvm.gadgets.bits import from_bits_signed, from_bits_unsigned, range_check, to_bits
from zkvm.gadgets.logical import select
from zkvm.scalar import Scalar
from zkvm.types import FIELD, I8, U8, U248


def const(value, scalar_type):
    return Scalar.new_constant(value, scalar_type)


def variable(cs, value, scalar_type):
    return range_check(cs, alloc_scalar(cs, value, scalar_type), scalar_type)


def checked_add(cs, left, right, condition=None):
    result = arithmetic.add(cs, left, right)
    return arithmetic.conditional_type_check(cs, condition or Scalar.true(), result, left.scalar_type)


def checked_sub(cs, left, right):
    result = arithmetic.sub(cs, left, right)
    return arithmetic.conditional_type_check(cs, Scalar.true(), result, left.scalar_type)


class TestConstantFolding(unittest.TestCase):
    def test_constant_sum_costs_nothing(self):
        cs = R1CS()
        for left, right in ((0, 0), (100, 50), (200, 55)):
            result = checked_add(cs, const(left, U8), const(right, U8))
            self.assertTrue(result.is_constant())
            self.assertEqual(result.to_bigint(), left + right)
        self.assertEqual(cs.num_constraints, 0)
        self.assertEqual(cs.num_variables, 1)

    def test_constant_comparison_costs_nothing(self):
        cs = R1CS()
        result = comparison.lesser_than(cs, const(3, U8), const(200, U8))
        self.assertTrue(result.is_constant())
        self.assertTrue(result.is_known_true())
        self.assertEqual(cs.num_constraints, 0)


class TestOverflow(unittest.TestCase):
    def test_unsigned_boundaries(self):
        cs = R1CS()
        self.assertEqual(checked_add(cs, const(254, U8), const(1, U8)).to_bigint(), 255)
        with self.assertRaises(errors.ValueOverflow):
            checked_add(cs, const(255, U8), const(1, U8))
        self.assertEqual(checked_sub(cs, const(1, U8), const(1, U8)).to_bigint(), 0)
        with self.assertRaises(errors.ValueOverflow):
            checked_sub(cs, const(0, U8), const(1, U8))

    def test_signed_boundaries(self):
        cs = R1CS()
        self.assertEqual(checked_add(cs, const(126, I8), const(1, I8)).to_bigint(), 127)
        with self.assertRaises(errors.ValueOverflow):
            checked_add(cs, const(127, I8), const(1, I8))
        self.assertEqual(checked_sub(cs, const(-127, I8), const(1, I8)).to_bigint(), -128)
        with self.assertRaises(errors.ValueOverflow):
            checked_sub(cs, const(-128, I8), const(1, I8))

    def test_variable_overflow(self):
        cs = R1CS()
        result = checked_add(cs, variable(cs, 254, U8), variable(cs, 1, U8))
        self.assertEqual(result.to_bigint(), 255)
        self.assertTrue(cs.is_satisfied())
        with self.assertRaises(errors.ValueOverflow):
            checked_add(cs, variable(cs, 255, U8), variable(cs, 1, U8))

    def test_overflow_on_untaken_path_is_satisfiable(self):
        cs = R1CS()
        condition = alloc_boolean(cs, 0)
        checked_add(cs, variable(cs, 255, U8), variable(cs, 1, U8), condition)
        self.assertTrue(cs.is_satisfied())

    def test_overflow_without_witness_builds_constraints(self):
        cs = R1CS()
        condition = alloc_boolean(cs, None)
        before = cs.num_constraints
        checked_add(cs, variable(cs, None, U8), variable(cs, None, U8), condition)
        self.assertGreater(cs.num_constraints, before)

    def test_neg_widens_unsigned(self):
        cs = R1CS()
        result = arithmetic.neg(cs, const(255, U8))
        self.assertTrue(result.scalar_type.is_signed)
        self.assertEqual(result.scalar_type.bitlength, 9)
        self.assertEqual(result.to_bigint(), -255)

    def test_neg_of_widest_unsigned_is_a_type_error(self):
        for value in (const(5, U248), variable(R1CS(), 5, U248)):
            with self.assertRaises(errors.TypeMismatch):
                arithmetic.neg(R1CS(), value)

    def test_bool_arithmetic_is_a_type_error(self):
        with self.assertRaises(errors.TypeMismatch):
            arithmetic.add(R1CS(), Scalar.true(), Scalar.false())

    def test_mixed_types_are_a_type_error(self):
        with self.assertRaises(errors.TypeMismatch):
            arithmetic.add(R1CS(), const(1, U8), const(1, I8))


class TestDivision(unittest.TestCase):
    VECTORS = [
        (9, 4, 2, 1),
        (9, -4, -2, 1),
        (-9, 4, -3, 3),
        (-9, -4, 3, 3),
        (8, 4, 2, 0),
        (-128, 1, -128, 0),
    ]

    def test_constant_vectors(self):
        for left, right, quotient, remainder in self.VECTORS:
            with self.subTest(left=left, right=right):
                cs = R1CS()
                q, r = arithmetic.div_rem_conditional(cs, Scalar.true(), const(left, I8), const(right, I8))
                self.assertEqual((q.to_bigint(), r.to_bigint()), (quotient, remainder))
                self.assertEqual(cs.num_constraints, 0)

    def test_variable_vectors(self):
        for left, right, quotient, remainder in self.VECTORS:
            with self.subTest(left=left, right=right):
                cs = R1CS()
                q, r = arithmetic.div_rem_conditional(cs, Scalar.true(), variable(cs, left, I8), variable(cs, right, I8))
                self.assertEqual((q.to_bigint(), r.to_bigint()), (quotient, remainder))
                self.assertEqual(q.to_bigint() * right + r.to_bigint(), left)
                self.assertTrue(0 <= r.to_bigint() < abs(right))
                self.assertTrue(cs.is_satisfied())

    def test_unsigned(self):
        cs = R1CS()
        q, r = arithmetic.div_rem_conditional(cs, Scalar.true(), variable(cs, 200, U8), variable(cs, 7, U8))
        self.assertEqual((q.to_bigint(), r.to_bigint()), (28, 4))
        self.assertTrue(cs.is_satisfied())

    def test_division_by_zero(self):
        with self.assertRaises(errors.DivisionByZero):
            arithmetic.div_rem_conditional(R1CS(), Scalar.true(), const(1, U8), const(0, U8))

    def test_division_by_zero_on_untaken_path(self):
        cs = R1CS()
        condition = alloc_boolean(cs, 0)
        arithmetic.div_rem_conditional(cs, condition, variable(cs, 5, U8), variable(cs, 0, U8))
        self.assertTrue(cs.is_satisfied())

    def test_quotient_overflow(self):
        with self.assertRaises(errors.ValueOverflow):
            arithmetic.div_rem_conditional(R1CS(), Scalar.true(), const(-128, I8), const(-1, I8))

    def test_field_division_is_rejected(self):
        with self.assertRaises(errors.TypeMismatch):
            arithmetic.div_rem_conditional(R1CS(), Scalar.true(), const(1, FIELD), const(1, FIELD))

    def test_field_inverse(self):
        cs = R1CS()
        inverse = arithmetic.invert(cs, alloc_scalar(cs, 4, FIELD))
        self.assertEqual(inverse.value * 4, 1)
        self.assertTrue(cs.is_satisfied())


class TestComparison(unittest.TestCase):
    def check(self, gadget, left, right, scalar_type, expected):
        cs = R1CS()
        result = gadget(cs, variable(cs, left, scalar_type), variable(cs, right, scalar_type))
        self.assertEqual(bool(result.value.value), expected)
        self.assertTrue(cs.is_satisfied())

    def test_unsigned(self):
        self.check(comparison.lesser_than, 3, 5, U8, True)
        self.check(comparison.lesser_than, 5, 5, U8, False)
        self.check(comparison.lesser_or_equals, 5, 5, U8, True)
        self.check(comparison.greater_than, 255, 0, U8, True)
        self.check(comparison.greater_or_equals, 0, 255, U8, False)

    def test_signed(self):
        self.check(comparison.lesser_than, -3, 2, I8, True)
        self.check(comparison.lesser_than, -128, 127, I8, True)
        self.check(comparison.greater_than, -1, -2, I8, True)

    def test_equality(self):
        self.check(comparison.equals, 7, 7, U8, True)
        self.check(comparison.equals, 7, 8, U8, False)
        self.check(comparison.not_equals, 7, 8, U8, True)

    def test_field(self):
        self.check(comparison.lesser_than, 5, 7, FIELD, True)
        self.check(comparison.lesser_than, 7, 5, FIELD, False)

    def test_lying_about_equality_is_unsatisfiable(self):
        cs = R1CS()
        result = comparison.equals(cs, variable(cs, 7, U8), variable(cs, 8, U8))
        cs.values[result.variable] = cs.values[0]
        self.assertFalse(cs.is_satisfied())


class TestSelect(unittest.TestCase):
    def test_variable_condition(self):
        for flag, expected in ((1, 10), (0, 20)):
            cs = R1CS()
            result = select(cs, alloc_boolean(cs, flag), const(10, U8), const(20, U8))
            self.assertEqual(result.to_bigint(), expected)
            self.assertTrue(cs.is_satisfied())

    def test_constant_condition_is_free(self):
        cs = R1CS()
        self.assertEqual(select(cs, Scalar.false(), const(10, U8), const(20, U8)).to_bigint(), 20)
        self.assertEqual(cs.num_constraints, 0)


class TestBits(unittest.TestCase):
    def test_unsigned_little_endian(self):
        cs = R1CS()
        bits = to_bits(cs, variable(cs, 13, U8))
        self.assertEqual([bit.value.value for bit in bits], [1, 0, 1, 1, 0, 0, 0, 0])
        self.assertEqual(from_bits_unsigned(cs, bits).to_bigint(), 13)
        self.assertTrue(cs.is_satisfied())

    def test_signed_twos_complement(self):
        cs = R1CS()
        bits = to_bits(cs, variable(cs, -2, I8))
        self.assertEqual([bit.value.value for bit in bits], [0, 1, 1, 1, 1, 1, 1, 1])
        self.assertEqual(from_bits_signed(cs, bits).to_bigint(), -2)
        self.assertTrue(cs.is_satisfied())

    def test_field_bits(self):
        cs = R1CS()
        bits = to_bits(cs, alloc_scalar(cs, 6, FIELD))
        self.assertEqual(len(bits), 254)
        self.assertEqual([bit.value.value for bit in bits[:4]], [0, 1, 1, 0])
        self.assertTrue(cs.is_satisfied())


class TestBitwise(unittest.TestCase):
    def test_logic(self):
        cs = R1CS()
        left, right = variable(cs, 0b1100, U8), variable(cs, 0b1010, U8)
        self.assertEqual(bitwise.bitwise_and(cs, left, right).to_bigint(), 0b1000)
        self.assertEqual(bitwise.bitwise_or(cs, left, right).to_bigint(), 0b1110)
        self.assertEqual(bitwise.bitwise_xor(cs, left, right).to_bigint(), 0b0110)
        self.assertEqual(bitwise.bitwise_not(cs, left).to_bigint(), 0b11110011)
        self.assertTrue(cs.is_satisfied())

    def test_shifts(self):
        cs = R1CS()
        value = variable(cs, 0b11, U8)
        self.assertEqual(bitwise.shift_left(cs, value, variable(cs, 7, U8)).to_bigint(), 0b10000000)
        self.assertEqual(bitwise.shift_right(cs, variable(cs, 0b10110000, U8), const(4, U8)).to_bigint(), 0b1011)
        self.assertEqual(bitwise.shift_left(cs, value, variable(cs, 9, U8)).to_bigint(), 0)
        self.assertTrue(cs.is_satisfied())

    def test_signed_operands_are_rejected(self):
        with self.assertRaises(errors.TypeMismatch):
            bitwise.bitwise_and(R1CS(), const(1, I8), const(1, I8))


if __name__ == "__main__":
    unittest.main()
