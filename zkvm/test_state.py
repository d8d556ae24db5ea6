import unittest

from zkvm import errors
from zkvm.constraint_system import R1CS
from zkvm.gadgets.base import alloc_boolean, alloc_scalar
from zkvm.scalar import Cell, Scalar
from zkvm.state import DataStack, EvaluationStack, Location
from zkvm.types import I8, U8


def cell(value, scalar_type=U8):
    return Cell(Scalar.new_constant(value, scalar_type))


def values_of(cells):
    return [c.value.to_bigint() for c in cells]


class TestEvaluationStack(unittest.TestCase):
    def test_pop_empty(self):
        with self.assertRaises(errors.StackUnderflow):
            EvaluationStack().pop()

    def test_merge_selects_per_position(self):
        for flag, expected in ((1, [1, 2]), (0, [3, 4])):
            for constant in (True, False):
                with self.subTest(flag=flag, constant=constant):
                    cs = R1CS()
                    condition = (Scalar.true() if flag else Scalar.false()) if constant else alloc_boolean(cs, flag)
                    stack = EvaluationStack()
                    stack.fork()
                    stack.push(cell(1))
                    stack.push(cell(2))
                    stack.fork()
                    stack.push(cell(3))
                    stack.push(cell(4))
                    stack.merge(cs, condition)
                    self.assertEqual(values_of(stack.frames[-1]), expected)
                    self.assertEqual(len(stack.frames), 1)
                    self.assertTrue(cs.is_satisfied())

    def test_merge_with_variables(self):
        cs = R1CS()
        condition = alloc_boolean(cs, 0)
        stack = EvaluationStack()
        stack.fork()
        stack.push(Cell(alloc_scalar(cs, -5, I8)))
        stack.fork()
        stack.push(Cell(alloc_scalar(cs, 7, I8)))
        stack.merge(cs, condition)
        self.assertEqual(stack.pop().value.to_bigint(), 7)
        self.assertTrue(cs.is_satisfied())

    def test_merge_length_mismatch(self):
        stack = EvaluationStack()
        stack.fork()
        stack.push(cell(1))
        stack.fork()
        with self.assertRaises(errors.BranchStacksDoNotMatch):
            stack.merge(R1CS(), Scalar.true())

    def test_revert_requires_empty_frame(self):
        stack = EvaluationStack()
        stack.fork()
        stack.revert()
        stack.fork()
        stack.push(cell(1))
        with self.assertRaises(errors.BranchStacksDoNotMatch):
            stack.revert()


class TestDataStack(unittest.TestCase):
    def test_uninitialized_read(self):
        with self.assertRaises(errors.UninitializedStorageAccess):
            DataStack().get(3)

    def test_then_only_branch(self):
        for flag, expected in ((1, 9), (0, 5)):
            cs = R1CS()
            stack = DataStack()
            stack.set(0, cell(5))
            stack.fork()
            stack.set(0, cell(9))
            stack.merge(cs, alloc_boolean(cs, flag))
            self.assertEqual(stack.get(0).value.to_bigint(), expected)
            self.assertTrue(cs.is_satisfied())

    def test_else_branch_sees_original_values(self):
        cs = R1CS()
        stack = DataStack()
        stack.set(0, cell(5))
        stack.set(1, cell(6))
        stack.fork()
        stack.set(0, cell(9))
        stack.switch_branch()
        self.assertEqual(stack.get(0).value.to_bigint(), 5)
        stack.set(1, cell(7))
        stack.merge(cs, alloc_boolean(cs, 0))
        self.assertEqual(values_of([stack.get(0), stack.get(1)]), [5, 7])

    def test_slot_first_written_in_one_branch_stays_uninitialized(self):
        for flag in (1, 0):
            with self.subTest(flag=flag):
                cs = R1CS()
                stack = DataStack()
                stack.fork()
                stack.set(1, cell(7))
                stack.merge(cs, alloc_boolean(cs, flag))
                with self.assertRaises(errors.UninitializedStorageAccess):
                    stack.get(1)

                stack.fork()
                stack.switch_branch()
                stack.set(1, cell(7))
                stack.merge(cs, alloc_boolean(cs, flag))
                with self.assertRaises(errors.UninitializedStorageAccess):
                    stack.get(1)

    def test_slot_first_written_in_both_branches(self):
        for flag, expected in ((1, 7), (0, 8)):
            cs = R1CS()
            stack = DataStack()
            stack.fork()
            stack.set(1, cell(7))
            stack.switch_branch()
            stack.set(1, cell(8))
            stack.merge(cs, alloc_boolean(cs, flag))
            self.assertEqual(stack.get(1).value.to_bigint(), expected)
            self.assertTrue(cs.is_satisfied())

    def test_nested_branches(self):
        cs = R1CS()
        stack = DataStack()
        stack.set(0, cell(1))
        stack.fork()
        stack.fork()
        stack.set(0, cell(2))
        stack.merge(cs, alloc_boolean(cs, 1))
        stack.merge(cs, alloc_boolean(cs, 0))
        self.assertEqual(stack.get(0).value.to_bigint(), 1)
        self.assertTrue(cs.is_satisfied())

    def test_type_change_across_branches(self):
        cs = R1CS()
        stack = DataStack()
        stack.set(0, cell(1))
        stack.fork()
        stack.set(0, cell(1, I8))
        with self.assertRaises(errors.TypeMismatch):
            stack.merge(cs, alloc_boolean(cs, 1))

    def test_double_else(self):
        stack = DataStack()
        stack.fork()
        stack.switch_branch()
        with self.assertRaises(errors.UnexpectedElse):
            stack.switch_branch()


class TestLocation(unittest.TestCase):
    def test_format(self):
        self.assertEqual(str(Location("main.zn", "main", 3, 7)), "main.zn:main:3:7")
        self.assertEqual(str(Location(line=2)), "<unknown>:2")


if __name__ == "__main__":
    unittest.main()
