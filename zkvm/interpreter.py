"""
The virtual machine.

Executes bytecode against a constraint system: every instruction either
moves cells around or calls a gadget. Both sides of every branch run; the
condition stack holds the conjunction of the enclosing branch conditions,
which gates everything with an observable effect (overflow checks, division
by zero, ``Require``, storage writes).
"""
import json
import logging
from typing import Callable, List, Optional

from . import errors, library
from .constraint_system import LinearCombination
from .field import Fr
from .gadgets import arithmetic, bitwise, comparison, logical
from .gadgets.base import alloc_boolean, alloc_scalar
from .gadgets.bits import range_check
from .instructions import (
    ALL_INSTRUCTIONS,
    Add,
    And,
    BitwiseAnd,
    BitwiseNot,
    BitwiseOr,
    BitwiseShiftLeft,
    BitwiseShiftRight,
    BitwiseXor,
    Call,
    CallLibrary,
    Cast,
    ColumnMarker,
    Copy,
    Dbg,
    Div,
    Else,
    EndIf,
    Eq,
    FileMarker,
    FunctionMarker,
    Ge,
    Gt,
    If,
    Instruction,
    Le,
    LineMarker,
    Load,
    LoadByIndex,
    LoopBegin,
    LoopEnd,
    Lt,
    Mul,
    Ne,
    Neg,
    NoOperation,
    Not,
    Or,
    Pop,
    Push,
    Rem,
    Require,
    Return,
    StorageFetch,
    StorageInit,
    StorageLoad,
    StorageStore,
    Store,
    StoreByIndex,
    Sub,
    Xor,
)
from .scalar import Cell, Scalar
from .state import Branch, DataStack, EvaluationStack, Frame, Location, Loop
from .types import ADDRESS, ScalarType
from .values import to_json


logger = logging.getLogger(__name__)


def alloc_input(cs, value: Optional[int], scalar_type: ScalarType, annotation="input") -> Scalar:
    """Allocate a private program input, range checked for its type."""
    if scalar_type.is_boolean:
        return alloc_boolean(cs, value, annotation)
    scalar = alloc_scalar(cs, None if value is None else Fr(value), scalar_type, annotation)
    return range_check(cs, scalar, scalar_type)


class VirtualMachine:
    def __init__(self, cs, storages=None, instruction_callback: Optional[Callable] = None):
        self.cs = cs
        self.storages = storages
        self.instruction_callback = instruction_callback
        self.evaluation_stack = EvaluationStack()
        self.data_stack = DataStack()
        self.conditions: List[Scalar] = []
        self.frames: List[Frame] = []
        self.instructions: List[Instruction] = []
        self.instruction_counter = 0
        self.outputs: Optional[List[Scalar]] = None
        self.location = Location()
        self.is_mutable = True

        self.handlers = {
            NoOperation: lambda instruction: None,
            Push: self.execute_push,
            Pop: self.execute_pop,
            Copy: self.execute_copy,
            Load: self.execute_load,
            Store: self.execute_store,
            LoadByIndex: self.execute_load_by_index,
            StoreByIndex: self.execute_store_by_index,
            StorageInit: self.execute_storage_init,
            StorageFetch: self.execute_storage_fetch,
            StorageLoad: self.execute_storage_load,
            StorageStore: self.execute_storage_store,
            Add: self._checked_binary(arithmetic.add),
            Sub: self._checked_binary(arithmetic.sub),
            Mul: self._checked_binary(arithmetic.mul),
            Div: self.execute_div,
            Rem: self.execute_rem,
            Neg: self.execute_neg,
            Not: self._unary(logical.not_),
            And: self._binary(logical.and_),
            Or: self._binary(logical.or_),
            Xor: self._binary(logical.xor),
            Lt: self._binary(comparison.lesser_than),
            Le: self._binary(comparison.lesser_or_equals),
            Eq: self._binary(comparison.equals),
            Ne: self._binary(comparison.not_equals),
            Ge: self._binary(comparison.greater_or_equals),
            Gt: self._binary(comparison.greater_than),
            BitwiseShiftLeft: self._binary(bitwise.shift_left),
            BitwiseShiftRight: self._binary(bitwise.shift_right),
            BitwiseAnd: self._binary(bitwise.bitwise_and),
            BitwiseOr: self._binary(bitwise.bitwise_or),
            BitwiseXor: self._binary(bitwise.bitwise_xor),
            BitwiseNot: self._unary(bitwise.bitwise_not),
            Cast: self.execute_cast,
            If: self.execute_if,
            Else: self.execute_else,
            EndIf: self.execute_end_if,
            LoopBegin: self.execute_loop_begin,
            LoopEnd: self.execute_loop_end,
            Call: self.execute_call,
            Return: self.execute_return,
            Dbg: self.execute_dbg,
            Require: self.execute_require,
            CallLibrary: self.execute_call_library,
            FileMarker: self.execute_marker,
            FunctionMarker: self.execute_marker,
            LineMarker: self.execute_marker,
            ColumnMarker: self.execute_marker,
        }
        missing = [cls.__name__ for cls in ALL_INSTRUCTIONS if cls not in self.handlers]
        if missing:
            raise NotImplementedError(f"no handler for {', '.join(missing)}")

    # running programs

    def run_circuit(self, circuit, input_values: Optional[List[int]] = None) -> List[Scalar]:
        input_types = circuit.input.flat_scalar_types()
        return self._run(circuit.instructions, circuit.address, input_types, input_values, circuit.output.size())

    def run_contract(self, contract, method_name: str, input_values=None, address: Optional[int] = None):
        """
        Run one contract method. Every method except a constructor receives
        the contract address as an implicit first argument; the storage
        behind it is fetched before the method starts.
        """
        method = contract.methods.get(method_name)
        if method is None:
            raise errors.MethodNotFound(method_name)
        if self.storages is None:
            raise errors.OnlyForContracts("a storage backend")
        self.is_mutable = method.is_mutable
        prefix = []
        if not method.is_constructor:
            address_scalar = alloc_input(self.cs, address, ADDRESS, "contract address")
            self.storages.fetch(self.cs, address_scalar, contract.storage, contract.name)
            prefix.append(Cell(address_scalar))
        input_types = method.input.flat_scalar_types()
        return self._run(contract.instructions, method.address, input_types, input_values, method.output.size(), prefix)

    def _run(self, instructions, entry: int, input_types, input_values, output_size: int, prefix=()):
        self.instructions = list(instructions)
        one = LinearCombination.one()
        self.cs.enforce(one, one, one, "ONE * ONE = ONE")
        self.conditions = [Scalar.true()]

        if input_values is None:
            input_values = [None] * len(input_types)
        if len(input_values) != len(input_types):
            raise errors.InvalidInput(f"expected {len(input_types)} input values, got {len(input_values)}")
        for cell in prefix:
            self.evaluation_stack.push(cell)
        for value, scalar_type in zip(input_values, input_types):
            self.evaluation_stack.push(Cell(alloc_input(self.cs, value, scalar_type)))

        logger.info(f"Running from instruction {entry} with {len(input_types)} inputs")
        self._call(entry, len(prefix) + len(input_types), len(self.instructions))
        while self.outputs is None:
            if not 0 <= self.instruction_counter < len(self.instructions):
                raise errors.MalformedBytecode(f"instruction counter {self.instruction_counter} is out of the program")
            instruction = self.instructions[self.instruction_counter]
            self.instruction_counter += 1
            self.step(instruction)

        outputs = self.outputs
        if len(outputs) != output_size:
            raise errors.MalformedBytecode(f"expected {output_size} outputs, got {len(outputs)}")
        for output in outputs:
            index = self.cs.alloc_input(output.value, "output")
            self.cs.enforce(LinearCombination.variable(index), one, output.lc(), "output")
        if self.storages is not None:
            self.storages.expose_public_inputs(self.cs)
        logger.info(f"Finished with {getattr(self.cs, 'num_constraints', 0)} constraints")
        return outputs

    def step(self, instruction: Instruction):
        logger.debug(f"{self.instruction_counter - 1}: {instruction}")
        handler = self.handlers.get(type(instruction))
        try:
            if handler is None:
                raise errors.UnknownInstruction(type(instruction).__name__)
            handler(instruction)
        except errors.VMError as error:
            if error.location is None and self.location != Location():
                error.location = str(self.location)
            raise
        if self.instruction_callback is not None:
            self.instruction_callback(self, instruction)

    # helpers

    def condition(self) -> Scalar:
        return self.conditions[-1]

    def frame(self) -> Frame:
        if not self.frames:
            raise errors.StackUnderflow("call stack")
        return self.frames[-1]

    def push(self, scalar: Scalar):
        self.evaluation_stack.push(Cell(scalar))

    def pop(self) -> Scalar:
        return self.evaluation_stack.pop().value

    def pop_many(self, count: int) -> List[Scalar]:
        """Pop ``count`` scalars and return them in push order."""
        values = [self.pop() for _ in range(count)]
        values.reverse()
        return values

    def ensure_mutable(self, what: str):
        if not self.is_mutable:
            raise errors.MalformedBytecode(f"`{what}` in an immutable method")

    def _unary(self, gadget):
        def execute(instruction):
            self.push(gadget(self.cs, self.pop()))

        return execute

    def _binary(self, gadget):
        def execute(instruction):
            right = self.pop()
            left = self.pop()
            self.push(gadget(self.cs, left, right))

        return execute

    def _checked_binary(self, gadget):
        def execute(instruction):
            right = self.pop()
            left = self.pop()
            result = gadget(self.cs, left, right)
            self.push(arithmetic.conditional_type_check(self.cs, self.condition(), result, left.scalar_type))

        return execute

    # data movement

    def execute_push(self, instruction: Push):
        self.push(Scalar.new_constant(instruction.value, instruction.scalar_type))

    def execute_pop(self, instruction: Pop):
        for _ in range(instruction.count):
            self.pop()

    def execute_copy(self, instruction: Copy):
        self.evaluation_stack.push(Cell(self.evaluation_stack.peek().value))

    def execute_load(self, instruction: Load):
        start = self.frame().stack_frame_start
        for i in range(instruction.size):
            self.evaluation_stack.push(self.data_stack.get(start + instruction.address + i))

    def execute_store(self, instruction: Store):
        frame = self.frame()
        for i in reversed(range(instruction.size)):
            self.data_stack.set(frame.stack_frame_start + instruction.address + i, self.evaluation_stack.pop())
        frame.stack_frame_end = max(frame.stack_frame_end, frame.stack_frame_start + instruction.address + instruction.size)

    def _index_selectors(self, index: Scalar, count: int, size: int):
        """
        ``[(k, eq_k)]`` for every element ``k`` the index can hit. A
        constant index yields one entry; a variable one is proven to hit
        some element whenever the path is taken.
        """
        if not index.scalar_type.is_integer:
            raise errors.TypeMismatch(f"array index must be an integer, found `{index.scalar_type}`")
        value = index.to_bigint()
        if index.is_constant():
            if not 0 <= value < count:
                raise errors.IndexOutOfBounds(value, size)
            return [(value, Scalar.true())]
        if value is not None and not 0 <= value < count and self.condition().is_known_true():
            raise errors.IndexOutOfBounds(value, size)
        selectors = []
        hit = LinearCombination.zero()
        for k in range(count):
            if not index.scalar_type.contains(k):
                break
            is_k = comparison.equals(self.cs, index, Scalar.new_constant(k, index.scalar_type))
            selectors.append((k, is_k))
            hit = hit + is_k.lc()
        self.cs.enforce(
            self.condition().lc(), LinearCombination.one() - hit, LinearCombination.zero(), "index in bounds"
        )
        return selectors

    def execute_load_by_index(self, instruction: LoadByIndex):
        index = self.pop()
        value_size = instruction.value_size
        count = instruction.total_size // value_size
        start = self.frame().stack_frame_start + instruction.address
        selectors = self._index_selectors(index, count, count)
        result = [self.data_stack.get(start + selectors[0][0] * value_size + j).value for j in range(value_size)]
        for k, is_k in selectors[1:]:
            for j in range(value_size):
                element = self.data_stack.get(start + k * value_size + j).value
                result[j] = logical.select(self.cs, is_k, element, result[j])
        for scalar in result:
            self.push(scalar)

    def execute_store_by_index(self, instruction: StoreByIndex):
        values = self.pop_many(instruction.value_size)
        index = self.pop()
        value_size = instruction.value_size
        count = instruction.total_size // value_size
        frame = self.frame()
        start = frame.stack_frame_start + instruction.address
        for k, is_k in self._index_selectors(index, count, count):
            for j, value in enumerate(values):
                address = start + k * value_size + j
                current = self.data_stack.get(address).value
                self.data_stack.set(address, Cell(logical.select(self.cs, is_k, value, current)))
        frame.stack_frame_end = max(frame.stack_frame_end, start + instruction.total_size)

    # arithmetic

    def execute_div(self, instruction: Div):
        right = self.pop()
        left = self.pop()
        quotient, _ = arithmetic.div_rem_conditional(self.cs, self.condition(), left, right)
        self.push(quotient)

    def execute_rem(self, instruction: Rem):
        right = self.pop()
        left = self.pop()
        _, remainder = arithmetic.div_rem_conditional(self.cs, self.condition(), left, right)
        self.push(remainder)

    def execute_neg(self, instruction: Neg):
        result = arithmetic.neg(self.cs, self.pop())
        self.push(arithmetic.conditional_type_check(self.cs, self.condition(), result, result.scalar_type))

    def execute_cast(self, instruction: Cast):
        self.push(self.pop().cast(instruction.scalar_type))

    # control flow

    def execute_if(self, instruction: If):
        condition = self.pop().to_boolean(self.cs)
        self.conditions.append(logical.and_(self.cs, self.condition(), condition))
        self.frame().blocks.append(Branch(condition))
        self.evaluation_stack.fork()
        self.data_stack.fork()

    def execute_else(self, instruction: Else):
        blocks = self.frame().blocks
        if not blocks or not isinstance(blocks[-1], Branch) or blocks[-1].has_else:
            raise errors.UnexpectedElse()
        branch = blocks[-1]
        branch.has_else = True
        self.conditions.pop()
        self.conditions.append(logical.and_(self.cs, self.condition(), logical.not_(self.cs, branch.condition)))
        self.evaluation_stack.fork()
        self.data_stack.switch_branch()

    def execute_end_if(self, instruction: EndIf):
        blocks = self.frame().blocks
        if not blocks or not isinstance(blocks[-1], Branch):
            raise errors.UnexpectedEndIf()
        branch = blocks.pop()
        self.conditions.pop()
        if branch.has_else:
            self.evaluation_stack.merge(self.cs, branch.condition)
        else:
            self.evaluation_stack.revert()
        self.data_stack.merge(self.cs, branch.condition)

    def execute_loop_begin(self, instruction: LoopBegin):
        if instruction.iterations > 0:
            self.frame().blocks.append(Loop(self.instruction_counter, instruction.iterations))
            return
        depth = 1
        counter = self.instruction_counter
        while depth:
            if counter >= len(self.instructions):
                raise errors.MalformedBytecode("`LoopBegin` without a matching `LoopEnd`")
            if isinstance(self.instructions[counter], LoopBegin):
                depth += 1
            elif isinstance(self.instructions[counter], LoopEnd):
                depth -= 1
            counter += 1
        self.instruction_counter = counter

    def execute_loop_end(self, instruction: LoopEnd):
        blocks = self.frame().blocks
        if not blocks or not isinstance(blocks[-1], Loop):
            raise errors.UnexpectedLoopEnd()
        loop = blocks[-1]
        loop.iterations_left -= 1
        if loop.iterations_left > 0:
            self.instruction_counter = loop.first_instruction_index
        else:
            blocks.pop()

    def _call(self, address: int, input_size: int, return_address: int):
        offset = self.frames[-1].stack_frame_end if self.frames else 0
        self.frames.append(Frame(offset, offset + input_size, return_address))
        for i in reversed(range(input_size)):
            self.data_stack.set(offset + i, self.evaluation_stack.pop())
        self.instruction_counter = address

    def execute_call(self, instruction: Call):
        self._call(instruction.address, instruction.input_size, self.instruction_counter)

    def execute_return(self, instruction: Return):
        frame = self.frame()
        if frame.blocks:
            raise errors.UnexpectedReturn()
        self.frames.pop()
        self.data_stack.drop_from(frame.stack_frame_start)
        if not self.frames:
            self.outputs = self.pop_many(instruction.output_size)
            return
        self.instruction_counter = frame.return_address

    # side effects

    def execute_dbg(self, instruction: Dbg):
        sizes = [arg_type.size() for arg_type in instruction.arg_types]
        values = self.pop_many(sum(sizes))
        if not self.condition().is_known_true() or any(value.value is None for value in values):
            return
        text = instruction.format
        offset = 0
        for arg_type, size in zip(instruction.arg_types, sizes):
            flat = [value.to_bigint() for value in values[offset:offset + size]]
            offset += size
            text = text.replace("{}", json.dumps(to_json(arg_type, flat)), 1)
        logger.info(f"dbg: {text}")

    def execute_require(self, instruction: Require):
        value = self.pop().to_boolean(self.cs)
        condition = self.condition()
        if condition.is_known_true() and value.is_known_false():
            raise errors.RequireError(instruction.message)
        if value.is_constant() and value.value.value == 1:
            return
        if condition.is_constant() and condition.value.value == 0:
            return
        self.cs.enforce(
            condition.lc(),
            LinearCombination.one() - value.lc(),
            LinearCombination.zero(),
            instruction.message or "require",
        )

    def execute_call_library(self, instruction: CallLibrary):
        arguments = self.pop_many(instruction.input_size)
        for scalar in library.call(self, instruction.identifier, arguments, instruction.output_size):
            self.push(scalar)

    def execute_marker(self, instruction):
        if isinstance(instruction, FileMarker):
            self.location = Location(file=instruction.file)
        elif isinstance(instruction, FunctionMarker):
            self.location.function = instruction.function
        elif isinstance(instruction, LineMarker):
            self.location.line = instruction.line
        elif isinstance(instruction, ColumnMarker):
            self.location.column = instruction.column

    # contract storage

    def _storages(self, what: str):
        if self.storages is None:
            raise errors.OnlyForContracts(what)
        return self.storages

    def execute_storage_init(self, instruction: StorageInit):
        storages = self._storages("StorageInit")
        size = sum(f.data_type.size() for f in instruction.fields)
        values = self.pop_many(size)
        address = storages.init(self.cs, self.condition(), instruction.storage_name, list(instruction.fields), values)
        self.push(address)

    def execute_storage_fetch(self, instruction: StorageFetch):
        storages = self._storages("StorageFetch")
        storages.fetch(self.cs, self.pop(), list(instruction.fields))

    def _field_index(self) -> int:
        index = self.pop()
        if not index.is_constant():
            raise errors.MalformedBytecode("storage field index must be a constant")
        return index.value.value

    def execute_storage_load(self, instruction: StorageLoad):
        storages = self._storages("StorageLoad")
        index = self._field_index()
        gadget = storages.get(self.pop())
        values = gadget.load(self.cs, index)
        if len(values) != instruction.size:
            raise errors.MalformedBytecode(f"storage field {index} has {len(values)} values, loading {instruction.size}")
        for scalar in values:
            self.push(scalar)

    def execute_storage_store(self, instruction: StorageStore):
        storages = self._storages("StorageStore")
        self.ensure_mutable("StorageStore")
        values = self.pop_many(instruction.size)
        index = self._field_index()
        gadget = storages.get(self.pop())
        gadget.store(self.cs, self.condition(), index, values)
