"""
Runtime memory of the virtual machine.

Conditional code is executed on both sides. The evaluation stack opens a
fresh frame per branch and merges the then/else frames with selects; the
data stack records every write inside a branch as a delta, rolls the
then-writes back before the else-branch runs, and merges both sides on
``EndIf``.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from . import errors
from .gadgets.logical import select
from .scalar import Cell, Scalar


class EvaluationStack:
    def __init__(self):
        self.frames: List[List[Cell]] = [[]]

    def push(self, cell: Cell):
        self.frames[-1].append(cell)

    def pop(self) -> Cell:
        frame = self.frames[-1]
        if not frame:
            raise errors.StackUnderflow()
        return frame.pop()

    def peek(self) -> Cell:
        frame = self.frames[-1]
        if not frame:
            raise errors.StackUnderflow()
        return frame[-1]

    def fork(self):
        self.frames.append([])

    def merge(self, cs, condition: Scalar):
        """Replace the then- and else-frames by their element-wise select."""
        if len(self.frames) < 3:
            raise errors.StackUnderflow("evaluation stack frames")
        else_frame = self.frames.pop()
        then_frame = self.frames.pop()
        if len(then_frame) != len(else_frame):
            raise errors.BranchStacksDoNotMatch(len(then_frame), len(else_frame))
        for then_cell, else_cell in zip(then_frame, else_frame):
            self.push(Cell(select(cs, condition, then_cell.value, else_cell.value)))

    def revert(self):
        """Close a branch without an else-part; it must not leave values behind."""
        if len(self.frames) < 2:
            raise errors.StackUnderflow("evaluation stack frames")
        frame = self.frames.pop()
        if frame:
            raise errors.BranchStacksDoNotMatch(len(frame), 0)

    def __len__(self):
        return sum(len(frame) for frame in self.frames)


@dataclass
class CellDelta:
    old: Optional[Cell]
    new: Cell


@dataclass
class DataStackBranch:
    then_deltas: Dict[int, CellDelta] = field(default_factory=dict)
    else_deltas: Optional[Dict[int, CellDelta]] = None

    def active(self) -> Dict[int, CellDelta]:
        return self.then_deltas if self.else_deltas is None else self.else_deltas


class DataStack:
    def __init__(self):
        self.memory: List[Optional[Cell]] = []
        self.branches: List[DataStackBranch] = []

    def get(self, address: int) -> Cell:
        if address >= len(self.memory) or self.memory[address] is None:
            raise errors.UninitializedStorageAccess(address)
        return self.memory[address]

    def set(self, address: int, cell: Cell):
        if address >= len(self.memory):
            self.memory.extend([None] * (address + 1 - len(self.memory)))
        if self.branches:
            deltas = self.branches[-1].active()
            if address in deltas:
                deltas[address].new = cell
            else:
                deltas[address] = CellDelta(self.memory[address], cell)
        self.memory[address] = cell

    def fork(self):
        self.branches.append(DataStackBranch())

    def switch_branch(self):
        """Undo the then-branch writes before the else-branch runs."""
        if not self.branches:
            raise errors.UnexpectedElse()
        branch = self.branches[-1]
        if branch.else_deltas is not None:
            raise errors.UnexpectedElse()
        self._revert(branch.then_deltas)
        branch.else_deltas = {}

    def merge(self, cs, condition: Scalar):
        if not self.branches:
            raise errors.UnexpectedEndIf()
        branch = self.branches.pop()
        if branch.else_deltas is None:
            self._revert(branch.then_deltas)
            for address, delta in branch.then_deltas.items():
                self._merge_single(cs, condition, address, delta.new, delta.old)
        else:
            self._revert(branch.else_deltas)
            for address in sorted(set(branch.then_deltas) | set(branch.else_deltas)):
                then_delta = branch.then_deltas.get(address)
                else_delta = branch.else_deltas.get(address)
                old = (then_delta or else_delta).old
                then_cell = then_delta.new if then_delta else old
                else_cell = else_delta.new if else_delta else old
                self._merge_single(cs, condition, address, then_cell, else_cell)

    def _merge_single(self, cs, condition, address, then_cell, else_cell):
        if then_cell is None or else_cell is None:
            # written on one side only: the slot stays uninitialized
            return
        then_value, else_value = then_cell.value, else_cell.value
        if then_value.scalar_type != else_value.scalar_type:
            raise errors.TypeMismatch(
                f"data stack slot {address} holds `{then_value.scalar_type}` and `{else_value.scalar_type}` in different branches"
            )
        self.set(address, Cell(select(cs, condition, then_value, else_value)))

    def _revert(self, deltas: Dict[int, CellDelta]):
        for address, delta in deltas.items():
            if address < len(self.memory):
                self.memory[address] = delta.old

    def drop_from(self, address: int):
        """Free a function frame, forgetting branch deltas above ``address``."""
        del self.memory[address:]
        for branch in self.branches:
            for deltas in (branch.then_deltas, branch.else_deltas):
                if deltas:
                    for dropped in [a for a in deltas if a >= address]:
                        del deltas[dropped]


@dataclass
class Branch:
    condition: Scalar
    has_else: bool = False


@dataclass
class Loop:
    first_instruction_index: int
    iterations_left: int


@dataclass
class Frame:
    stack_frame_start: int
    stack_frame_end: int
    return_address: int = 0
    blocks: List[object] = field(default_factory=list)


@dataclass
class Location:
    file: Optional[str] = None
    function: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None

    def __str__(self):
        parts = [self.file or "<unknown>"]
        if self.function:
            parts.append(self.function)
        if self.line is not None:
            parts.append(str(self.line))
            if self.column is not None:
                parts.append(str(self.column))
        return ":".join(parts)
