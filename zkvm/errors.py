"""
Error classes raised by the virtual machine and its gadgets.

Every error carries a human readable message. The interpreter attaches the
last seen source location before re-raising, so callers get
``file:function:line:column`` context for free.
"""


class VMError(Exception):
    """Base class of all virtual machine errors."""

    def __init__(self, message: str):
        self.message = message
        self.location = None
        super().__init__(message)

    def __str__(self):
        if self.location:
            return f"{self.message} (at {self.location})"
        return self.message


class MalformedBytecode(VMError):
    """The bytecode itself is broken; always a bug upstream of the VM."""


class StackUnderflow(MalformedBytecode):
    def __init__(self, what: str = "evaluation stack"):
        super().__init__(f"Stack underflow: {what}")


class UnexpectedElse(MalformedBytecode):
    def __init__(self):
        super().__init__("Unexpected `Else` instruction")


class UnexpectedEndIf(MalformedBytecode):
    def __init__(self):
        super().__init__("Unexpected `EndIf` instruction")


class UnexpectedLoopEnd(MalformedBytecode):
    def __init__(self):
        super().__init__("Unexpected `LoopEnd` instruction")


class UnexpectedReturn(MalformedBytecode):
    def __init__(self):
        super().__init__("Unexpected `Return` instruction inside an open block")


class BranchStacksDoNotMatch(MalformedBytecode):
    def __init__(self, then_size: int, else_size: int):
        self.then_size = then_size
        self.else_size = else_size
        super().__init__(
            f"Branch stacks do not match: then-branch has {then_size} values, "
            f"else-branch has {else_size}"
        )


class UninitializedStorageAccess(MalformedBytecode):
    def __init__(self, address: int):
        self.address = address
        super().__init__(f"Access to uninitialized data stack address {address}")


class UnknownInstruction(MalformedBytecode):
    def __init__(self, name: str):
        super().__init__(f"Unknown instruction `{name}`")


class UnknownLibraryFunction(MalformedBytecode):
    def __init__(self, identifier: str):
        super().__init__(f"Unknown library function `{identifier}`")


class TypeMismatch(VMError):
    """An operand has a type the operation does not accept."""

    def __init__(self, message: str):
        super().__init__(f"Type error: {message}")


class CastingError(VMError):
    def __init__(self, from_type, to_type):
        self.from_type = from_type
        self.to_type = to_type
        super().__init__(f"Cannot cast `{from_type}` to `{to_type}`")


class ValueOverflow(VMError):
    def __init__(self, value: int, scalar_type):
        self.value = value
        self.scalar_type = scalar_type
        super().__init__(f"Value {value} overflows type `{scalar_type}`")


class DivisionByZero(VMError):
    def __init__(self):
        super().__init__("Division by zero")


class IndexOutOfBounds(VMError):
    def __init__(self, index: int, size: int):
        self.index = index
        self.size = size
        super().__init__(f"Index {index} is out of bounds for an array of {size} elements")


class RequireError(VMError):
    def __init__(self, message=None):
        self.require_message = message
        super().__init__(f"Requirement failed: {message}" if message else "Requirement failed")


class UnsatisfiedConstraint(VMError):
    def __init__(self, annotation: str):
        self.annotation = annotation
        super().__init__(f"Constraint is not satisfied: {annotation}")


class ContractNotFound(VMError):
    def __init__(self, address: int):
        self.address = address
        super().__init__(f"Contract {address:#042x} not found")


class ContractAlreadyExists(VMError):
    def __init__(self, address: int):
        self.address = address
        super().__init__(f"Contract {address:#042x} already exists")


class ContractAlreadyFetched(VMError):
    def __init__(self, address: int):
        self.address = address
        super().__init__(f"Contract {address:#042x} is already fetched")


class MethodNotFound(VMError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Method `{name}` not found")


class OnlyForContracts(VMError):
    def __init__(self, what: str):
        super().__init__(f"`{what}` is only available to contracts")


class MapCapacityExceeded(VMError):
    def __init__(self, capacity: int):
        self.capacity = capacity
        super().__init__(f"Map storage is full ({capacity} entries)")


class InvalidInput(VMError):
    """A JSON value does not match the declared data type."""


class VerificationFailed(VMError):
    def __init__(self):
        super().__init__("Failed to verify")
