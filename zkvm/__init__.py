"""Bytecode virtual machine that executes programs as R1CS circuits."""
from .facade import Facade, RunResult
from .instructions import Circuit, Contract, ContractMethod, program_from_bytes

__version__ = "0.1.0"
