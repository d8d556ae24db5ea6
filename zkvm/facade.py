"""
Program lifecycle: run, setup, prove and verify.

``Facade`` wraps one decoded program (a ``Circuit`` or a ``Contract``) with
the storage backend and Merkle hasher contract methods need. Every
operation builds a fresh constraint system and virtual machine, so a facade
can be shared between threads; ``run_batch`` does exactly that.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from . import errors, groth16
from .constraint_system import R1CS
from .field import Fr_modulus
from .gadgets.merkle import AddressBook, StorageManager, get_hasher, public_storage_inputs
from .instructions import Contract
from .interpreter import VirtualMachine
from .storage import InMemoryBackend
from .values import from_json, to_json

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    output: object
    public_data: Dict
    constraints: int
    public_inputs: List[int] = field(default_factory=list)


class Facade:
    def __init__(self, program, backend=None, hasher=None):
        self.program = program
        self.backend = backend
        self.hasher = hasher or get_hasher()
        self._commit_lock = threading.Lock()
        self._address_book = AddressBook()

    @property
    def is_contract(self) -> bool:
        return isinstance(self.program, Contract)

    def _signature(self, method: Optional[str]):
        if not self.is_contract:
            if method is not None:
                raise errors.OnlyForContracts("--method")
            return self.program.input, self.program.output
        if method is None:
            raise errors.MethodNotFound("<none>")
        if method not in self.program.methods:
            raise errors.MethodNotFound(method)
        contract_method = self.program.methods[method]
        return contract_method.input, contract_method.output

    def _execute(self, witness, method, address, backend, instruction_callback=None):
        input_type, output_type = self._signature(method)
        input_values = None if witness is None else from_json(input_type, witness)
        if witness is not None and self.is_contract and address is None:
            if not self.program.methods[method].is_constructor:
                raise errors.InvalidInput(f"method `{method}` needs a contract address")
        cs = R1CS()
        storages = StorageManager(backend, self.hasher, self._address_book) if self.is_contract else None
        vm = VirtualMachine(cs, storages, instruction_callback)
        try:
            if self.is_contract:
                outputs = vm.run_contract(self.program, method, input_values, address)
            else:
                outputs = vm.run_circuit(self.program, input_values)
        except Exception:
            self._release(storages)
            raise
        return cs, outputs, output_type, storages

    def _release(self, storages):
        if storages is not None:
            self._address_book.release(storages.claimed)

    def _public_data(self, outputs, output_type, storages) -> Dict:
        data = {"output": to_json(output_type, [scalar.to_bigint() for scalar in outputs])}
        if storages is not None:
            data["storages"] = storages.public_data()
        return data

    def run(self, witness, method: Optional[str] = None, address: Optional[int] = None, instruction_callback=None):
        """
        Execute with a witness, check the constraint system and persist
        storage changes. Raises ``UnsatisfiedConstraint`` naming the first
        failing constraint when the witness does not satisfy the circuit.
        """
        cs, outputs, output_type, storages = self._execute(witness, method, address, self.backend, instruction_callback)
        try:
            cs.check()
            if storages is not None:
                with self._commit_lock:
                    storages.commit()
        finally:
            self._release(storages)
        logger.info(f"Run finished: {cs.num_constraints} constraints, {cs.num_variables} variables")
        public_data = self._public_data(outputs, output_type, storages)
        return RunResult(
            output=public_data["output"],
            public_data=public_data,
            constraints=cs.num_constraints,
            public_inputs=[value.value for value in cs.public_inputs()],
        )

    def setup(self, method: Optional[str] = None):
        """Key pair for the program (or one contract method); no witness needed."""
        cs, _, _, _ = self._execute(None, method, None, InMemoryBackend())
        logger.info(f"Generating keys for {cs.num_constraints} constraints")
        return groth16.setup(cs)

    def prove(self, proving_key, witness, method: Optional[str] = None, address: Optional[int] = None):
        """Run with the witness and prove it; returns the proof and the public data."""
        cs, outputs, output_type, storages = self._execute(witness, method, address, self.backend)
        try:
            cs.check()
            proof = groth16.prove(proving_key, cs)
        finally:
            self._release(storages)
        return proof, self._public_data(outputs, output_type, storages)

    def public_inputs(self, public_data: Dict, method: Optional[str] = None) -> List[int]:
        _, output_type = self._signature(method)
        if "output" not in public_data:
            raise errors.InvalidInput("public data has no `output`")
        inputs = [value % Fr_modulus for value in from_json(output_type, public_data["output"])]
        if self.is_contract:
            try:
                inputs += public_storage_inputs(public_data.get("storages", []))
            except (KeyError, TypeError, ValueError):
                raise errors.InvalidInput("malformed `storages` in public data")
        return inputs

    def verify(self, verifying_key, proof, public_data: Dict, method: Optional[str] = None) -> bool:
        is_valid = groth16.verify(verifying_key, proof, self.public_inputs(public_data, method))
        logger.info(f"Verification {'succeeded' if is_valid else 'failed'}")
        return is_valid

    def run_batch(self, witnesses: List, method: Optional[str] = None, address: Optional[int] = None):
        """
        Run independent witnesses on one thread each. The result list holds
        a ``RunResult`` or the ``VMError`` raised, in witness order.
        """
        results: List = [None] * len(witnesses)

        def worker(position, witness):
            try:
                results[position] = self.run(witness, method, address)
            except errors.VMError as error:
                logger.info(f"Batch run {position} failed: {error}")
                results[position] = error

        threads = [
            threading.Thread(target=worker, args=(position, witness), daemon=True)
            for position, witness in enumerate(witnesses)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return results
