"""
zkvm command line.

Usage:
    zkvm run    --binary B --witness W --public-data P [--method M --address A]
    zkvm setup  --binary B --proving-key PK --verifying-key VK [--method M]
    zkvm prove  --binary B --proving-key PK --witness W --public-data P [--method M --address A]
    zkvm verify --binary B --verifying-key VK --public-data P [--method M] < proof
"""
import argparse
import json
import logging
import sys

from . import errors
from .config import LOG_FORMAT, LOG_LEVEL, MERKLE_HASHER, STORAGE_DIR
from .facade import Facade
from .gadgets.merkle import get_hasher
from .groth16 import Proof, ProvingKey, VerifyingKey
from .instructions import Contract, program_from_bytes
from .storage import DirectoryBackend

logger = logging.getLogger("zkvm")


def _read_json(path):
    try:
        with open(path) as f:
            return json.load(f)
    except json.JSONDecodeError as error:
        raise errors.InvalidInput(f"{path}: {error}")


def _write_json(path, data):
    with open(path, "w") as f:
        json.dump(data, f, indent=2)
        f.write("\n")


def _address(text):
    return int(text, 16) if text.lower().startswith("0x") else int(text)


def _facade(args) -> Facade:
    with open(args.binary, "rb") as f:
        program = program_from_bytes(f.read())
    backend = DirectoryBackend(args.storage) if isinstance(program, Contract) else None
    return Facade(program, backend, get_hasher(args.hasher))


def cmd_run(args):
    facade = _facade(args)
    result = facade.run(_read_json(args.witness), args.method, args.address)
    _write_json(args.public_data, result.public_data)
    print(json.dumps(result.output, indent=2))
    logger.info(f"Public data written to {args.public_data}")
    return 0


def cmd_setup(args):
    facade = _facade(args)
    proving_key, verifying_key = facade.setup(args.method)
    _write_json(args.proving_key, proving_key.to_json())
    _write_json(args.verifying_key, verifying_key.to_json())
    logger.info(f"Keys written to {args.proving_key} and {args.verifying_key}")
    return 0


def cmd_prove(args):
    facade = _facade(args)
    proving_key = ProvingKey.from_json(_read_json(args.proving_key))
    proof, public_data = facade.prove(proving_key, _read_json(args.witness), args.method, args.address)
    _write_json(args.public_data, public_data)
    print(proof.to_hex())
    return 0


def cmd_verify(args):
    facade = _facade(args)
    verifying_key = VerifyingKey.from_json(_read_json(args.verifying_key))
    proof = Proof.from_hex(sys.stdin.read())
    if not facade.verify(verifying_key, proof, _read_json(args.public_data), args.method):
        raise errors.VerificationFailed()
    print("OK")
    return 0


def build_parser():
    parser = argparse.ArgumentParser(prog="zkvm", description="Zero-knowledge virtual machine")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="INFO with -v, DEBUG with -vv")
    subparsers = parser.add_subparsers(dest="command")

    def add_command(name, handler, help_text):
        command = subparsers.add_parser(name, help=help_text)
        command.add_argument("--binary", required=True, help="Bytecode file")
        command.add_argument("--method", help="Contract method to run")
        command.add_argument("--storage", default=STORAGE_DIR, help="Contract storage directory")
        command.add_argument("--hasher", default=MERKLE_HASHER, choices=["sha256", "mimc"], help="Storage Merkle hash")
        command.set_defaults(handler=handler)
        return command

    run = add_command("run", cmd_run, "Execute the program and check the constraints")
    run.add_argument("--witness", required=True)
    run.add_argument("--public-data", required=True)
    run.add_argument("--address", type=_address, help="Contract address, decimal or 0x-prefixed hex")

    setup = add_command("setup", cmd_setup, "Generate the proving and verifying keys")
    setup.add_argument("--proving-key", required=True)
    setup.add_argument("--verifying-key", required=True)

    prove = add_command("prove", cmd_prove, "Prove an execution; the proof is printed as hex")
    prove.add_argument("--proving-key", required=True)
    prove.add_argument("--witness", required=True)
    prove.add_argument("--public-data", required=True)
    prove.add_argument("--address", type=_address, help="Contract address, decimal or 0x-prefixed hex")

    verify = add_command("verify", cmd_verify, "Verify a hex proof read from standard input")
    verify.add_argument("--verifying-key", required=True)
    verify.add_argument("--public-data", required=True)
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    level = LOG_LEVEL
    if args.verbose:
        level = "DEBUG" if args.verbose > 1 else "INFO"
    logging.basicConfig(level=level, format=LOG_FORMAT)

    if args.command is None:
        parser.print_help()
        return 1
    try:
        return args.handler(args)
    except errors.VMError as error:
        logger.error(f"{type(error).__name__}: {error}")
        print(f"error: {error}", file=sys.stderr)
        return 1
    except OSError as error:
        print(f"error: {error}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
