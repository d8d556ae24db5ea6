import os


LOG_LEVEL = os.environ.get("ZKVM_LOG_LEVEL", "WARNING")
LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"

STORAGE_DIR = os.environ.get("ZKVM_STORAGE_DIR", "./storage")
MERKLE_HASHER = os.environ.get("ZKVM_MERKLE_HASHER", "sha256")
MAP_DEFAULT_CAPACITY = int(os.environ.get("ZKVM_MAP_CAPACITY", "8"))

MAX_INTEGER_BITLENGTH = 248
FIELD_BITLENGTH = 254
ADDRESS_BITLENGTH = 160
