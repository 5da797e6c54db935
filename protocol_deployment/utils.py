import json
from pathlib import Path
from typing import Any, Dict

import yaml
from eth_utils import keccak, to_checksum_address, to_hex

from protocol_deployment.constants import ARTIFACTS_DIR


def _load_yaml(filepath: Path) -> dict:
    """Loads a YAML file."""
    with open(filepath, "r") as file:
        return yaml.safe_load(file)


def _load_json(filepath: Path) -> dict:
    """Loads a JSON file."""
    with open(filepath, "r") as file:
        return json.load(file)


def _json_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return to_hex(value)
    raise TypeError(f"Value {value!r} of type {type(value).__name__} is not serializable")


def to_json_compatible(value: Any) -> Any:
    """Converts argument values (tuples, bytes, nested structs) to plain JSON types."""
    return json.loads(json.dumps(value, default=_json_default))


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=_json_default)


def fingerprint(bytecode_hash: str, constructor_args: Dict[str, Any], libraries: Dict[str, str]):
    """
    Identifies a deployment by everything that ends up on-ledger:
    the unlinked bytecode, the constructor arguments and the linked addresses.
    """
    payload = {
        "bytecode": bytecode_hash,
        "constructor": [[name, value] for name, value in constructor_args.items()],
        "libraries": {name: to_checksum_address(address) for name, address in libraries.items()},
    }
    return to_hex(keccak(text=canonical_json(payload)))


def is_address(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("0x") and len(value) == 42


def registry_filepath_from_network(network_id: str) -> Path:
    """The artifact registry file of a network, e.g. artifacts/arbitrum-mainnet.json"""
    return ARTIFACTS_DIR / f"{network_id.replace(':', '-')}.json"
