import json
from collections import OrderedDict, defaultdict
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional

from ape.logging import logger
from eth_typing import ChecksumAddress
from eth_utils import to_checksum_address

from protocol_deployment.constants import IMPLEMENTATION_SUFFIX
from protocol_deployment.exceptions import (
    ArtifactNotFound,
    DeploymentFailure,
    InitializationFailure,
    TransactionReverted,
)
from protocol_deployment.utils import _load_json, fingerprint, to_json_compatible

ChainId = int
ContractName = str


STANDARD_REGISTRY_JSON_FORMAT = {"indent": 4, "separators": (",", ": ")}


class ArtifactKind(Enum):
    CONTRACT = "contract"
    PROXY = "proxy"


class RegistryEntry(NamedTuple):
    """Represents a single persisted entry in an environment's artifact registry."""

    chain_id: ChainId
    name: ContractName
    address: ChecksumAddress
    fingerprint: str
    kind: ArtifactKind
    tx_hash: str
    block_number: int
    deployer: str
    constructor_args: Dict[str, Any]
    libraries: Dict[ContractName, ChecksumAddress]
    implementation: Optional[ChecksumAddress] = None
    initialized: Optional[bool] = None


class Artifact(NamedTuple):
    """The outcome of a deployment call, as seen by the rest of the orchestrator."""

    name: ContractName
    address: ChecksumAddress
    fingerprint: str
    is_newly_deployed: bool
    kind: ArtifactKind = ArtifactKind.CONTRACT
    is_upgraded: bool = False
    implementation: Optional[ChecksumAddress] = None
    initialized: Optional[bool] = None


def read_registry(filepath: Path) -> List[RegistryEntry]:
    data = _load_json(filepath)
    registry_entries = list()
    for chain_id, entries in data.items():
        for contract_name, record in entries.items():
            registry_entry = RegistryEntry(
                chain_id=int(chain_id),
                name=contract_name,
                address=record["address"],
                fingerprint=record["fingerprint"],
                kind=ArtifactKind(record.get("kind", ArtifactKind.CONTRACT.value)),
                tx_hash=record["tx_hash"],
                block_number=record["block_number"],
                deployer=record["deployer"],
                constructor_args=record.get("constructor_args", {}),
                libraries=record.get("libraries", {}),
                implementation=record.get("implementation"),
                initialized=record.get("initialized"),
            )
            registry_entries.append(registry_entry)
    return registry_entries


def write_registry(entries: List[RegistryEntry], filepath: Path) -> Path:
    """Writes an artifact registry to a file, replacing any previous content."""

    # Sort registry entries to enforce common order
    entries = sorted(entries, key=lambda entry: (str(entry.chain_id), entry.name))

    data = defaultdict(dict)
    for entry in entries:
        record = {
            "address": entry.address,
            "fingerprint": entry.fingerprint,
            "kind": entry.kind.value,
            "tx_hash": entry.tx_hash,
            "block_number": int(entry.block_number),
            "deployer": entry.deployer,
            "constructor_args": to_json_compatible(entry.constructor_args),
            "libraries": dict(sorted(entry.libraries.items())),
        }
        if entry.kind is ArtifactKind.PROXY:
            record["implementation"] = entry.implementation
            record["initialized"] = bool(entry.initialized)
        data[str(entry.chain_id)][entry.name] = record

    # Create the parent directory if it does not exist
    filepath.parent.mkdir(parents=True, exist_ok=True)
    with open(filepath, "w") as file:
        json.dump(data, file, **STANDARD_REGISTRY_JSON_FORMAT)

    return filepath


class ArtifactRegistry:
    """
    Environment-scoped record of deployed artifacts, keyed by logical name.

    Deployments are idempotent by (name, bytecode, constructor args, linked addresses):
    an unchanged tuple reuses the recorded address, anything else deploys anew and
    replaces the record. Records for every chain id found in the registry file are kept
    and written back; only the environment's own chain id is read or replaced.
    """

    def __init__(self, environment, filepath: Optional[Path] = None):
        self.environment = environment
        self.chain_id = environment.chain_id
        self.filepath = filepath
        self._entries: Dict[ChainId, Dict[ContractName, RegistryEntry]] = defaultdict(OrderedDict)
        if filepath is not None and filepath.exists():
            for entry in read_registry(filepath):
                self._entries[entry.chain_id][entry.name] = entry

    @property
    def _records(self) -> Dict[ContractName, RegistryEntry]:
        return self._entries[self.chain_id]

    def __contains__(self, name: ContractName) -> bool:
        return name in self._records

    def entry(self, name: ContractName) -> RegistryEntry:
        try:
            return self._records[name]
        except KeyError:
            raise ArtifactNotFound(f"No artifact named '{name}' on chain {self.chain_id}")

    def get(self, name: ContractName, kind: Optional[ArtifactKind] = None) -> Artifact:
        """Returns the recorded artifact, failing fast when it is absent or of another kind."""
        entry = self.entry(name)
        if kind is not None and entry.kind is not kind:
            raise ArtifactNotFound(
                f"Artifact '{name}' on chain {self.chain_id} is a {entry.kind.value}, "
                f"not a {kind.value}"
            )
        return self._artifact(entry, is_newly_deployed=False)

    def deploy(
        self,
        name: ContractName,
        constructor_args: Optional[Dict[str, Any]] = None,
        linked_addresses: Optional[Dict[ContractName, ChecksumAddress]] = None,
        behind_proxy: bool = False,
        initializer_data: Optional[bytes] = None,
    ) -> Artifact:
        """
        Deploys `name` unless an identical deployment is recorded.

        With `behind_proxy`, `initializer_data` is executed by the proxy's own deployment
        transaction, and the proxy is recorded as initialized only when it was given.
        It is ignored for a proxy that already exists.
        """
        constructor_args = OrderedDict(constructor_args or {})
        linked_addresses = OrderedDict(linked_addresses or {})
        if behind_proxy:
            return self._deploy_behind_proxy(
                name, constructor_args, linked_addresses, initializer_data
            )
        return self._deploy(name, name, constructor_args, linked_addresses)

    def mark_initialized(self, name: ContractName) -> None:
        entry = self.entry(name)
        if entry.kind is not ArtifactKind.PROXY:
            raise ValueError(f"Only proxies are initialized; '{name}' is a {entry.kind.value}")
        self._commit(entry._replace(initialized=True))

    def save(self) -> Optional[Path]:
        if self.filepath is None:
            return None
        entries = [entry for records in self._entries.values() for entry in records.values()]
        return write_registry(entries=entries, filepath=self.filepath)

    def _deploy(
        self,
        registry_name: ContractName,
        contract_name: ContractName,
        constructor_args: OrderedDict,
        linked_addresses: OrderedDict,
    ) -> Artifact:
        bytecode_hash = self.environment.bytecode_hash(contract_name)
        new_fingerprint = fingerprint(bytecode_hash, constructor_args, linked_addresses)

        entry = self._records.get(registry_name)
        if entry is not None and entry.fingerprint == new_fingerprint:
            logger.info(f"Reusing {registry_name} at {entry.address}")
            return self._artifact(entry, is_newly_deployed=False)

        try:
            receipt = self.environment.deploy(contract_name, constructor_args, linked_addresses)
        except TransactionReverted as e:
            raise DeploymentFailure(registry_name, str(e)) from e

        entry = RegistryEntry(
            chain_id=self.chain_id,
            name=registry_name,
            address=to_checksum_address(receipt.address),
            fingerprint=new_fingerprint,
            kind=ArtifactKind.CONTRACT,
            tx_hash=receipt.tx_hash,
            block_number=receipt.block_number,
            deployer=receipt.sender,
            constructor_args=constructor_args,
            libraries=dict(linked_addresses),
        )
        self._commit(entry)
        logger.success(f"{registry_name} deployed at {entry.address}")
        return self._artifact(entry, is_newly_deployed=True)

    def _deploy_behind_proxy(
        self,
        name: ContractName,
        constructor_args: OrderedDict,
        linked_addresses: OrderedDict,
        initializer_data: Optional[bytes],
    ) -> Artifact:
        implementation = self._deploy(
            f"{name}{IMPLEMENTATION_SUFFIX}", name, constructor_args, linked_addresses
        )

        entry = self._records.get(name)
        if entry is None:
            try:
                receipt = self.environment.deploy_proxy(
                    implementation.address, data=initializer_data or b""
                )
            except TransactionReverted as e:
                if initializer_data:
                    # proxy creation and initialization share one transaction
                    raise InitializationFailure(name, implementation.address, str(e)) from e
                raise DeploymentFailure(name, str(e)) from e
            entry = RegistryEntry(
                chain_id=self.chain_id,
                name=name,
                address=to_checksum_address(receipt.address),
                fingerprint=implementation.fingerprint,
                kind=ArtifactKind.PROXY,
                tx_hash=receipt.tx_hash,
                block_number=receipt.block_number,
                deployer=receipt.sender,
                constructor_args=OrderedDict(),
                libraries={},
                implementation=implementation.address,
                initialized=initializer_data is not None,
            )
            self._commit(entry)
            logger.success(f"{name} proxy deployed at {entry.address}")
            return self._artifact(entry, is_newly_deployed=True)

        if entry.kind is not ArtifactKind.PROXY:
            raise ValueError(f"'{name}' is recorded as a plain contract and cannot be proxied")

        if entry.implementation == implementation.address:
            logger.info(f"Reusing {name} proxy at {entry.address}")
            return self._artifact(entry, is_newly_deployed=False)

        try:
            self.environment.upgrade_proxy(entry.address, implementation.address)
        except TransactionReverted as e:
            raise DeploymentFailure(name, str(e)) from e
        entry = entry._replace(
            implementation=implementation.address, fingerprint=implementation.fingerprint
        )
        self._commit(entry)
        logger.success(f"{name} proxy at {entry.address} upgraded to {implementation.address}")
        return self._artifact(entry, is_newly_deployed=False, is_upgraded=True)

    def _commit(self, entry: RegistryEntry) -> None:
        self._records[entry.name] = entry
        self.save()

    @staticmethod
    def _artifact(entry: RegistryEntry, is_newly_deployed: bool, is_upgraded: bool = False):
        return Artifact(
            name=entry.name,
            address=entry.address,
            fingerprint=entry.fingerprint,
            is_newly_deployed=is_newly_deployed,
            kind=entry.kind,
            is_upgraded=is_upgraded,
            implementation=entry.implementation,
            initialized=entry.initialized,
        )
