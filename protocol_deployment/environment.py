from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Dict, List, NamedTuple, Optional, Set

from eth_typing import ChecksumAddress


class TransactionReceipt(NamedTuple):
    """What the orchestrator keeps of a mined transaction."""

    address: Optional[ChecksumAddress]
    tx_hash: str
    block_number: int
    sender: str


class ExecutionEnvironment(ABC):
    """
    The ledger the orchestrator deploys to. Every call blocks until the transaction
    is mined; a rejected transaction raises TransactionReverted, the only failure
    signal the orchestrator interprets.
    """

    @property
    @abstractmethod
    def chain_id(self) -> int:
        raise NotImplementedError

    @property
    @abstractmethod
    def network_id(self) -> str:
        raise NotImplementedError

    @property
    @abstractmethod
    def deployer_address(self) -> ChecksumAddress:
        raise NotImplementedError

    @abstractmethod
    def bytecode_hash(self, contract_name: str) -> str:
        """Hash of the unlinked deployment bytecode."""
        raise NotImplementedError

    @abstractmethod
    def required_libraries(self, contract_name: str) -> Set[str]:
        """Names of the libraries whose addresses must be linked into the bytecode."""
        raise NotImplementedError

    @abstractmethod
    def deploy(
        self,
        contract_name: str,
        constructor_args: OrderedDict,
        libraries: Dict[str, ChecksumAddress],
    ) -> TransactionReceipt:
        raise NotImplementedError

    @abstractmethod
    def encode_call(self, contract_name: str, method: str, *args) -> bytes:
        """Calldata (selector and arguments) of a call to one of the contract's methods."""
        raise NotImplementedError

    @abstractmethod
    def deploy_proxy(
        self, implementation: ChecksumAddress, data: bytes = b""
    ) -> TransactionReceipt:
        """Deploys a proxy in front of the implementation, calling it with `data` if given."""
        raise NotImplementedError

    @abstractmethod
    def upgrade_proxy(
        self, proxy: ChecksumAddress, implementation: ChecksumAddress, data: bytes = b""
    ) -> TransactionReceipt:
        raise NotImplementedError

    @abstractmethod
    def transact(
        self, address: ChecksumAddress, contract_name: str, method: str, *args
    ) -> TransactionReceipt:
        raise NotImplementedError

    @property
    def is_local(self) -> bool:
        return False

    def finalize(self, addresses: List[ChecksumAddress]) -> None:
        """Hook for publishing freshly deployed contracts, e.g. to a block explorer."""

