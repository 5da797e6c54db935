from collections import OrderedDict
from typing import Any, NamedTuple, Optional, Tuple

import pytest
from eth_utils import to_checksum_address

from protocol_deployment.environment import ExecutionEnvironment, TransactionReceipt
from protocol_deployment.exceptions import TransactionReverted
from protocol_deployment.networks import NetworkProfileTable
from protocol_deployment.params import ProtocolDefinition
from protocol_deployment.registry import ArtifactRegistry

# Common constants
CHAIN_ID = 1337
DEPLOYER = to_checksum_address("0x" + "de" * 20)
QUOTE_ASSET = to_checksum_address("0x" + "a" * 40)
POOL = to_checksum_address("0x" + "b" * 40)
OPERATOR = to_checksum_address("0x" + "c" * 40)

TESTNET_A = {
    "network_id": "testnetA",
    "stable_asset": QUOTE_ASSET,
    "base_asset": "0x" + "e" * 40,
    "irm_presets": {
        "flat": {
            "base_rate": 4000000000000000,
            "kink_rate": 900000000000000000,
            "slope1": 40000000000000000,
            "slope2": 1400000000000000000,
        }
    },
    "risk_presets": {
        "default": {"risk_ratio": 109544511, "range_size": 600, "rebalance_threshold": 300}
    },
    "bootstrap": {
        "Controller": {
            "pair_groups": [{"name": "main", "quote_asset": QUOTE_ASSET, "decimals": 4}],
            "pairs": [
                {
                    "group": "main",
                    "pool": POOL,
                    "is_isolated": False,
                    "irm": {"stable": "flat", "underlying": "flat"},
                    "risk": "default",
                }
            ],
        }
    },
}


class LedgerCall(NamedTuple):
    kind: str
    target: Optional[str]
    method: Optional[str]
    args: Tuple[Any, ...]


class FakeLedger(ExecutionEnvironment):
    """
    In-memory execution environment. Every mined transaction is appended to `calls`;
    names listed in `reverts` (contract names or methods) revert instead. A proxy
    deployed with initializer data records the initializer as its method and args.
    """

    def __init__(self, network_id="testnetA", local=False, chain_id=CHAIN_ID):
        self._network_id = network_id
        self._chain_id = chain_id
        self._local = local
        self.calls = list()
        self.reverts = set()
        self.libraries = dict()
        self.versions = dict()
        self.proxies = dict()
        self.finalized = list()
        self.encoded = dict()
        self._nonce = 0

    @property
    def chain_id(self) -> int:
        return self._chain_id

    @property
    def network_id(self) -> str:
        return self._network_id

    @property
    def deployer_address(self):
        return DEPLOYER

    @property
    def is_local(self) -> bool:
        return self._local

    def recompile(self, contract_name: str) -> None:
        """Simulates a source change of one contract."""
        self.versions[contract_name] = self.versions.get(contract_name, 0) + 1

    def bytecode_hash(self, contract_name):
        return f"{contract_name}:v{self.versions.get(contract_name, 0)}"

    def required_libraries(self, contract_name):
        return set(self.libraries.get(contract_name, ()))

    def deploy(self, contract_name, constructor_args, libraries):
        self._check(contract_name)
        receipt = self._mine(address=self._next_address())
        args = (OrderedDict(constructor_args), dict(libraries))
        self.calls.append(LedgerCall("deploy", None, contract_name, args))
        return receipt

    def encode_call(self, contract_name, method, *args):
        data = f"{contract_name}.{method}#{len(self.encoded)}".encode()
        self.encoded[data] = (method, args)
        return data

    def deploy_proxy(self, implementation, data=b""):
        self._check("deploy_proxy")
        method, args = self.encoded[data] if data else (None, ())
        if method is not None:
            self._check(method)
        receipt = self._mine(address=self._next_address())
        self.proxies[receipt.address] = implementation
        self.calls.append(LedgerCall("deploy_proxy", implementation, method, args))
        return receipt

    def upgrade_proxy(self, proxy, implementation, data=b""):
        self._check("upgrade_proxy")
        self.proxies[proxy] = implementation
        self.calls.append(LedgerCall("upgrade_proxy", proxy, None, (implementation,)))
        return self._mine()

    def transact(self, address, contract_name, method, *args):
        self._check(method)
        self.calls.append(LedgerCall("transact", address, method, args))
        return self._mine()

    def finalize(self, addresses):
        self.finalized.extend(addresses)

    def calls_of(self, kind):
        return [call for call in self.calls if call.kind == kind]

    def _check(self, name):
        if name in self.reverts:
            raise TransactionReverted(f"execution reverted: {name}")

    def _next_address(self):
        return to_checksum_address(f"0x{0x1000 + self._nonce:040x}")

    def _mine(self, address=None):
        self._nonce += 1
        return TransactionReceipt(
            address=address,
            tx_hash=f"0x{self._nonce:064x}",
            block_number=self._nonce,
            sender=DEPLOYER,
        )


# Fixtures
@pytest.fixture()
def make_ledger():
    return FakeLedger


@pytest.fixture()
def ledger(make_ledger):
    return make_ledger()


@pytest.fixture()
def registry_filepath(tmp_path):
    return tmp_path / "artifacts" / "registry.json"


@pytest.fixture()
def registry(ledger, registry_filepath):
    return ArtifactRegistry(ledger, filepath=registry_filepath)


@pytest.fixture()
def profiles():
    return NetworkProfileTable.from_configs([TESTNET_A])


@pytest.fixture()
def testnet_a(profiles):
    return profiles.resolve("testnetA")


@pytest.fixture(scope="session")
def definition():
    return ProtocolDefinition.from_yaml()
