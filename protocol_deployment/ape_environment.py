import os
import typing
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Set

from ape import chain, networks, project
from ape.api import AccountAPI, ReceiptAPI
from ape.cli.choices import select_account
from ape.contracts.base import ContractContainer, ContractTransactionHandler
from ape.exceptions import ApeException
from ape.logging import logger
from ape.utils import EMPTY_BYTES32
from eth_typing import ChecksumAddress
from eth_utils import keccak, to_checksum_address, to_hex
from ethpm_types import MethodABI
from ethpm_types.contract_type import Bytecode, ContractType
from hexbytes import HexBytes
from web3.auto import w3

from protocol_deployment.confirm import _confirm_resolution, _continue
from protocol_deployment.constants import (
    EIP1967_ADMIN_SLOT,
    OZ_DEPENDENCY_NAME,
    OZ_DEPENDENCY_VERSION,
    PROXY_ADMIN_NAME,
    PROXY_NAME,
)
from protocol_deployment.environment import ExecutionEnvironment, TransactionReceipt
from protocol_deployment.exceptions import MissingLinkage, TransactionReverted
from protocol_deployment.networks import is_local_network


def check_plugins(verify: bool) -> None:
    """
    Fails before the first transaction when a live network lacks the credentials
    the selected provider (infura) or the --verify explorer (etherscan) needs.
    """
    network = networks.provider.network
    if is_local_network(network.name):
        return
    logger.info("Checking plugins...")

    required = dict()
    if verify:
        try:
            from ape_etherscan.utils import API_KEY_ENV_KEY_MAP
        except ImportError:
            raise ImportError("Please install the ape-etherscan plugin to verify contracts.")
        envvar = API_KEY_ENV_KEY_MAP.get(network.ecosystem.name)
        if envvar is None:
            raise ValueError(f"Etherscan does not support the {network.ecosystem.name} ecosystem.")
        required["etherscan"] = [envvar]
    if networks.provider.name == "infura":
        from ape_infura.provider import _ENVIRONMENT_VARIABLE_NAMES

        required["infura"] = list(_ENVIRONMENT_VARIABLE_NAMES)

    for plugin, envvars in required.items():
        if not any(os.environ.get(envvar) for envvar in envvars):
            raise ValueError(f"No {plugin} API key found in: {', '.join(envvars)}")


def current_network_id() -> str:
    """Identifies the connected network as '<ecosystem>:<network>', e.g. 'arbitrum:mainnet'."""
    network = networks.provider.network
    return f"{network.ecosystem.name}:{network.name}"


def _oz_dependency():
    return project.dependencies[OZ_DEPENDENCY_NAME][OZ_DEPENDENCY_VERSION]


def _get_dependency_contract_container(contract: str) -> ContractContainer:
    for dependency_name, dependency_versions in project.dependencies.items():
        if len(dependency_versions) > 1:
            raise ValueError(f"Ambiguous {dependency_name} dependency for {contract}")
        try:
            dependency_api = list(dependency_versions.values())[0]
            contract_container = getattr(dependency_api, contract)
            return contract_container
        except AttributeError:
            continue
    raise ValueError(f"No contract found with name '{contract}'.")


def get_contract_container(contract: str) -> ContractContainer:
    try:
        contract_container = getattr(project, contract)
    except AttributeError:
        # not in root project; check dependencies
        contract_container = _get_dependency_contract_container(contract)

    return contract_container


def library_placeholder(library_type: ContractType) -> str:
    """The solc placeholder for an unlinked library: __$<keccak(fqn)[:34]>$__"""
    fully_qualified_name = f"{library_type.source_id}:{library_type.name}"
    return f"__${keccak(text=fully_qualified_name).hex()[:34]}$__"


def link_bytecode(
    contract_type: ContractType, libraries: Dict[str, ChecksumAddress]
) -> ContractType:
    """Returns a copy of the contract type with every library placeholder linked."""
    bytecode = contract_type.deployment_bytecode.bytecode
    for library_name, address in libraries.items():
        placeholder = library_placeholder(get_contract_container(library_name).contract_type)
        bytecode = bytecode.replace(placeholder, to_checksum_address(address)[2:].lower())

    unresolved = _library_names(bytecode)
    if unresolved:
        raise MissingLinkage(contract_type.name, unresolved)

    return contract_type.model_copy(update={"deployment_bytecode": Bytecode(bytecode=bytecode)})


def _library_names(bytecode: str) -> Set[str]:
    """Names of the project's contracts whose placeholders occur in the bytecode."""
    if "__$" not in bytecode:
        return set()
    names = set()
    for candidate in project.contracts:
        candidate_type = project.contracts[candidate]
        if library_placeholder(candidate_type) in bytecode:
            names.add(candidate_type.name)
    return names


def _normalize_struct(abi_type: str, components, value: Any) -> Any:
    """Orders mapping values as ABI tuples, so they can be validated and encoded."""
    if isinstance(value, dict) and abi_type.startswith("tuple"):
        return tuple(
            _normalize_struct(c.type, c.components, value[c.name]) for c in components or []
        )
    return value


def _validate_method_args(
    method_abis: List[MethodABI], args: typing.Sequence[Any]
) -> typing.Tuple[MethodABI, typing.Dict[str, Any], typing.List[Any]]:
    """
    Validates the transaction arguments against the function ABI.
    Returns the matching ABI with the normalized positional args, plus a
    by-name view of them for display only.
    """
    if len(method_abis) == 0:
        raise ValueError("No method abis provided for validation of args")

    abis_matching_args_length = [abi for abi in method_abis if len(abi.inputs) == len(args)]
    for abi in abis_matching_args_length:
        named_args, normalized_args = {}, []
        for position, (arg, abi_input) in enumerate(zip(args, abi.inputs)):
            arg = _normalize_struct(abi_input.type, abi_input.components, arg)
            if not w3.is_encodable(abi_input.type, arg):
                break
            label = abi_input.name
            if not label or label in named_args:
                label = f"#{position}"
            named_args[label] = arg
            normalized_args.append(arg)
        else:
            return abi, named_args, normalized_args
    raise ValueError(
        f"Could not find ABI for '{method_abis[0].name}' with {len(args)} arg(s) and given type(s)"
    )


class ConstructorParameters:
    class Invalid(ValueError):
        """Raised when the constructor parameters are invalid"""


def _validate_constructor_abi_inputs(
    contract_name: str,
    abi_inputs: List[Any],
    resolved_parameters: OrderedDict,
) -> OrderedDict:
    """Validates the constructor parameters against the constructor ABI."""
    if len(resolved_parameters) != len(abi_inputs):
        raise ConstructorParameters.Invalid(
            f"Constructor parameters length mismatch - "
            f"{contract_name} ABI requires {len(abi_inputs)}, Got {len(resolved_parameters)}."
        )

    normalized = OrderedDict()
    codex = enumerate(zip(abi_inputs, resolved_parameters.items()), start=0)
    for position, (abi_input, resolved_input) in codex:
        name, value = resolved_input
        # validate name
        if abi_input.name != name:
            raise ConstructorParameters.Invalid(
                f"{contract_name} constructor parameter '{name}' at position {position} does not "
                f"match the expected ABI name '{abi_input.name}'."
            )

        # validate value type
        value = _normalize_struct(abi_input.type, abi_input.components, value)
        if not w3.is_encodable(abi_input.type, value):
            raise ConstructorParameters.Invalid(
                f"Constructor param name '{name}' at position {position} has a value '{value}' "
                f"whose type does not match expected ABI type '{abi_input.type}'"
            )
        normalized[name] = value
    return normalized


def _receipt(receipt: ReceiptAPI, address: Optional[str] = None) -> TransactionReceipt:
    return TransactionReceipt(
        address=to_checksum_address(address) if address else None,
        tx_hash=to_hex(HexBytes(receipt.txn_hash)),
        block_number=receipt.block_number,
        sender=receipt.transaction.sender,
    )


class ApeEnvironment(ExecutionEnvironment):
    """
    Represents an ape account plus validated/annotated execution
    against the connected network.
    """

    def __init__(
        self,
        account: typing.Optional[AccountAPI] = None,
        autosign: bool = False,
        verify: bool = False,
    ):
        if account is None:
            self._account = select_account()
        else:
            self._account = account
        if autosign:
            logger.warning("Autosign is enabled. Transactions will be signed automatically.")
        self._autosign = autosign
        self._account.set_autosign(autosign)
        self.verify = verify
        check_plugins(verify=verify)
        self._print_deployment_info()

        if not self._autosign:
            # Confirms the start of the deployment.
            _continue()

    @property
    def chain_id(self) -> int:
        return networks.provider.network.chain_id

    @property
    def network_id(self) -> str:
        return current_network_id()

    @property
    def deployer_address(self) -> ChecksumAddress:
        return self._account.address

    @property
    def is_local(self) -> bool:
        return is_local_network(networks.provider.network.name)

    def bytecode_hash(self, contract_name: str) -> str:
        bytecode = get_contract_container(contract_name).contract_type.deployment_bytecode
        return to_hex(keccak(text=bytecode.bytecode or ""))

    def required_libraries(self, contract_name: str) -> Set[str]:
        bytecode = get_contract_container(contract_name).contract_type.deployment_bytecode
        return _library_names(bytecode.bytecode or "")

    def deploy(
        self,
        contract_name: str,
        constructor_args: OrderedDict,
        libraries: Dict[str, ChecksumAddress],
    ) -> TransactionReceipt:
        container = get_contract_container(contract_name)
        contract_type = link_bytecode(container.contract_type, libraries)
        linked_container = ContractContainer(contract_type)
        resolved_params = _validate_constructor_abi_inputs(
            contract_name=contract_name,
            abi_inputs=linked_container.constructor.abi.inputs,
            resolved_parameters=constructor_args,
        )
        if not self._autosign:
            _confirm_resolution(resolved_params, contract_name, libraries)

        try:
            instance = self._account.deploy(
                linked_container,
                *resolved_params.values(),
                # explorer verification happens in finalize, once per run
                publish=False,
            )
        except ApeException as e:
            raise TransactionReverted(str(e)) from e
        return _receipt(instance.receipt, address=instance.address)

    def encode_call(self, contract_name: str, method: str, *args) -> bytes:
        contract_type = get_contract_container(contract_name).contract_type
        method_abis = [abi for abi in contract_type.methods if abi.name == method]
        if not method_abis:
            raise ValueError(f"{contract_name} has no method '{method}'")
        abi, _, args = _validate_method_args(method_abis=method_abis, args=args)
        ecosystem = networks.provider.network.ecosystem
        return bytes(ecosystem.get_method_selector(abi) + ecosystem.encode_calldata(abi, *args))

    def deploy_proxy(
        self, implementation: ChecksumAddress, data: bytes = b""
    ) -> TransactionReceipt:
        proxy_container = _oz_dependency().TransparentUpgradeableProxy
        logger.info(f"Deploying {PROXY_NAME} for implementation {implementation}")
        params = OrderedDict(
            {
                "_logic": implementation,
                "initialOwner": self.deployer_address,
                "_data": HexBytes(data),
            }
        )
        if not self._autosign:
            _confirm_resolution(params, PROXY_NAME)
        try:
            proxy = self._account.deploy(proxy_container, *params.values(), publish=False)
        except ApeException as e:
            raise TransactionReverted(str(e)) from e
        return _receipt(proxy.receipt, address=proxy.address)

    def upgrade_proxy(
        self, proxy: ChecksumAddress, implementation: ChecksumAddress, data: bytes = b""
    ) -> TransactionReceipt:
        admin_slot = chain.provider.get_storage_at(address=proxy, slot=EIP1967_ADMIN_SLOT)

        if admin_slot == EMPTY_BYTES32:
            raise ValueError(
                f"Admin slot for contract at {proxy} is empty. "
                "Are you sure this is an EIP1967-compatible proxy?"
            )

        admin_address = to_checksum_address(admin_slot[-20:])
        proxy_admin = getattr(_oz_dependency(), PROXY_ADMIN_NAME).at(admin_address)
        if proxy_admin.owner() != self.deployer_address:
            raise ValueError(
                f"{PROXY_ADMIN_NAME} at {admin_address} is not owned by {self.deployer_address}"
            )
        return self._transact(proxy_admin.upgradeAndCall, proxy, implementation, data)

    def transact(
        self, address: ChecksumAddress, contract_name: str, method: str, *args
    ) -> TransactionReceipt:
        instance = get_contract_container(contract_name).at(address)
        return self._transact(getattr(instance, method), *args)

    def _transact(self, method: ContractTransactionHandler, *args) -> TransactionReceipt:
        _, named_args, args = _validate_method_args(method_abis=method.abis, args=args)
        base_message = (
            f"\nTransacting {method.contract.contract_type.name}"
            f"[{method.contract.address[:10]}].{method}"
        )
        if named_args:
            pretty_args = "\n\t".join(f"{k}={v}" for k, v in named_args.items())
            message = f"{base_message} with arguments:\n\t{pretty_args}"
        else:
            message = f"{base_message} with no arguments"
        logger.info(message)
        if not self._autosign:
            _continue()

        try:
            receipt = method(*args, sender=self._account)
        except ApeException as e:
            raise TransactionReverted(str(e)) from e
        return _receipt(receipt)

    def finalize(self, addresses: List[ChecksumAddress]) -> None:
        if not self.verify:
            return
        explorer = networks.provider.network.explorer
        for address in addresses:
            logger.info(f"Verifying contract at {address}...")
            explorer.publish_contract(address)

    def _print_deployment_info(self):
        print(
            f"Account: {self._account.address}",
            f"Verify: {self.verify}",
            f"Ecosystem: {networks.provider.network.ecosystem.name}",
            f"Network: {networks.provider.network.name}",
            f"Chain ID: {networks.provider.network.chain_id}",
            f"Gas Price: {networks.provider.gas_price}",
            sep="\n",
        )
