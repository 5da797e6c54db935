import typing
from abc import ABC, abstractmethod
from collections import OrderedDict
from pathlib import Path
from typing import Any, List, NamedTuple, Optional, Tuple

from ape.utils import ZERO_ADDRESS

from protocol_deployment.constants import PIPELINE_STAGES, PROTOCOL_DEFINITION_FILEPATH
from protocol_deployment.utils import _load_yaml

CONTRACT_CONSTRUCTOR_PARAMETER_KEY = "constructor"
CONTRACT_LIBRARIES_KEY = "libraries"
CONTRACT_PROXY_PARAMETER_KEY = "proxy"
PROXY_INITIALIZER_KEY = "initializer"

STAGE_MODULES_KEY = "modules"
STAGE_MOCKS_KEY = "mocks"
STAGE_CONTRACTS_KEY = "contracts"

# supplied by the network profile at run time
NETWORK_CONSTANT_NAMES = ("STABLE_ASSET", "BASE_ASSET", "UNISWAP_FACTORY")


class VariableContext:
    def __init__(
        self,
        contract_names: List[str],
        contract_name: str,
        constants: typing.Dict[str, Any] = None,
        registry=None,
        deployer_address: Optional[str] = None,
    ):
        self.contract_names = contract_names or list()
        self.contract_name = contract_name
        self.constants = constants or dict()
        self.registry = registry
        self.deployer_address = deployer_address


# Variables


class Variable(ABC):
    VARIABLE_PREFIX = "$"

    @abstractmethod
    def resolve(self) -> Any:
        raise NotImplementedError

    @classmethod
    def is_variable(cls, param: Any) -> bool:
        """Returns True if the param is a variable."""
        result = isinstance(param, str) and param.startswith(cls.VARIABLE_PREFIX)
        return result


class DeployerAccount(Variable):
    DEPLOYER_INDICATOR = "deployer"

    def __init__(self, context: VariableContext):
        self.context = context

    @classmethod
    def is_deployer(cls, value: str) -> bool:
        """Returns True if the variable is a special deployer variable."""
        return value == cls.DEPLOYER_INDICATOR

    def resolve(self) -> Any:
        if self.context.deployer_address is None:
            return ZERO_ADDRESS
        return self.context.deployer_address


class Constant(Variable):
    def __init__(self, constant_name: str, context: VariableContext):
        try:
            self.constant_value = context.constants[constant_name]
        except KeyError:
            raise ValueError(
                f"Constant '{constant_name}' used by {context.contract_name} is not defined "
                "by the protocol definition or the network profile."
            )

    @classmethod
    def is_constant(cls, value: str) -> bool:
        """Returns True if the variable is a deployment constant."""
        return value.isupper()

    def resolve(self) -> Any:
        return self.constant_value


class ContractName(Variable):
    def __init__(self, contract_name: str, context: VariableContext):
        if contract_name not in context.contract_names:
            raise ValueError(f"Contract name {contract_name} not found")

        self.contract_name = contract_name
        self.registry = context.registry

    def resolve(self) -> Any:
        """Resolves a contract address; proxied contracts resolve to their proxy."""
        if self.registry is None:
            # eager validation
            return ZERO_ADDRESS
        return self.registry.get(self.contract_name).address


def _resolve_param(value: Any) -> Any:
    """Resolves a single parameter value, a list or a struct of parameter values."""
    if isinstance(value, list):
        return [_resolve_param(v) for v in value]

    if isinstance(value, dict):
        return OrderedDict((k, _resolve_param(v)) for k, v in value.items())

    if isinstance(value, Variable):
        return value.resolve()

    return value  # literally a value


def _resolve_params(parameters: OrderedDict) -> OrderedDict:
    resolved_parameters = OrderedDict()
    for name, value in parameters.items():
        resolved_parameters[name] = _resolve_param(value)

    return resolved_parameters


def _variable_from_value(variable: Any, context: VariableContext) -> Variable:
    variable = variable.strip(Variable.VARIABLE_PREFIX)
    if DeployerAccount.is_deployer(variable):
        return DeployerAccount(context)
    elif Constant.is_constant(variable):
        return Constant(variable, context)
    else:
        return ContractName(variable, context)


def _process_raw_value(value: Any, variable_context: VariableContext) -> Any:
    if isinstance(value, list):
        return [_process_raw_value(v, variable_context) for v in value]

    if isinstance(value, dict):
        return OrderedDict((k, _process_raw_value(v, variable_context)) for k, v in value.items())

    if Variable.is_variable(value):
        value = _variable_from_value(value, variable_context)

    return value


def _process_raw_values(values: OrderedDict, variable_context: VariableContext) -> OrderedDict:
    processed_parameters = OrderedDict()
    for name, value in values.items():
        processed_parameters[name] = _process_raw_value(value, variable_context)

    return processed_parameters


def _split_entry(contract_info: Any) -> Tuple[str, typing.Dict]:
    """Splits a YAML contract entry (a bare name or a single-key mapping)."""
    if isinstance(contract_info, str):
        return contract_info, dict()
    if isinstance(contract_info, dict) and len(contract_info) == 1:
        contract_name = list(contract_info.keys())[0]  # only one entry
        return contract_name, contract_info[contract_name] or dict()
    raise ProtocolDefinition.Invalid("Malformed protocol definition YAML.")


class Initializer(NamedTuple):
    method: str
    args: List[Any]

    def resolve(self) -> List[Any]:
        return [_resolve_param(arg) for arg in self.args]


class ModuleDescriptor(NamedTuple):
    """A stateless logic module and the modules whose addresses are linked into it."""

    name: str
    depends_on: Tuple[str, ...] = ()
    constructor: OrderedDict = OrderedDict()

    def resolve_constructor(self) -> OrderedDict:
        return _resolve_params(self.constructor)


class ContractSpec(NamedTuple):
    """A contract deployed with constructor parameters, optionally behind a proxy."""

    name: str
    constructor: OrderedDict
    libraries: Tuple[str, ...]
    proxied: bool
    initializer: Optional[Initializer]

    def resolve_constructor(self) -> OrderedDict:
        return _resolve_params(self.constructor)


class Stage(NamedTuple):
    name: str
    modules: List[ModuleDescriptor]
    mocks: List[ContractSpec]
    contracts: List[ContractSpec]


class ProtocolDefinition:
    """
    The static description of the protocol: which modules exist, what they link
    against, and how every stage's contracts are constructed and initialized.
    """

    class Invalid(ValueError):
        """Raised when the protocol definition is malformed"""

    def __init__(self, config: typing.Dict, path: Optional[Path] = None):
        self.config = config
        self.path = path
        stages = config.get("stages")
        if not stages:
            raise self.Invalid("Protocol definition missing 'stages' field.")
        unknown = set(stages) - set(PIPELINE_STAGES)
        if unknown:
            raise self.Invalid(f"Unknown stages {sorted(unknown)}; expected {PIPELINE_STAGES}.")
        self.stages = stages
        self.constants = config.get("constants") or dict()
        self.contract_names = self._get_contract_names()

        # eager validation of names and variables
        for stage_name in self.stage_names:
            self.stage(stage_name, constants=None)

    @classmethod
    def from_yaml(cls, filepath: Path = PROTOCOL_DEFINITION_FILEPATH) -> "ProtocolDefinition":
        config = _load_yaml(filepath)
        return cls(config=config, path=filepath)

    @property
    def stage_names(self) -> List[str]:
        return [name for name in PIPELINE_STAGES if name in self.stages]

    def _iter_entries(self):
        for stage_name in self.stage_names:
            stage_config = self.stages[stage_name] or dict()
            for key in (STAGE_MODULES_KEY, STAGE_MOCKS_KEY, STAGE_CONTRACTS_KEY):
                for contract_info in stage_config.get(key) or []:
                    yield stage_name, key, contract_info

    def _get_contract_names(self) -> List[str]:
        contract_names = list()
        for _, _, contract_info in self._iter_entries():
            contract_name, _ = _split_entry(contract_info)
            if contract_name in contract_names:
                raise self.Invalid(f"Contract {contract_name} is declared more than once.")
            contract_names.append(contract_name)
        return contract_names

    def stage(
        self,
        stage_name: str,
        constants: Optional[typing.Dict[str, Any]] = None,
        registry=None,
        deployer_address: Optional[str] = None,
    ) -> Stage:
        """
        Parses one stage, binding its variables to the given constants and registry.
        Without constants only the definition's own constants are known (eager validation
        then tolerates network constants by name).
        """
        if stage_name not in self.stages:
            raise self.Invalid(f"Stage '{stage_name}' is not defined.")
        all_constants = dict(self.constants)
        if constants is None:
            all_constants.update(dict.fromkeys(NETWORK_CONSTANT_NAMES, ZERO_ADDRESS))
        else:
            all_constants.update(constants)

        stage_config = self.stages[stage_name] or dict()

        def context_for(name: str) -> VariableContext:
            return VariableContext(
                contract_names=self.contract_names,
                contract_name=name,
                constants=all_constants,
                registry=registry,
                deployer_address=deployer_address,
            )

        modules = list()
        for contract_info in stage_config.get(STAGE_MODULES_KEY) or []:
            name, data = _split_entry(contract_info)
            if CONTRACT_PROXY_PARAMETER_KEY in data:
                raise self.Invalid(f"Module {name} cannot be proxied.")
            modules.append(
                ModuleDescriptor(
                    name=name,
                    depends_on=tuple(data.get(CONTRACT_LIBRARIES_KEY) or ()),
                    constructor=self._constructor(data, context_for(name)),
                )
            )

        mocks = [
            self._contract_spec(*_split_entry(info), context_for)
            for info in stage_config.get(STAGE_MOCKS_KEY) or []
        ]
        contracts = [
            self._contract_spec(*_split_entry(info), context_for)
            for info in stage_config.get(STAGE_CONTRACTS_KEY) or []
        ]
        return Stage(name=stage_name, modules=modules, mocks=mocks, contracts=contracts)

    def modules(self) -> List[ModuleDescriptor]:
        """All module descriptors of every stage, in declaration order."""
        descriptors = list()
        for stage_name in self.stage_names:
            descriptors.extend(self.stage(stage_name, constants=None).modules)
        return descriptors

    @staticmethod
    def _constructor(data: typing.Dict, context: VariableContext) -> OrderedDict:
        raw_values = data.get(CONTRACT_CONSTRUCTOR_PARAMETER_KEY) or OrderedDict()
        if not isinstance(raw_values, dict):
            raise ProtocolDefinition.Invalid(
                f"Malformed constructor parameter config for {context.contract_name}."
            )
        return _process_raw_values(OrderedDict(raw_values), context)

    @classmethod
    def _contract_spec(cls, name: str, data: typing.Dict, context_for) -> ContractSpec:
        context = context_for(name)
        proxied = CONTRACT_PROXY_PARAMETER_KEY in data
        initializer = None
        if proxied:
            proxy_data = data[CONTRACT_PROXY_PARAMETER_KEY] or dict()
            initializer_data = proxy_data.get(PROXY_INITIALIZER_KEY)
            if initializer_data:
                if "method" not in initializer_data:
                    raise cls.Invalid(f"Initializer of {name} does not name a method.")
                initializer = Initializer(
                    method=initializer_data["method"],
                    args=_process_raw_value(list(initializer_data.get("args") or []), context),
                )
        return ContractSpec(
            name=name,
            constructor=cls._constructor(data, context),
            libraries=tuple(data.get(CONTRACT_LIBRARIES_KEY) or ()),
            proxied=proxied,
            initializer=initializer,
        )

