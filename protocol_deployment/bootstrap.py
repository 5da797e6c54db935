from enum import Enum
from typing import Any, Dict, List, NamedTuple, Tuple

from ape.logging import logger
from eth_typing import ChecksumAddress

from protocol_deployment.constants import (
    FIRST_PAIR_GROUP_ID,
    REGISTER_PAIR_GROUP_METHOD,
    REGISTER_PAIR_METHOD,
)
from protocol_deployment.exceptions import BootstrapFailure, TransactionReverted
from protocol_deployment.networks import (
    AssetRiskParams,
    BootstrapPlan,
    IrmParams,
    NetworkProfile,
    Resolution,
    Unsupported,
)
from protocol_deployment.proxy import CoreContractHandle


class BootstrapState(Enum):
    NOT_STARTED = "NotStarted"
    GROUPS_REGISTERED = "GroupsRegistered"
    PAIRS_REGISTERED = "PairsRegistered"
    ROLES_ASSIGNED = "RolesAssigned"
    DONE = "Done"
    SKIPPED = "Skipped"
    FAILED = "Failed"


class AddPairParams(NamedTuple):
    """Argument struct of the core's pair registration entry point."""

    pair_group_id: int
    uniswap_pool: ChecksumAddress
    is_isolated_mode: bool
    asset_risk_params: AssetRiskParams
    stable_irm_params: IrmParams
    underlying_irm_params: IrmParams


class ConfigurationCall(NamedTuple):
    method: str
    args: Tuple[Any, ...]
    tx_hash: str


class BootstrapResult(NamedTuple):
    state: BootstrapState
    calls: List[ConfigurationCall]
    history: List[BootstrapState]


class BootstrapSequencer:
    """
    Configures a newly deployed core contract for the network it lives on:
    pair groups first, then the pairs in them, then privileged roles.

    The sequence runs only when the core was newly deployed in this run; for any
    other core, and for networks without a profile, it is a no-op.
    """

    def __init__(self, environment):
        self.environment = environment

    def run(self, core: CoreContractHandle, resolution: Resolution) -> BootstrapResult:
        if not core.is_newly_deployed:
            logger.info(f"{core.name} was not newly deployed; skipping bootstrap.")
            return self._skipped()
        if isinstance(resolution, Unsupported):
            logger.info(f"No network profile for '{resolution.network_id}'; skipping bootstrap.")
            return self._skipped()

        return _BootstrapRun(self.environment, core, resolution).execute()

    @staticmethod
    def _skipped() -> BootstrapResult:
        return BootstrapResult(
            state=BootstrapState.SKIPPED, calls=[], history=[BootstrapState.SKIPPED]
        )


class _BootstrapRun:
    def __init__(self, environment, core: CoreContractHandle, profile: NetworkProfile):
        self.environment = environment
        self.core = core
        self.profile = profile
        self.plan: BootstrapPlan = profile.plan_for(core.name)
        self.state = BootstrapState.NOT_STARTED
        self.history = [self.state]
        self.calls: List[ConfigurationCall] = list()

    def execute(self) -> BootstrapResult:
        logger.info(f"Bootstrapping {self.core.name} for {self.profile.network_id}")
        group_ids = self._register_groups()
        self._advance(BootstrapState.GROUPS_REGISTERED)
        self._register_pairs(group_ids)
        self._advance(BootstrapState.PAIRS_REGISTERED)
        self._assign_roles()
        self._advance(BootstrapState.ROLES_ASSIGNED)
        self._advance(BootstrapState.DONE)
        logger.success(f"Bootstrapped {self.core.name} with {len(self.calls)} call(s)")
        return BootstrapResult(state=self.state, calls=self.calls, history=self.history)

    def _register_groups(self) -> Dict[str, int]:
        group_ids = dict()
        for offset, group in enumerate(self.plan.pair_groups):
            self._call(REGISTER_PAIR_GROUP_METHOD, group.quote_asset, group.decimals)
            group_ids[group.name] = FIRST_PAIR_GROUP_ID + offset
        return group_ids

    def _register_pairs(self, group_ids: Dict[str, int]) -> None:
        for pair in self.plan.pairs:
            params = AddPairParams(
                pair_group_id=group_ids[pair.group],
                uniswap_pool=pair.pool,
                is_isolated_mode=pair.is_isolated,
                asset_risk_params=pair.risk,
                stable_irm_params=pair.stable_irm,
                underlying_irm_params=pair.underlying_irm,
            )
            self._call(REGISTER_PAIR_METHOD, params)

    def _assign_roles(self) -> None:
        for role in self.plan.roles:
            self._call(role.method, role.address)

    def _call(self, method: str, *args) -> None:
        try:
            receipt = self.environment.transact(self.core.address, self.core.name, method, *args)
        except TransactionReverted as e:
            failed_after = self.state
            self._advance(BootstrapState.FAILED)
            result = BootstrapResult(state=self.state, calls=self.calls, history=self.history)
            raise BootstrapFailure(
                self.core.name, failed_after, str(e), calls=self.calls, result=result
            ) from e
        self.calls.append(ConfigurationCall(method=method, args=args, tx_hash=receipt.tx_hash))

    def _advance(self, state: BootstrapState) -> None:
        self.state = state
        self.history.append(state)
