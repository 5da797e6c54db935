from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional, Union

from eth_typing import ChecksumAddress
from eth_utils import to_checksum_address

from protocol_deployment.constants import (
    FORK_SUFFIX,
    LOCAL_NETWORKS,
    LOCAL_STABLE_ASSET_NAME,
    PROFILES_DIR,
)
from protocol_deployment.utils import _load_yaml, is_address


class IrmParams(NamedTuple):
    """Interest rate model curve; 1e18 fixed-point values."""

    base_rate: int
    kink_rate: int
    slope1: int
    slope2: int


class AssetRiskParams(NamedTuple):
    risk_ratio: int
    range_size: int
    rebalance_threshold: int


class PairGroup(NamedTuple):
    name: str
    quote_asset: ChecksumAddress
    decimals: int


class Pair(NamedTuple):
    group: str
    pool: ChecksumAddress
    is_isolated: bool
    stable_irm: IrmParams
    underlying_irm: IrmParams
    risk: AssetRiskParams


class RoleAssignment(NamedTuple):
    method: str
    address: ChecksumAddress


class BootstrapPlan(NamedTuple):
    pair_groups: List[PairGroup]
    pairs: List[Pair]
    roles: List[RoleAssignment]

    @property
    def is_empty(self) -> bool:
        return not (self.pair_groups or self.pairs or self.roles)


EMPTY_PLAN = BootstrapPlan(pair_groups=[], pairs=[], roles=[])


class NetworkProfile(NamedTuple):
    network_id: str
    stable_asset: ChecksumAddress
    base_asset: ChecksumAddress
    price_source_pools: Dict[str, ChecksumAddress]
    uniswap_factory: Optional[ChecksumAddress]
    irm_presets: Dict[str, IrmParams]
    risk_presets: Dict[str, AssetRiskParams]
    bootstrap: Dict[str, BootstrapPlan]

    def plan_for(self, contract_name: str) -> BootstrapPlan:
        return self.bootstrap.get(contract_name, EMPTY_PLAN)

    def constants(self) -> Dict[str, Any]:
        """Values exposed to the protocol definition as $CONSTANT variables."""
        constants = {
            "STABLE_ASSET": self.stable_asset,
            "BASE_ASSET": self.base_asset,
        }
        if self.uniswap_factory:
            constants["UNISWAP_FACTORY"] = self.uniswap_factory
        return constants


class Unsupported(NamedTuple):
    """No profile exists for the network; a valid result, not an error."""

    network_id: str


Resolution = Union[NetworkProfile, Unsupported]


def is_local_network(network_name: str) -> bool:
    return network_name in LOCAL_NETWORKS or network_name.endswith(FORK_SUFFIX)


def _lookup_address(value: str, named: Dict[str, ChecksumAddress], field: str) -> ChecksumAddress:
    """Resolves either a literal address or the name of one of the profile's addresses."""
    if value in named:
        return named[value]
    if is_address(value):
        return to_checksum_address(value)
    raise ValueError(f"'{value}' for {field} is neither an address nor one of {sorted(named)}")


def _lookup_preset(presets: Dict[str, Any], name: str, kind: str):
    try:
        return presets[name]
    except KeyError:
        raise ValueError(f"Unknown {kind} preset '{name}'; expected one of {sorted(presets)}")


def _parse_plan(data: Dict, profile_fields: Dict) -> BootstrapPlan:
    assets = {
        "stable": profile_fields["stable_asset"],
        "base": profile_fields["base_asset"],
    }
    pools = profile_fields["price_source_pools"]
    irm_presets = profile_fields["irm_presets"]
    risk_presets = profile_fields["risk_presets"]

    pair_groups = [
        PairGroup(
            name=group["name"],
            quote_asset=_lookup_address(group["quote_asset"], assets, "quote_asset"),
            decimals=int(group["decimals"]),
        )
        for group in data.get("pair_groups") or []
    ]

    group_names = [group.name for group in pair_groups]
    if len(set(group_names)) != len(group_names):
        raise ValueError(f"Duplicate pair group names: {group_names}")

    pairs = list()
    for pair in data.get("pairs") or []:
        if pair["group"] not in group_names:
            raise ValueError(
                f"Pair for pool {pair['pool']} references unknown group {pair['group']}"
            )
        irm = pair["irm"]
        pairs.append(
            Pair(
                group=pair["group"],
                pool=_lookup_address(pair["pool"], pools, "pool"),
                is_isolated=bool(pair.get("is_isolated", False)),
                stable_irm=_lookup_preset(irm_presets, irm["stable"], "irm"),
                underlying_irm=_lookup_preset(irm_presets, irm["underlying"], "irm"),
                risk=_lookup_preset(risk_presets, pair["risk"], "risk"),
            )
        )

    roles = [
        RoleAssignment(method=role["method"], address=to_checksum_address(role["address"]))
        for role in data.get("roles") or []
    ]
    return BootstrapPlan(pair_groups=pair_groups, pairs=pairs, roles=roles)


def profile_from_config(config: Dict) -> NetworkProfile:
    """Builds an immutable network profile from its YAML representation."""
    try:
        network_id = config["network_id"]
        fields = {
            "stable_asset": to_checksum_address(config["stable_asset"]),
            "base_asset": to_checksum_address(config["base_asset"]),
        }
    except KeyError as e:
        raise ValueError(f"Network profile is missing required field {e}")

    fields["price_source_pools"] = {
        name: to_checksum_address(address)
        for name, address in (config.get("price_source_pools") or {}).items()
    }
    fields["irm_presets"] = {
        name: IrmParams(**{key: int(value) for key, value in params.items()})
        for name, params in (config.get("irm_presets") or {}).items()
    }
    fields["risk_presets"] = {
        name: AssetRiskParams(**{key: int(value) for key, value in params.items()})
        for name, params in (config.get("risk_presets") or {}).items()
    }
    factory = config.get("uniswap_factory")
    bootstrap = {
        contract_name: _parse_plan(plan or {}, fields)
        for contract_name, plan in (config.get("bootstrap") or {}).items()
    }
    return NetworkProfile(
        network_id=network_id,
        uniswap_factory=to_checksum_address(factory) if factory else None,
        bootstrap=bootstrap,
        **fields,
    )


class NetworkProfileTable:
    """Static, read-only table of network profiles keyed by network identifier."""

    def __init__(self, profiles: Dict[str, NetworkProfile]):
        self._profiles = dict(profiles)

    @classmethod
    def from_configs(cls, configs: List[Dict]) -> "NetworkProfileTable":
        profiles = dict()
        for config in configs:
            profile = profile_from_config(config)
            if profile.network_id in profiles:
                raise ValueError(f"Duplicate network profile for '{profile.network_id}'")
            profiles[profile.network_id] = profile
        return cls(profiles)

    @classmethod
    def from_directory(cls, directory: Path = PROFILES_DIR) -> "NetworkProfileTable":
        configs = [_load_yaml(filepath) for filepath in sorted(directory.glob("*.yml"))]
        return cls.from_configs(configs)

    @property
    def network_ids(self) -> List[str]:
        return sorted(self._profiles)

    def resolve(self, network_id: str) -> Resolution:
        profile = self._profiles.get(network_id)
        if profile is None:
            return Unsupported(network_id=network_id)
        return profile


def resolve_stable_asset(resolution: Resolution, registry) -> ChecksumAddress:
    """
    Returns the stable asset of a supported network, falling back to the
    locally deployed mock token for networks without a profile.
    """
    if isinstance(resolution, NetworkProfile):
        return resolution.stable_asset
    return registry.get(LOCAL_STABLE_ASSET_NAME).address
