import pytest
from eth_utils import to_checksum_address

from protocol_deployment.constants import PROFILES_DIR
from protocol_deployment.exceptions import ArtifactNotFound
from protocol_deployment.networks import (
    NetworkProfile,
    NetworkProfileTable,
    Unsupported,
    is_local_network,
    profile_from_config,
    resolve_stable_asset,
)

ARBITRUM_USDC = "0xFF970A61A04b1cA14834A43f5dE4533eBDDB5CC8"
GOERLI_USDC = "0xE060e715B6D20b899A654687c445ed8BC35f9dFF"


@pytest.fixture(scope="module")
def packaged_profiles():
    return NetworkProfileTable.from_directory(PROFILES_DIR)


def test_packaged_profiles(packaged_profiles):
    assert packaged_profiles.network_ids == ["arbitrum:goerli", "arbitrum:mainnet"]

    mainnet = packaged_profiles.resolve("arbitrum:mainnet")
    assert isinstance(mainnet, NetworkProfile)
    assert mainnet.stable_asset == ARBITRUM_USDC
    assert mainnet.constants()["STABLE_ASSET"] == ARBITRUM_USDC

    goerli = packaged_profiles.resolve("arbitrum:goerli")
    assert goerli.stable_asset == GOERLI_USDC


def test_packaged_bootstrap_plans(packaged_profiles):
    mainnet = packaged_profiles.resolve("arbitrum:mainnet")
    plan = mainnet.plan_for("Controller")
    assert [group.quote_asset for group in plan.pair_groups] == [ARBITRUM_USDC]
    assert [pair.pool for pair in plan.pairs] == [
        mainnet.price_source_pools["WETH"],
        mainnet.price_source_pools["ARB"],
    ]
    assert plan.pairs[0].underlying_irm.kink_rate == 850000000000000000
    assert plan.pairs[0].stable_irm.kink_rate == 900000000000000000
    assert plan.pairs[0].risk.risk_ratio == 108627804

    hedger = mainnet.plan_for("GammaShortStrategy").roles
    assert [role.method for role in hedger] == ["setHedger"]

    goerli = packaged_profiles.resolve("arbitrum:goerli")
    assert goerli.plan_for("GammaShortStrategy").is_empty
    assert goerli.risk_presets["wide"].risk_ratio == 109544511


def test_resolve_unknown_network(profiles):
    assert profiles.resolve("unknownNet") == Unsupported(network_id="unknownNet")


def test_resolve_is_pure(profiles):
    assert profiles.resolve("testnetA") is profiles.resolve("testnetA")


def test_duplicate_profiles():
    config = {
        "network_id": "testnetA",
        "stable_asset": "0x" + "a" * 40,
        "base_asset": "0x" + "b" * 40,
    }
    with pytest.raises(ValueError, match="Duplicate"):
        NetworkProfileTable.from_configs([config, config])


def test_profile_missing_field():
    with pytest.raises(ValueError, match="stable_asset"):
        profile_from_config({"network_id": "testnetA", "base_asset": "0x" + "b" * 40})


def test_profile_unknown_preset():
    config = {
        "network_id": "testnetA",
        "stable_asset": "0x" + "a" * 40,
        "base_asset": "0x" + "b" * 40,
        "bootstrap": {
            "Controller": {
                "pair_groups": [{"name": "main", "quote_asset": "stable", "decimals": 6}],
                "pairs": [
                    {
                        "group": "main",
                        "pool": "0x" + "c" * 40,
                        "irm": {"stable": "missing", "underlying": "missing"},
                        "risk": "missing",
                    }
                ],
            }
        },
    }
    with pytest.raises(ValueError, match="irm preset"):
        profile_from_config(config)


def test_profile_pair_with_unknown_group():
    config = {
        "network_id": "testnetA",
        "stable_asset": "0x" + "a" * 40,
        "base_asset": "0x" + "b" * 40,
        "bootstrap": {"Controller": {"pairs": [{"group": "main", "pool": "0x" + "c" * 40}]}},
    }
    with pytest.raises(ValueError, match="unknown group"):
        profile_from_config(config)


@pytest.mark.parametrize(
    "network_name, expected",
    [("local", True), ("mainnet-fork", True), ("hardhat", True), ("mainnet", False)],
)
def test_is_local_network(network_name, expected):
    assert is_local_network(network_name) is expected


def test_resolve_stable_asset(profiles, testnet_a, registry):
    assert resolve_stable_asset(testnet_a, registry) == testnet_a.stable_asset

    unsupported = profiles.resolve("unknownNet")
    with pytest.raises(ArtifactNotFound):
        resolve_stable_asset(unsupported, registry)

    mock = registry.deploy("MockERC20")
    assert resolve_stable_asset(unsupported, registry) == to_checksum_address(mock.address)
