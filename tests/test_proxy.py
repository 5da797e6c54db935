import pytest
from eth_utils import to_checksum_address

from protocol_deployment.exceptions import (
    DeploymentFailure,
    InitializationFailure,
    MissingLinkage,
)
from protocol_deployment.linker import LinkageMap, ModuleLinker
from protocol_deployment.params import Initializer, ModuleDescriptor
from protocol_deployment.proxy import ProxyUpgradeExecutor, check_linkage
from protocol_deployment.registry import ArtifactKind, ArtifactRegistry

QUOTE_ASSET = to_checksum_address("0x" + "a" * 40)

CORE_MODULES = [
    ModuleDescriptor("TradeLogic"),
    ModuleDescriptor("SupplyLogic"),
]

INITIALIZER = Initializer(method="initialize", args=[QUOTE_ASSET])


@pytest.fixture()
def executor(registry):
    return ProxyUpgradeExecutor(registry)


@pytest.fixture()
def linkage(registry):
    return ModuleLinker(registry).deploy_modules(CORE_MODULES)


def initializations(ledger):
    return [call for call in ledger.calls if call.method == "initialize"]


def test_deploy_core_initializes_within_proxy_deployment(executor, linkage, ledger, registry):
    core = executor.deploy_core("Controller", linkage, initializer=INITIALIZER)

    assert core.is_newly_deployed
    assert not core.is_upgraded
    assert core.address == registry.get("Controller", kind=ArtifactKind.PROXY).address
    assert core.implementation == registry.get("Controller_Implementation").address
    assert registry.get("Controller").initialized

    # the proxy is never left callable before initialization
    assert ledger.calls_of("transact") == []
    (proxy_deploy,) = ledger.calls_of("deploy_proxy")
    assert proxy_deploy.target == core.implementation
    assert proxy_deploy.method == "initialize"
    assert proxy_deploy.args == (QUOTE_ASSET,)

    # every linked module is linked into the implementation
    implementation_deploy = ledger.calls_of("deploy")[-1]
    assert implementation_deploy.method == "Controller"
    assert implementation_deploy.args[1] == linkage.as_dict()


def test_deploy_core_twice_is_noop(executor, linkage, ledger):
    first = executor.deploy_core("Controller", linkage, initializer=INITIALIZER)
    calls = len(ledger.calls)

    second = executor.deploy_core("Controller", linkage, initializer=INITIALIZER)
    assert second.address == first.address
    assert not second.is_newly_deployed
    assert not second.is_upgraded
    assert len(ledger.calls) == calls


def test_upgrade_keeps_address_and_does_not_reinitialize(executor, linkage, ledger):
    first = executor.deploy_core("Controller", linkage, initializer=INITIALIZER)
    ledger.recompile("Controller")

    upgraded = executor.deploy_core("Controller", linkage, initializer=INITIALIZER)
    assert upgraded.address == first.address
    assert upgraded.implementation != first.implementation
    assert upgraded.is_upgraded
    assert not upgraded.is_newly_deployed
    assert ledger.proxies[first.address] == upgraded.implementation
    assert len(ledger.calls_of("upgrade_proxy")) == 1
    assert len(ledger.calls_of("deploy_proxy")) == 1
    assert len(initializations(ledger)) == 1


def test_relinked_module_upgrades_core(executor, registry, ledger):
    linker = ModuleLinker(registry)
    first = executor.deploy_core(
        "Controller", linker.deploy_modules(CORE_MODULES), initializer=INITIALIZER
    )

    ledger.recompile("TradeLogic")
    linkage = linker.deploy_modules(CORE_MODULES)
    upgraded = executor.deploy_core("Controller", linkage, initializer=INITIALIZER)
    assert upgraded.is_upgraded
    assert upgraded.address == first.address


def test_missing_linkage_issues_no_calls(executor, ledger):
    ledger.libraries["Controller"] = {"TradeLogic", "SupplyLogic"}
    partial = LinkageMap({"TradeLogic": "0x" + "1" * 40})

    with pytest.raises(MissingLinkage) as error:
        executor.deploy_core("Controller", partial, initializer=INITIALIZER)
    assert error.value.missing == ["SupplyLogic"]
    assert ledger.calls == []


def test_check_linkage_declared_subset(ledger, linkage):
    ledger.libraries["Reader"] = {"SupplyLogic"}
    linked = check_linkage(ledger, "Reader", [], linkage)
    assert dict(linked) == {"SupplyLogic": linkage["SupplyLogic"]}

    with pytest.raises(MissingLinkage, match="ReaderLogic"):
        check_linkage(ledger, "Reader", ["ReaderLogic"], linkage)


def test_reverting_initializer(executor, linkage, ledger, registry):
    ledger.reverts.add("initialize")

    with pytest.raises(InitializationFailure) as error:
        executor.deploy_core("Controller", linkage, initializer=INITIALIZER)
    implementation = registry.get("Controller_Implementation")
    assert error.value.address == implementation.address
    assert "Controller" not in registry
    assert ledger.calls_of("deploy_proxy") == []

    ledger.reverts.clear()
    core = executor.deploy_core("Controller", linkage, initializer=INITIALIZER)
    assert core.is_newly_deployed
    assert core.implementation == implementation.address
    assert len(initializations(ledger)) == 1


def test_reverting_proxy_deployment_without_initializer(executor, linkage, ledger):
    ledger.reverts.add("deploy_proxy")

    with pytest.raises(DeploymentFailure, match="GammaShortStrategy"):
        executor.deploy_core("GammaShortStrategy", linkage, libraries=[])


def test_uninitialized_proxy_resumes(executor, linkage, ledger, registry, registry_filepath):
    # a proxy recorded without initialization by an earlier run
    proxy = registry.deploy("Controller", linked_addresses=linkage.as_dict(), behind_proxy=True)
    assert not proxy.initialized

    executor = ProxyUpgradeExecutor(ArtifactRegistry(ledger, filepath=registry_filepath))
    core = executor.deploy_core("Controller", linkage, initializer=INITIALIZER)

    assert core.is_newly_deployed
    assert core.address == proxy.address
    assert len(ledger.calls_of("deploy_proxy")) == 1
    (initialize,) = ledger.calls_of("transact")
    assert (initialize.target, initialize.method) == (proxy.address, "initialize")
    assert initialize.args == (QUOTE_ASSET,)
    assert executor.registry.get("Controller").initialized

    again = executor.deploy_core("Controller", linkage, initializer=INITIALIZER)
    assert not again.is_newly_deployed
    assert len(initializations(ledger)) == 1


def test_reverting_resumed_initializer(executor, linkage, ledger, registry):
    proxy = registry.deploy("Controller", linked_addresses=linkage.as_dict(), behind_proxy=True)
    ledger.reverts.add("initialize")

    with pytest.raises(InitializationFailure) as error:
        executor.deploy_core("Controller", linkage, initializer=INITIALIZER)
    assert error.value.address == proxy.address
    assert not registry.get("Controller").initialized


def test_core_without_initializer(executor, linkage, ledger, registry):
    core = executor.deploy_core("GammaShortStrategy", linkage, libraries=[])

    assert core.is_newly_deployed
    assert initializations(ledger) == []
    assert registry.get("GammaShortStrategy").initialized
