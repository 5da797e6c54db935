import pytest

from protocol_deployment.exceptions import DependencyCycle, UnresolvedDependency
from protocol_deployment.linker import (
    LinkageMap,
    ModuleLinker,
    find_cycle,
    linkage_from_registry,
    validate_module_order,
)
from protocol_deployment.params import ModuleDescriptor

MODULES = [
    ModuleDescriptor("UpdateMarginLogic"),
    ModuleDescriptor("TradeLogic"),
    ModuleDescriptor("TradePerpLogic", depends_on=("UpdateMarginLogic", "TradeLogic")),
    ModuleDescriptor("LiquidationLogic", depends_on=("TradeLogic",)),
    ModuleDescriptor("IsolatedVaultLogic", depends_on=("TradePerpLogic",)),
]


@pytest.fixture()
def linker(registry):
    return ModuleLinker(registry)


def test_deploy_modules_links_recorded_addresses(linker, registry, ledger):
    linkage = linker.deploy_modules(MODULES)

    assert list(linkage) == [descriptor.name for descriptor in MODULES]
    for name in linkage:
        assert linkage[name] == registry.get(name).address

    # every module is deployed with exactly the addresses of its dependencies
    deployments = {call.method: call.args[1] for call in ledger.calls_of("deploy")}
    assert deployments["TradePerpLogic"] == {
        "UpdateMarginLogic": linkage["UpdateMarginLogic"],
        "TradeLogic": linkage["TradeLogic"],
    }
    assert deployments["IsolatedVaultLogic"] == {"TradePerpLogic": linkage["TradePerpLogic"]}
    assert deployments["TradeLogic"] == {}


def test_deploy_modules_twice_is_noop(linker, ledger):
    first = linker.deploy_modules(MODULES)
    calls = len(ledger.calls)

    second = linker.deploy_modules(MODULES)
    assert second.as_dict() == first.as_dict()
    assert len(ledger.calls) == calls
    assert not any(artifact.is_newly_deployed for artifact in second.artifacts.values())


def test_changed_dependency_relinks_dependents(linker, ledger):
    first = linker.deploy_modules(MODULES)
    ledger.recompile("TradePerpLogic")

    second = linker.deploy_modules(MODULES)
    redeployed = [name for name, artifact in second.artifacts.items() if artifact.is_newly_deployed]
    assert redeployed == ["TradePerpLogic", "IsolatedVaultLogic"]
    assert second["TradeLogic"] == first["TradeLogic"]


def test_unresolved_dependency_issues_no_calls(linker, ledger):
    descriptors = [
        ModuleDescriptor("TradePerpLogic", depends_on=("TradeLogic",)),
        ModuleDescriptor("TradeLogic"),
    ]
    with pytest.raises(UnresolvedDependency, match="TradeLogic"):
        linker.deploy_modules(descriptors)
    assert ledger.calls == []


def test_unknown_dependency_issues_no_calls(linker, ledger):
    descriptors = [ModuleDescriptor("LiquidationLogic", depends_on=("TradeLogic",))]
    with pytest.raises(UnresolvedDependency, match="unknown"):
        linker.deploy_modules(descriptors)
    assert ledger.calls == []


def test_dependency_cycle(linker, ledger):
    descriptors = [
        ModuleDescriptor("A", depends_on=("C",)),
        ModuleDescriptor("B", depends_on=("A",)),
        ModuleDescriptor("C", depends_on=("B",)),
    ]
    assert find_cycle(descriptors) == ["A", "C", "B", "A"]
    with pytest.raises(DependencyCycle):
        linker.deploy_modules(descriptors)
    assert ledger.calls == []


def test_duplicate_module_names():
    with pytest.raises(ValueError, match="TradeLogic"):
        validate_module_order([ModuleDescriptor("TradeLogic"), ModuleDescriptor("TradeLogic")])


def test_already_linked_modules_are_not_relinked(linker, registry, ledger):
    trade = registry.deploy("TradeLogic")
    linkage = LinkageMap({"TradeLogic": trade.address})

    linkage = linker.deploy_modules(
        [ModuleDescriptor("LiquidationLogic", depends_on=("TradeLogic",))], linkage=linkage
    )
    deployed = [call.method for call in ledger.calls_of("deploy")]
    assert deployed == ["TradeLogic", "LiquidationLogic"]
    assert linkage["TradeLogic"] == trade.address


def test_linkage_from_registry(linker, registry):
    deployed = linker.deploy_modules(MODULES)
    rebuilt = linkage_from_registry(registry, ["TradeLogic", "TradePerpLogic"])
    assert rebuilt.as_dict() == {
        "TradeLogic": deployed["TradeLogic"],
        "TradePerpLogic": deployed["TradePerpLogic"],
    }
