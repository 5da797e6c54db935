from collections import OrderedDict
from typing import Any, Dict, List, NamedTuple, Optional

from ape.logging import logger

from protocol_deployment.bootstrap import BootstrapResult, BootstrapSequencer
from protocol_deployment.constants import (
    CORE_CONTRACT_NAME,
    LOCAL_STABLE_ASSET_NAME,
    UPDATE_ASSET_RISK_PARAMS_METHOD,
)
from protocol_deployment.environment import TransactionReceipt
from protocol_deployment.linker import LinkageMap, ModuleLinker, linkage_from_registry
from protocol_deployment.networks import (
    AssetRiskParams,
    NetworkProfile,
    NetworkProfileTable,
    resolve_stable_asset,
)
from protocol_deployment.params import ContractSpec, ProtocolDefinition
from protocol_deployment.proxy import CoreContractHandle, ProxyUpgradeExecutor, check_linkage
from protocol_deployment.registry import Artifact, ArtifactKind, ArtifactRegistry


class StageReport(NamedTuple):
    stage: str
    artifacts: List[Artifact]
    cores: List[CoreContractHandle]
    bootstraps: Dict[str, BootstrapResult]

    @property
    def newly_deployed(self) -> List[str]:
        names = [artifact.name for artifact in self.artifacts if artifact.is_newly_deployed]
        names += [core.name for core in self.cores if core.is_newly_deployed]
        return names


class Pipeline:
    """
    Runs the stages of the protocol definition against one environment.
    Every stage is idempotent, so a failed run is recovered by running it again.
    """

    def __init__(
        self,
        definition: ProtocolDefinition,
        registry: ArtifactRegistry,
        profiles: NetworkProfileTable,
        network_id: Optional[str] = None,
    ):
        self.definition = definition
        self.registry = registry
        self.environment = registry.environment
        self.network_id = network_id or self.environment.network_id
        self.resolution = profiles.resolve(self.network_id)
        self.linker = ModuleLinker(registry)
        self.executor = ProxyUpgradeExecutor(registry)
        self.sequencer = BootstrapSequencer(self.environment)

    @property
    def profile(self) -> Optional[NetworkProfile]:
        if isinstance(self.resolution, NetworkProfile):
            return self.resolution
        return None

    def constants(self) -> Dict[str, Any]:
        """Network constants for the protocol definition's $CONSTANT variables."""
        if self.profile is not None:
            return self.profile.constants()
        if LOCAL_STABLE_ASSET_NAME in self.registry:
            return {"STABLE_ASSET": resolve_stable_asset(self.resolution, self.registry)}
        return dict()

    def run(self) -> List[StageReport]:
        return [self.run_stage(stage_name) for stage_name in self.definition.stage_names]

    def run_stage(self, stage_name: str) -> StageReport:
        logger.info(f"Running stage '{stage_name}' on {self.network_id}")
        stage = self.definition.stage(
            stage_name,
            constants=self.constants(),
            registry=self.registry,
            deployer_address=self.environment.deployer_address,
        )

        linkage = self._recorded_linkage(exclude=[d.name for d in stage.modules])
        linkage = self.linker.deploy_modules(stage.modules, linkage=linkage)
        artifacts = [
            linkage.artifacts[d.name] for d in stage.modules if d.name in linkage.artifacts
        ]

        if self.environment.is_local:
            for spec in stage.mocks:
                artifacts.append(self._deploy_contract(spec, linkage))

        cores, bootstraps = list(), OrderedDict()
        for spec in stage.contracts:
            if spec.proxied:
                core = self.executor.deploy_core(
                    spec.name,
                    linkage,
                    constructor_args=spec.resolve_constructor(),
                    initializer=spec.initializer,
                    libraries=spec.libraries,
                )
                cores.append(core)
                bootstraps[spec.name] = self.sequencer.run(core, self.resolution)
            else:
                artifacts.append(self._deploy_contract(spec, linkage))

        report = StageReport(
            stage=stage_name, artifacts=artifacts, cores=cores, bootstraps=bootstraps
        )
        self._finalize(report)
        return report

    def update_asset_risk_params(
        self, pair_id: int, risk: AssetRiskParams, core_name: str = CORE_CONTRACT_NAME
    ) -> TransactionReceipt:
        """Replaces the risk parameters of one registered pair on the live core."""
        core = self.registry.get(core_name, kind=ArtifactKind.PROXY)
        logger.info(f"Updating asset risk params of pair {pair_id} on {core_name}")
        receipt = self.environment.transact(
            core.address, core_name, UPDATE_ASSET_RISK_PARAMS_METHOD, pair_id, risk
        )
        logger.success(f"Updated asset risk params of pair {pair_id}")
        return receipt

    def _recorded_linkage(self, exclude: List[str]) -> LinkageMap:
        names = [
            descriptor.name
            for descriptor in self.definition.modules()
            if descriptor.name in self.registry and descriptor.name not in exclude
        ]
        return linkage_from_registry(self.registry, names)

    def _deploy_contract(self, spec: ContractSpec, linkage: LinkageMap) -> Artifact:
        libraries = check_linkage(self.environment, spec.name, spec.libraries, linkage)
        return self.registry.deploy(
            spec.name,
            constructor_args=spec.resolve_constructor(),
            linked_addresses=libraries,
        )

    def _finalize(self, report: StageReport) -> None:
        addresses = [a.address for a in report.artifacts if a.is_newly_deployed]
        for core in report.cores:
            if core.is_newly_deployed or core.is_upgraded:
                addresses.append(core.implementation)
        if addresses:
            self.environment.finalize(addresses)
        newly_deployed = report.newly_deployed
        if newly_deployed:
            logger.success(f"Stage '{report.stage}' deployed: {', '.join(newly_deployed)}")
        else:
            logger.info(f"Stage '{report.stage}' is up to date.")

