from collections import OrderedDict
from typing import Any, Dict, Iterable, NamedTuple, Optional

from ape.logging import logger
from eth_typing import ChecksumAddress

from protocol_deployment.exceptions import (
    InitializationFailure,
    MissingLinkage,
    TransactionReverted,
)
from protocol_deployment.linker import LinkageMap
from protocol_deployment.params import Initializer
from protocol_deployment.registry import Artifact, ArtifactRegistry


class CoreContractHandle(NamedTuple):
    """A proxy-fronted stateful contract; `address` is the proxy and never changes."""

    name: str
    address: ChecksumAddress
    implementation: ChecksumAddress
    is_newly_deployed: bool
    is_upgraded: bool = False


def check_linkage(
    environment,
    name: str,
    libraries: Iterable[str],
    linked_modules: LinkageMap,
) -> OrderedDict:
    """
    Pre-flight check that every library the contract links against has an address.
    Returns the addresses to link, in declaration order.
    """
    libraries = list(libraries)
    required = list(libraries)
    required += sorted(set(environment.required_libraries(name)) - set(libraries))
    missing = [library for library in required if library not in linked_modules]
    if missing:
        raise MissingLinkage(name, missing)
    return OrderedDict((library, linked_modules[library]) for library in required)


class ProxyUpgradeExecutor:
    """
    Deploys a core contract behind a proxy on its first run and upgrades the
    implementation in place on later runs. The initializer runs inside the proxy
    deployment transaction, so a fresh proxy is never observable uninitialized.
    """

    def __init__(self, registry: ArtifactRegistry):
        self.registry = registry
        self.environment = registry.environment

    def deploy_core(
        self,
        name: str,
        linked_modules: LinkageMap,
        constructor_args: Optional[Dict[str, Any]] = None,
        initializer: Optional[Initializer] = None,
        libraries: Optional[Iterable[str]] = None,
    ) -> CoreContractHandle:
        if libraries is None:
            libraries = list(linked_modules)
        linked = check_linkage(self.environment, name, libraries, linked_modules)

        initializer_data = None
        if initializer is not None:
            initializer_data = self.environment.encode_call(
                name, initializer.method, *initializer.resolve()
            )

        artifact = self.registry.deploy(
            name,
            constructor_args=constructor_args,
            linked_addresses=linked,
            behind_proxy=True,
            initializer_data=initializer_data,
        )

        # a proxy recorded without initialization, e.g. by an interrupted run
        pending_initialization = not artifact.initialized
        if pending_initialization:
            if not artifact.is_newly_deployed:
                logger.warning(
                    f"{name} at {artifact.address} was deployed by an earlier run "
                    "but never initialized; resuming."
                )
            if initializer is not None:
                self._initialize(artifact, initializer)
            self.registry.mark_initialized(name)

        return CoreContractHandle(
            name=name,
            address=artifact.address,
            implementation=artifact.implementation,
            is_newly_deployed=artifact.is_newly_deployed or pending_initialization,
            is_upgraded=artifact.is_upgraded,
        )

    def _initialize(self, artifact: Artifact, initializer: Initializer) -> None:
        args = initializer.resolve()
        logger.info(f"Initializing {artifact.name} at {artifact.address} via {initializer.method}")
        try:
            self.environment.transact(artifact.address, artifact.name, initializer.method, *args)
        except TransactionReverted as e:
            raise InitializationFailure(artifact.name, artifact.address, str(e)) from e
