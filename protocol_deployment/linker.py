from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Sequence

from ape.logging import logger
from eth_typing import ChecksumAddress

from protocol_deployment.exceptions import DependencyCycle, UnresolvedDependency
from protocol_deployment.params import ModuleDescriptor
from protocol_deployment.registry import Artifact, ArtifactRegistry


class LinkageMap:
    """Dependency name -> deployed address, assembled as dependencies are satisfied."""

    def __init__(self, addresses: Optional[Dict[str, ChecksumAddress]] = None):
        self._addresses = OrderedDict(addresses or {})
        self.artifacts: Dict[str, Artifact] = OrderedDict()

    def add(self, artifact: Artifact) -> None:
        self._addresses[artifact.name] = artifact.address
        self.artifacts[artifact.name] = artifact

    def resolve(self, names: Iterable[str], dependent: str) -> OrderedDict:
        resolved = OrderedDict()
        for name in names:
            if name not in self._addresses:
                raise UnresolvedDependency(
                    f"{dependent} depends on {name}, which is not linked yet"
                )
            resolved[name] = self._addresses[name]
        return resolved

    def as_dict(self) -> Dict[str, ChecksumAddress]:
        return OrderedDict(self._addresses)

    def __contains__(self, name: str) -> bool:
        return name in self._addresses

    def __getitem__(self, name: str) -> ChecksumAddress:
        return self._addresses[name]

    def __iter__(self):
        return iter(self._addresses)

    def __len__(self) -> int:
        return len(self._addresses)

    def __repr__(self) -> str:
        return f"LinkageMap({dict(self._addresses)})"


def find_cycle(descriptors: Sequence[ModuleDescriptor]) -> Optional[List[str]]:
    """Returns one dependency cycle among the descriptors, if there is any."""
    graph = {descriptor.name: descriptor.depends_on for descriptor in descriptors}
    visiting, done = list(), set()

    def visit(name: str) -> Optional[List[str]]:
        if name in done or name not in graph:
            return None
        if name in visiting:
            return visiting[visiting.index(name):] + [name]
        visiting.append(name)
        for dependency in graph[name]:
            cycle = visit(dependency)
            if cycle:
                return cycle
        visiting.pop()
        done.add(name)
        return None

    for descriptor in descriptors:
        cycle = visit(descriptor.name)
        if cycle:
            return cycle
    return None


def validate_module_order(
    descriptors: Sequence[ModuleDescriptor], linked: Iterable[str] = ()
) -> None:
    """
    Checks the whole list before anything is deployed: names are unique, every
    dependency is known, the graph is acyclic and each module follows its dependencies.
    """
    names = [descriptor.name for descriptor in descriptors]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise ValueError(f"Modules declared more than once: {', '.join(duplicates)}")

    linked = set(linked)
    for descriptor in descriptors:
        unknown = [d for d in descriptor.depends_on if d not in names and d not in linked]
        if unknown:
            raise UnresolvedDependency(
                f"{descriptor.name} depends on unknown module(s): {', '.join(unknown)}"
            )

    cycle = find_cycle(descriptors)
    if cycle:
        raise DependencyCycle(f"Module dependency cycle: {' -> '.join(cycle)}")

    available = set(linked)
    for descriptor in descriptors:
        for dependency in descriptor.depends_on:
            if dependency not in available:
                raise UnresolvedDependency(
                    f"{descriptor.name} is listed before its dependency {dependency}"
                )
        available.add(descriptor.name)


class ModuleLinker:
    """Deploys logic modules in the given order, linking each against its dependencies."""

    def __init__(self, registry: ArtifactRegistry):
        self.registry = registry

    def deploy_modules(
        self,
        descriptors: Sequence[ModuleDescriptor],
        linkage: Optional[LinkageMap] = None,
    ) -> LinkageMap:
        linkage = linkage if linkage is not None else LinkageMap()
        validate_module_order(descriptors, linked=linkage)

        for descriptor in descriptors:
            if descriptor.name in linkage:
                logger.info(f"{descriptor.name} is already linked at {linkage[descriptor.name]}")
                continue
            libraries = linkage.resolve(descriptor.depends_on, dependent=descriptor.name)
            artifact = self.registry.deploy(
                descriptor.name,
                constructor_args=descriptor.resolve_constructor(),
                linked_addresses=libraries,
            )
            linkage.add(artifact)
        return linkage


def linkage_from_registry(registry: ArtifactRegistry, names: Iterable[str]) -> LinkageMap:
    """Rebuilds the linkage of previously deployed modules from the registry."""
    linkage = LinkageMap()
    for name in names:
        linkage.add(registry.get(name))
    return linkage
