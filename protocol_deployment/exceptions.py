class OrchestrationError(Exception):
    """Base class for failures that abort a deployment run."""


class TransactionReverted(OrchestrationError):
    """Raised by an execution environment when the ledger rejects a transaction."""


class DeploymentFailure(OrchestrationError):
    """The execution environment rejected a deployment."""

    def __init__(self, name: str, reason: str):
        self.name = name
        self.reason = reason
        super().__init__(f"Deployment of {name} failed: {reason}")


class UnresolvedDependency(OrchestrationError):
    """A module names a dependency that is not linked yet (descriptor ordering bug)."""


class DependencyCycle(UnresolvedDependency):
    """The module graph contains a cycle, so no valid deployment order exists."""


class MissingLinkage(OrchestrationError):
    """Linking requires an address that was not supplied."""

    def __init__(self, name: str, missing):
        self.name = name
        self.missing = sorted(missing)
        super().__init__(
            f"{name} cannot be linked, missing addresses for: {', '.join(self.missing)}"
        )


class InitializationFailure(OrchestrationError):
    """The one-time initializer reverted; `address` is the contract it was run against."""

    def __init__(self, name: str, address: str, reason: str):
        self.name = name
        self.address = address
        self.reason = reason
        super().__init__(f"Initialization of {name} at {address} failed: {reason}")


class BootstrapFailure(OrchestrationError):
    """A configuration call of the bootstrap sequence reverted."""

    def __init__(self, name: str, state, reason: str, calls=(), result=None):
        self.name = name
        self.state = state
        self.reason = reason
        self.calls = list(calls)
        self.result = result
        super().__init__(f"Bootstrap of {name} failed after {state.value}: {reason}")


class ArtifactNotFound(OrchestrationError):
    """No artifact of the requested name (and kind) is recorded for this environment."""
