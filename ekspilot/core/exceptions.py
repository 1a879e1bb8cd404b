from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ekspilot.core.kubernetes.handles import ClusterHandle


class ProvisioningError(Exception):
    kind: str = 'ProvisioningError'


class InvalidSpecError(ProvisioningError):
    kind = 'InvalidSpec'


class DuplicateNameError(ProvisioningError):
    kind = 'DuplicateName'

    def __init__(self, cluster_name: str, name: str) -> None:
        self.cluster_name = cluster_name
        self.name = name

        super().__init__(f'Name "{name}" is already used on cluster {cluster_name}')


class ClusterNotReadyError(ProvisioningError):
    kind = 'ClusterNotReady'

    def __init__(self, cluster_name: str, state: str) -> None:
        self.cluster_name = cluster_name
        self.state = state

        super().__init__(f'Cluster {cluster_name} is not ready (state: {state})')


class TierPreconditionError(ProvisioningError):
    kind = 'TierPrecondition'


class ProvisionTimeoutError(ProvisioningError):
    """The backend did not report readiness in time. The resource may exist and is left in place."""

    kind = 'ProvisionTimeout'

    def __init__(self, message: str, handle: ClusterHandle | None = None) -> None:
        self.handle = handle

        super().__init__(message)


class BackendError(ProvisioningError):
    kind = 'BackendError'

    def __init__(self, operation: str, resource: str, cause: Any = None) -> None:  # noqa: ANN401 (backend specific cause)
        self.operation = operation
        self.resource = resource
        self.cause = cause

        super().__init__(f'{operation} failed for {resource}: {cause}')


class UnresolvedDependencyError(ProvisioningError):
    kind = 'UnresolvedDependency'

    def __init__(self, missing: dict[str, list[str]]) -> None:
        self.missing = missing

        details = '; '.join(f'{addon} -> {", ".join(refs)}' for addon, refs in missing.items())
        super().__init__(f'Unresolved node group references: {details}')


class NamespaceTerminatingError(Exception):
    pass


class ThrottlingError(Exception):
    pass
