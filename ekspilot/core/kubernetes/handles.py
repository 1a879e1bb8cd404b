from dataclasses import dataclass, field
from typing import Any

from ekspilot.core.kubernetes.cluster_state import ClusterState
from ekspilot.core.kubernetes.deployment_status import ResourceStatus


@dataclass(frozen=True)
class IdentityFederation:
    issuer_url: str
    provider_arn: str | None = None

    @property
    def issuer_host(self) -> str:
        return self.issuer_url.removeprefix('https://')


@dataclass(frozen=True)
class ClusterHandle:
    name: str
    resource_id: str
    state: ClusterState
    version: str
    network_id: str
    endpoint: str | None = None
    certificate_authority: str | None = None
    identity_federation: IdentityFederation | None = None

    @property
    def is_ready(self) -> bool:
        return self.state == ClusterState.READY

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'resource_id': self.resource_id,
            'state': str(self.state),
            'version': self.version,
            'network_id': self.network_id,
            'endpoint': self.endpoint,
            'identity_federation': self.identity_federation.issuer_url if self.identity_federation else None,
        }


@dataclass(frozen=True)
class NodeGroupHandle:
    cluster_name: str
    name: str
    status: ResourceStatus
    current_size: int = 0
    min_size: int = 0
    max_size: int = 0
    capacity_type: str | None = None
    placement: str | None = None
    labels: dict[str, str] = field(default_factory=dict)
    # Backend scaling groups backing the pool, tracked by the autoscaler
    scaling_group_names: tuple[str, ...] = ()
    error_kind: str | None = None
    error_message: str | None = None

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'status': str(self.status),
            'current_size': self.current_size,
            'min_size': self.min_size,
            'max_size': self.max_size,
            'capacity_type': self.capacity_type,
            'placement': self.placement,
            'labels': dict(self.labels),
            'error_kind': self.error_kind,
            'error_message': self.error_message,
        }


@dataclass(frozen=True)
class AddonHandle:
    name: str
    kind: str
    tier: int
    status: ResourceStatus
    diagnostics: dict[str, Any] = field(default_factory=dict)
    error_kind: str | None = None
    error_message: str | None = None

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'kind': self.kind,
            'tier': self.tier,
            'status': str(self.status),
            'diagnostics': self.diagnostics,
            'error_kind': self.error_kind,
            'error_message': self.error_message,
        }
