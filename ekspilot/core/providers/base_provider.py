from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ekspilot.core.kubernetes.cluster_state import ClusterState
from ekspilot.core.kubernetes.deployment_status import ResourceStatus
from ekspilot.core.utils import setup_logger

if TYPE_CHECKING:
    from ekspilot.core.addons.base_addon import BaseAddon
    from ekspilot.core.kubernetes import ClusterHandle, ClusterSpec, IdentityFederation, NodeGroupSpec, PlacementKind


@dataclass(frozen=True)
class Subnet:
    id: str
    is_public: bool
    availability_zone: str | None = None


@dataclass(frozen=True)
class ClusterDescription:
    name: str
    resource_id: str
    state: ClusterState
    version: str
    role_arn: str
    endpoint: str | None = None
    certificate_authority: str | None = None


@dataclass(frozen=True)
class NodeGroupDescription:
    name: str
    status: ResourceStatus
    capacity_type: str
    instance_types: tuple[str, ...]
    min_size: int
    desired_size: int
    max_size: int
    labels: dict[str, str] = field(default_factory=dict)
    subnet_ids: tuple[str, ...] = ()
    scaling_group_names: tuple[str, ...] = ()
    health_issues: tuple[str, ...] = ()


@dataclass(frozen=True)
class AddonDescription:
    release_name: str
    namespace: str
    chart_name: str
    status: str
    revision: int | None = None


class BaseProvider(ABC):
    """Resource-provisioning backend that turns declared resources into running ones."""

    name: str

    def __init__(self) -> None:
        self._logger = setup_logger(self.name.capitalize())

    @abstractmethod
    async def list_subnets(self, network_id: str) -> list[Subnet]:
        pass

    @abstractmethod
    async def role_exists(self, role_arn: str) -> bool:
        pass

    @abstractmethod
    async def describe_cluster(self, name: str) -> ClusterDescription | None:
        pass

    @abstractmethod
    async def create_cluster(self, spec: ClusterSpec) -> None:
        pass

    @abstractmethod
    async def resolve_identity_federation(self, cluster_name: str) -> IdentityFederation | None:
        pass

    @abstractmethod
    async def bind_master_role(self, cluster_name: str, role_arn: str) -> bool:
        """Grant cluster-admin to the role. Returns False when the binding already existed."""

    @abstractmethod
    async def describe_node_group(self, cluster_name: str, name: str) -> NodeGroupDescription | None:
        pass

    @abstractmethod
    async def create_node_group(
        self, cluster_name: str, spec: NodeGroupSpec, placement: PlacementKind, subnet_ids: tuple[str, ...]
    ) -> None:
        pass

    @abstractmethod
    async def describe_addon(self, cluster: ClusterHandle, addon: BaseAddon) -> AddonDescription | None:
        pass

    @abstractmethod
    async def install_addon(self, cluster: ClusterHandle, addon: BaseAddon, timeout: float) -> dict[str, Any]:
        """Install the addon and wait for it to report healthy. Returns a diagnostic payload."""
