from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from ekspilot.core.addons.addon_spec import (
    DEFAULT_GITOPS_BRANCH,
    DEFAULT_GITOPS_SECRET_NAME,
    AddonSpec,
    AutoscalerSpec,
    GitOpsSyncSpec,
    LoadBalancerControllerSpec,
)
from ekspilot.core.kubernetes import (
    CapacityPolicy,
    CapacityType,
    ClusterSpec,
    KubernetesVersion,
    NodeGroupSpec,
    PlacementKind,
    RoleReference,
)
from ekspilot.core.provisioning.identity_binder import IdentityPlan
from ekspilot.core.provisioning.plan import ProvisioningPlan


class ClusterSchema(BaseModel):
    name: str
    role_arn: str
    version: KubernetesVersion = KubernetesVersion.V1_20
    tags: dict[str, str] = Field(default_factory=dict)


class NodeGroupSchema(BaseModel):
    name: str
    min_size: int
    desired_size: int
    max_size: int
    capacity_type: CapacityType = CapacityType.ON_DEMAND
    instance_types: list[str] = Field(default_factory=list)
    placement: PlacementKind | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    disk_size: int = 20
    # Falls back to the plan's worker role
    worker_role_arn: str | None = None

    def to_spec(self, default_worker_role: str) -> NodeGroupSpec:
        return NodeGroupSpec(
            name=self.name,
            worker_role=RoleReference(self.worker_role_arn or default_worker_role),
            capacity=CapacityPolicy(min_size=self.min_size, desired_size=self.desired_size, max_size=self.max_size),
            capacity_type=self.capacity_type,
            instance_types=tuple(self.instance_types),
            placement=self.placement,
            labels=dict(self.labels),
            disk_size=self.disk_size,
        )


class AutoscalerAddonSchema(BaseModel):
    kind: Literal['autoscaler'] = 'autoscaler'
    name: str = 'cluster-autoscaler'
    node_groups: list[str] = Field(default_factory=list)
    match_labels: dict[str, str] = Field(default_factory=dict)

    def to_spec(self) -> AutoscalerSpec:
        return AutoscalerSpec(node_groups=tuple(self.node_groups), match_labels=dict(self.match_labels), name=self.name)


class GitOpsSyncAddonSchema(BaseModel):
    kind: Literal['gitops_sync'] = 'gitops_sync'
    name: str = 'flux'
    repo_url: str
    repo_path: str
    repo_branch: str = DEFAULT_GITOPS_BRANCH
    secret_name: str = DEFAULT_GITOPS_SECRET_NAME
    namespace: str = 'flux-system'
    sync_interval: str = '1m'

    def to_spec(self) -> GitOpsSyncSpec:
        return GitOpsSyncSpec(
            repo_url=self.repo_url,
            repo_path=self.repo_path,
            repo_branch=self.repo_branch,
            secret_name=self.secret_name,
            namespace=self.namespace,
            sync_interval=self.sync_interval,
            name=self.name,
        )


class LoadBalancerControllerAddonSchema(BaseModel):
    kind: Literal['load_balancer_controller'] = 'load_balancer_controller'
    name: str = 'aws-load-balancer-controller'
    namespace: str = 'kube-system'
    service_account_role_arn: str | None = None

    def to_spec(self) -> LoadBalancerControllerSpec:
        role = self.service_account_role_arn

        return LoadBalancerControllerSpec(
            namespace=self.namespace, service_account_role=RoleReference(role) if role else None, name=self.name
        )


AddonSchema = Annotated[
    AutoscalerAddonSchema | GitOpsSyncAddonSchema | LoadBalancerControllerAddonSchema,
    Field(discriminator='kind'),
]


class ProvisioningPlanSchema(BaseModel):
    network_id: str
    cluster: ClusterSchema
    worker_role_arn: str
    master_role_arns: list[str] = Field(default_factory=list)
    node_groups: list[NodeGroupSchema] = Field(default_factory=list)
    addons: list[AddonSchema] = Field(default_factory=list)

    def to_plan(self) -> ProvisioningPlan:
        cluster_role = RoleReference(self.cluster.role_arn)

        addons: tuple[AddonSpec, ...] = tuple(x.to_spec() for x in self.addons)

        return ProvisioningPlan(
            identities=IdentityPlan(
                cluster_role=cluster_role,
                worker_role=RoleReference(self.worker_role_arn),
                master_roles=tuple(RoleReference(x) for x in self.master_role_arns),
            ),
            network_id=self.network_id,
            cluster=ClusterSpec(
                name=self.cluster.name,
                role=cluster_role,
                network_id=self.network_id,
                version=self.cluster.version,
                tags=dict(self.cluster.tags),
            ),
            node_groups=tuple(x.to_spec(self.worker_role_arn) for x in self.node_groups),
            addons=addons,
        )


class ProvisioningRunCreateSchema(BaseModel):
    provider: str = 'aws'
    provider_config: dict = Field(default_factory=dict)
    plan: ProvisioningPlanSchema


class ProvisioningRunCreateResponseSchema(BaseModel):
    id: int
    cluster_name: str
    state: str


class ProvisioningRunSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    cluster_name: str
    provider: str
    state: str
    failed_stage: str | None = None
    error_message: str | None = None
    report: dict | None = None
    created_at: datetime
    finished_at: datetime | None = None
