from dataclasses import dataclass

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
    RoleReference,
)
from ekspilot.core.kubernetes.configuration import DEFAULT_SPOT_INSTANCE_TYPES
from ekspilot.core.provisioning.identity_binder import IdentityPlan


@dataclass(frozen=True)
class ProvisioningPlan:
    identities: IdentityPlan
    network_id: str
    cluster: ClusterSpec
    node_groups: tuple[NodeGroupSpec, ...] = ()
    addons: tuple[AddonSpec, ...] = ()

    def to_dict(self) -> dict:
        return {
            'identities': self.identities.to_dict(),
            'network_id': self.network_id,
            'cluster': self.cluster.to_dict(),
            'node_groups': [x.to_dict() for x in self.node_groups],
            'addons': [{'kind': str(x.kind), 'name': x.name} for x in self.addons],
        }

    @classmethod
    def default(
        cls,
        cluster_name: str,
        network_id: str,
        cluster_role: str,
        worker_role: str,
        repo_url: str,
        repo_path: str,
        repo_branch: str = DEFAULT_GITOPS_BRANCH,
        secret_name: str = DEFAULT_GITOPS_SECRET_NAME,
        master_roles: tuple[str, ...] = (),
        version: str = KubernetesVersion.V1_20,
    ) -> 'ProvisioningPlan':
        """
        Development topology: a small On-Demand pool for control apps, a larger Spot pool for workloads,
        cluster autoscaling over both, Flux syncing from the given repository and the AWS load balancer controller.
        """
        workers = RoleReference(worker_role)

        node_groups = (
            NodeGroupSpec(
                name='dev-2vcpu-8gb-ondemand',
                worker_role=workers,
                capacity=CapacityPolicy(min_size=2, desired_size=2, max_size=2),
                capacity_type=CapacityType.ON_DEMAND,
                instance_types=('m5.large',),
                labels={'intent': 'control-apps'},
            ),
            NodeGroupSpec(
                name='dev-4vcpu-16gb-spot',
                worker_role=workers,
                capacity=CapacityPolicy(min_size=2, desired_size=2, max_size=5),
                capacity_type=CapacityType.SPOT,
                instance_types=DEFAULT_SPOT_INSTANCE_TYPES,
                labels={'intent': 'apps'},
            ),
        )

        return cls(
            identities=IdentityPlan(
                cluster_role=RoleReference(cluster_role),
                worker_role=workers,
                master_roles=tuple(RoleReference(x) for x in master_roles),
            ),
            network_id=network_id,
            cluster=ClusterSpec(name=cluster_name, role=RoleReference(cluster_role), network_id=network_id, version=version),
            node_groups=node_groups,
            addons=(
                AutoscalerSpec(node_groups=tuple(x.name for x in node_groups)),
                GitOpsSyncSpec(repo_url=repo_url, repo_path=repo_path, repo_branch=repo_branch, secret_name=secret_name),
                LoadBalancerControllerSpec(),
            ),
        )
