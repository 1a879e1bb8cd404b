import asyncio
from dataclasses import dataclass, field

from ekspilot.core.exceptions import BackendError, InvalidSpecError
from ekspilot.core.kubernetes import RoleReference
from ekspilot.core.providers.base_provider import BaseProvider
from ekspilot.core.utils import setup_logger

# Managed policies the roles are expected to carry. Attaching them is done outside ekspilot.
CLUSTER_ROLE_POLICIES = ('AmazonEKSClusterPolicy',)
WORKER_ROLE_POLICIES = (
    'AmazonEKSWorkerNodePolicy',
    'AmazonEKS_CNI_Policy',
    'AmazonEC2ContainerRegistryReadOnly',
)


@dataclass(frozen=True)
class IdentityPlan:
    cluster_role: RoleReference
    worker_role: RoleReference
    master_roles: tuple[RoleReference, ...] = ()

    def to_dict(self) -> dict:
        return {
            'cluster_role': self.cluster_role.arn,
            'worker_role': self.worker_role.arn,
            'master_roles': [x.arn for x in self.master_roles],
        }


@dataclass(frozen=True)
class MasterIdentityBinding:
    role: RoleReference
    cluster_name: str
    created: bool = False

    def to_dict(self) -> dict:
        return {'role': self.role.arn, 'cluster_name': self.cluster_name, 'created': self.created}


@dataclass(frozen=True)
class ResolvedIdentities:
    cluster_role: RoleReference
    worker_role: RoleReference
    # role ARN -> binding, one per master role
    bindings: dict[str, MasterIdentityBinding] = field(default_factory=dict)

    def diagnostics(self) -> dict:
        return {
            'cluster_role': {'arn': self.cluster_role.arn, 'expected_policies': list(CLUSTER_ROLE_POLICIES)},
            'worker_role': {'arn': self.worker_role.arn, 'expected_policies': list(WORKER_ROLE_POLICIES)},
            'master_roles': list(self.bindings),
        }


class IdentityBinder:
    """Checks the roles of a plan against the backend and prepares the master bindings."""

    def __init__(self, provider: BaseProvider) -> None:
        self._logger = setup_logger('IdentityBinder')

        self._provider = provider

    async def resolve(self, plan: IdentityPlan, cluster_name: str) -> ResolvedIdentities:
        roles = [plan.cluster_role, plan.worker_role, *plan.master_roles]

        invalid = [x.arn for x in roles if not x.is_valid]
        if invalid:
            raise InvalidSpecError(f'Invalid role reference(s): {invalid}')

        unique = list(dict.fromkeys(x.arn for x in roles))
        exists = await asyncio.gather(*(self._provider.role_exists(x) for x in unique))

        missing = [arn for arn, found in zip(unique, exists, strict=True) if not found]
        if missing:
            raise BackendError('resolve_role', ', '.join(missing), 'role does not exist')

        bindings = {x.arn: MasterIdentityBinding(role=x, cluster_name=cluster_name) for x in plan.master_roles}

        self._logger.info(f'Resolved {len(unique)} role(s), {len(bindings)} master binding(s) for {cluster_name}')

        return ResolvedIdentities(cluster_role=plan.cluster_role, worker_role=plan.worker_role, bindings=bindings)
