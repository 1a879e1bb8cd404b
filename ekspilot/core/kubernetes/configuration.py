import re
from dataclasses import dataclass, field
from enum import StrEnum

ROLE_ARN_PATTERN = re.compile(r'^arn:aws[a-z-]*:iam::\d{12}:role/[\w+=,.@/-]+$')

# Spot preference order for cost-optimised pools
DEFAULT_SPOT_INSTANCE_TYPES = (
    'm4.xlarge',
    'm5.xlarge',
    'm5a.xlarge',
    'm5ad.xlarge',
    'm5d.xlarge',
    'm6i.xlarge',
    't2.xlarge',
    't3.xlarge',
)


class KubernetesVersion(StrEnum):
    V1_20 = '1.20'
    V1_21 = '1.21'
    V1_22 = '1.22'
    V1_23 = '1.23'
    V1_24 = '1.24'
    V1_25 = '1.25'
    V1_26 = '1.26'
    V1_27 = '1.27'
    V1_28 = '1.28'
    V1_29 = '1.29'
    V1_30 = '1.30'
    V1_31 = '1.31'

    @classmethod
    def is_supported(cls, version: str) -> bool:
        return version in cls._value2member_map_


class CapacityType(StrEnum):
    ON_DEMAND = 'ON_DEMAND'
    SPOT = 'SPOT'


class PlacementKind(StrEnum):
    PRIVATE = 'private'
    PUBLIC = 'public'


@dataclass(frozen=True)
class RoleReference:
    arn: str

    @property
    def is_valid(self) -> bool:
        return bool(ROLE_ARN_PATTERN.match(self.arn or ''))

    @property
    def name(self) -> str:
        return self.arn.split('/')[-1]

    def __str__(self) -> str:
        return self.arn


@dataclass(frozen=True)
class ClusterSpec:
    name: str
    role: RoleReference
    network_id: str
    version: str = KubernetesVersion.V1_20
    subnet_ids: tuple[str, ...] = ()
    # Workers are only ever added through explicit node groups
    default_capacity: int = 0
    tags: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'role_arn': self.role.arn,
            'network_id': self.network_id,
            'version': str(self.version),
            'subnet_ids': list(self.subnet_ids),
            'default_capacity': self.default_capacity,
        }


@dataclass(frozen=True)
class CapacityPolicy:
    min_size: int
    desired_size: int
    max_size: int

    def is_consistent(self) -> bool:
        return 0 <= self.min_size <= self.desired_size <= self.max_size and self.max_size >= 1


@dataclass(frozen=True)
class NodeGroupSpec:
    name: str
    worker_role: RoleReference
    capacity: CapacityPolicy
    capacity_type: CapacityType = CapacityType.ON_DEMAND
    instance_types: tuple[str, ...] = ()
    # None selects the default placement for the capacity type
    placement: PlacementKind | None = None
    labels: dict[str, str] = field(default_factory=dict)
    disk_size: int = 20

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'worker_role_arn': self.worker_role.arn,
            'min_size': self.capacity.min_size,
            'desired_size': self.capacity.desired_size,
            'max_size': self.capacity.max_size,
            'capacity_type': str(self.capacity_type),
            'instance_types': list(self.instance_types),
            'placement': str(self.placement) if self.placement else None,
            'labels': dict(self.labels),
        }
