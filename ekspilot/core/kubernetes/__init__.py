from ekspilot.core.kubernetes.cluster_state import ClusterState
from ekspilot.core.kubernetes.configuration import (
    CapacityPolicy,
    CapacityType,
    ClusterSpec,
    KubernetesVersion,
    NodeGroupSpec,
    PlacementKind,
    RoleReference,
)
from ekspilot.core.kubernetes.deployment_status import ResourceStatus
from ekspilot.core.kubernetes.handles import AddonHandle, ClusterHandle, IdentityFederation, NodeGroupHandle

__all__ = [
    'AddonHandle',
    'CapacityPolicy',
    'CapacityType',
    'ClusterHandle',
    'ClusterSpec',
    'ClusterState',
    'IdentityFederation',
    'KubernetesVersion',
    'NodeGroupHandle',
    'NodeGroupSpec',
    'PlacementKind',
    'ResourceStatus',
    'RoleReference',
]
