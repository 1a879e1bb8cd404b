from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ekspilot.core.addons.actions.base_install_action import BasePrePostInstallAction
from ekspilot.core.addons.addon_spec import AddonKind, AddonSpec, AddonTier
from ekspilot.core.exceptions import InvalidSpecError
from ekspilot.core.kubernetes.chart_config import HelmChart
from ekspilot.core.utils import setup_logger

if TYPE_CHECKING:
    from ekspilot.core.kubernetes import ClusterHandle, NodeGroupHandle
    from ekspilot.core.kubernetes.kubernetes_cluster import KubernetesCluster


class BaseAddon(ABC):
    _helm_chart: HelmChart

    kind: AddonKind
    requires_identity_federation: bool = False

    def __init__(self, spec: AddonSpec) -> None:
        self._logger = setup_logger(type(self).__name__)

        self.spec = spec
        self.name = spec.name

    @classmethod
    def get_helm_chart(cls) -> HelmChart:
        return cls._helm_chart

    @property
    def tier(self) -> AddonTier:
        return AddonTier.IDENTITY_FEDERATION if self.requires_identity_federation else AddonTier.CLUSTER

    @property
    def release_name(self) -> str:
        return self.name

    @property
    @abstractmethod
    def namespace(self) -> str: ...

    @abstractmethod
    def chart_values(self, cluster: ClusterHandle, region: str | None = None) -> dict[str, Any]: ...

    def validate(self) -> None:
        if not self.name:
            raise InvalidSpecError(f'{self.kind} addon must have a name')

    def node_group_references(self, node_groups: Mapping[str, NodeGroupHandle]) -> list[str]:
        """Node group references this addon cannot resolve against the given pools."""
        return []

    def bind_node_groups(self, node_groups: Mapping[str, NodeGroupHandle]) -> None:  # noqa: B027 (optional hook)
        pass

    def diagnostics(self) -> dict[str, Any]:
        return {'chart': self.get_helm_chart().to_dict(), 'namespace': self.namespace, 'release': self.release_name}

    @property
    def pre_installation_actions(self) -> list[BasePrePostInstallAction]:
        return []

    @property
    def post_installation_actions(self) -> list[BasePrePostInstallAction]:
        return []

    def run_pre_install_actions(self, cluster: KubernetesCluster) -> None:
        self._run_actions('pre-install', self.pre_installation_actions, cluster)

    def run_post_install_actions(self, cluster: KubernetesCluster) -> None:
        self._run_actions('post-install', self.post_installation_actions, cluster)

    def _run_actions(self, stage: str, actions: list[BasePrePostInstallAction], cluster: KubernetesCluster) -> None:
        for action in actions:
            if not action.condition:
                self._logger.info(f'Skipping {stage} action: {action.name} as its condition is not met')
            else:
                self._logger.info(f'Running {stage} action: {action.name}')
                action.run(cluster, self.namespace)
