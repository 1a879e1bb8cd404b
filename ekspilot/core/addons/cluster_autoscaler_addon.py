from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ekspilot.core.addons.addon_spec import AddonKind, AutoscalerSpec
from ekspilot.core.addons.base_addon import BaseAddon
from ekspilot.core.kubernetes.chart_config import HelmChart

if TYPE_CHECKING:
    from ekspilot.core.kubernetes import ClusterHandle, NodeGroupHandle


class ClusterAutoscalerAddon(BaseAddon):
    _helm_chart = HelmChart(
        name='cluster-autoscaler',
        repo_url='https://kubernetes.github.io/autoscaler',
        version='9.46.6',
    )

    kind = AddonKind.AUTOSCALER

    def __init__(self, spec: AutoscalerSpec) -> None:
        super().__init__(spec)

        self.spec: AutoscalerSpec = spec
        self.tracked_node_groups: list[NodeGroupHandle] = []

    @property
    def namespace(self) -> str:
        return 'kube-system'

    def _select(self, node_groups: Mapping[str, NodeGroupHandle]) -> list[NodeGroupHandle]:
        if self.spec.node_groups:
            return [node_groups[x] for x in self.spec.node_groups if x in node_groups]

        return [
            x for x in node_groups.values()
            if all(x.labels.get(k) == v for k, v in self.spec.match_labels.items())
        ]

    def node_group_references(self, node_groups: Mapping[str, NodeGroupHandle]) -> list[str]:
        if self.spec.node_groups:
            return [x for x in self.spec.node_groups if x not in node_groups]

        if not self._select(node_groups):
            selector = ','.join(f'{k}={v}' for k, v in self.spec.match_labels.items()) or '*'
            return [f'labels({selector})']

        return []

    def bind_node_groups(self, node_groups: Mapping[str, NodeGroupHandle]) -> None:
        self.tracked_node_groups = self._select(node_groups)

    def chart_values(self, cluster: ClusterHandle, region: str | None = None) -> dict[str, Any]:
        scaling_groups = [
            {'name': scaling_group, 'minSize': x.min_size, 'maxSize': x.max_size}
            for x in self.tracked_node_groups
            for scaling_group in x.scaling_group_names
        ]

        values: dict[str, Any] = {
            'cloudProvider': 'aws',
            'rbac': {'serviceAccount': {'name': 'cluster-autoscaler'}},
            'extraArgs': {
                'balance-similar-node-groups': True,
                'skip-nodes-with-system-pods': False,
                'expander': 'least-waste',
            },
        }

        # Explicit scaling groups take precedence over tag based discovery
        if scaling_groups:
            values['autoscalingGroups'] = scaling_groups
        else:
            values['autoDiscovery'] = {'clusterName': cluster.name}

        if region:
            values['awsRegion'] = region

        return values

    def diagnostics(self) -> dict[str, Any]:
        return {**super().diagnostics(), 'tracked_node_groups': [x.name for x in self.tracked_node_groups]}
