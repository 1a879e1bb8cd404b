from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ekspilot.core.addons.actions.apply_service_account_action import ApplyServiceAccountAction
from ekspilot.core.addons.actions.base_install_action import BasePrePostInstallAction
from ekspilot.core.addons.addon_spec import AddonKind, LoadBalancerControllerSpec
from ekspilot.core.addons.base_addon import BaseAddon
from ekspilot.core.exceptions import InvalidSpecError
from ekspilot.core.kubernetes.chart_config import HelmChart

if TYPE_CHECKING:
    from ekspilot.core.kubernetes import ClusterHandle

SERVICE_ACCOUNT_NAME = 'aws-load-balancer-controller'


class AwsLoadBalancerControllerAddon(BaseAddon):
    _helm_chart = HelmChart(
        name='aws-load-balancer-controller',
        repo_url='https://aws.github.io/eks-charts',
        version='1.11.0',
    )

    kind = AddonKind.LOAD_BALANCER_CONTROLLER
    requires_identity_federation = True

    def __init__(self, spec: LoadBalancerControllerSpec) -> None:
        super().__init__(spec)

        self.spec: LoadBalancerControllerSpec = spec

    @property
    def namespace(self) -> str:
        return self.spec.namespace

    def validate(self) -> None:
        super().validate()

        if not (self.spec.namespace or '').strip():
            raise InvalidSpecError(f'Load balancer controller {self.name}: namespace must not be empty')

        role = self.spec.service_account_role
        if role is not None and not role.is_valid:
            raise InvalidSpecError(f'Load balancer controller {self.name}: invalid role reference {role.arn}')

    def chart_values(self, cluster: ClusterHandle, region: str | None = None) -> dict[str, Any]:
        values: dict[str, Any] = {
            'clusterName': cluster.name,
            'vpcId': cluster.network_id,
            'serviceAccount': {'create': False, 'name': SERVICE_ACCOUNT_NAME},
        }

        if region:
            values['region'] = region

        return values

    @property
    def pre_installation_actions(self) -> list[BasePrePostInstallAction]:
        role = self.spec.service_account_role

        return [
            ApplyServiceAccountAction(
                name='create-controller-service-account',
                service_account_name=SERVICE_ACCOUNT_NAME,
                role_arn=role.arn if role else None,
            )
        ]

    def diagnostics(self) -> dict[str, Any]:
        role = self.spec.service_account_role

        return {**super().diagnostics(), 'service_account_role': role.arn if role else None}
