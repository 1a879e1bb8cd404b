from typing import override

from ekspilot.core.addons.actions.base_install_action import BasePrePostInstallAction
from ekspilot.core.kubernetes.kubernetes_cluster import KubernetesCluster

IRSA_ROLE_ANNOTATION = 'eks.amazonaws.com/role-arn'


class ApplyServiceAccountAction(BasePrePostInstallAction):
    def __init__(self, name: str, service_account_name: str, role_arn: str | None = None, condition: bool = True) -> None:
        self.service_account_name = service_account_name
        self.role_arn = role_arn

        super().__init__(name=name, condition=condition)

    @override
    def run(self, cluster: KubernetesCluster, namespace: str) -> None:
        annotations = {IRSA_ROLE_ANNOTATION: self.role_arn} if self.role_arn else {}

        cluster.apply_service_account(self.service_account_name, namespace, annotations)

    def _validate(self) -> None:
        if not self.service_account_name:
            raise ValueError('Service account name must not be empty.')
