from typing import override

from ekspilot.core.addons.actions.base_install_action import BasePrePostInstallAction
from ekspilot.core.exceptions import BackendError
from ekspilot.core.kubernetes.kubernetes_cluster import KubernetesCluster


class RequireSecretAction(BasePrePostInstallAction):
    """Fails the install when an operator-managed secret has not been created yet."""

    def __init__(self, name: str, secret_name: str, condition: bool = True) -> None:
        self.secret_name = secret_name

        super().__init__(name=name, condition=condition)

    @override
    def run(self, cluster: KubernetesCluster, namespace: str) -> None:
        if not cluster.secret_exists(self.secret_name, namespace):
            raise BackendError('require_secret', f'{namespace}/{self.secret_name}', 'secret does not exist')

    def _validate(self) -> None:
        if not self.secret_name:
            raise ValueError('Secret name must not be empty.')
