from typing import Any, override

from ekspilot.core.addons.actions.base_install_action import BasePrePostInstallAction
from ekspilot.core.kubernetes.kubernetes_cluster import KubernetesCluster
from ekspilot.core.template_loader import template_loader


class ApplyTemplateAction(BasePrePostInstallAction):
    def __init__(
        self, name: str, template_name: str, template_module: str, values: dict[str, Any], condition: bool = True
    ) -> None:
        self.template_name = template_name
        self.template_module = template_module
        self.values = values

        super().__init__(name=name, condition=condition)

    @override
    def run(self, cluster: KubernetesCluster, namespace: str) -> None:
        cluster.apply_template(self.template_name, self.template_module, {'namespace': namespace, **self.values})

    def _validate(self) -> None:
        # Raises TemplateNotFound early, before anything is installed
        template_loader.get_template(self.template_name, self.template_module)

        if not self.template_name.endswith('.yaml'):
            raise ValueError(f'Template {self.template_name} must be a YAML file.')
