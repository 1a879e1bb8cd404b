from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ekspilot.core.addons.actions.apply_template_action import ApplyTemplateAction
from ekspilot.core.addons.actions.base_install_action import BasePrePostInstallAction
from ekspilot.core.addons.actions.require_secret_action import RequireSecretAction
from ekspilot.core.addons.addon_spec import AddonKind, GitOpsSyncSpec
from ekspilot.core.addons.base_addon import BaseAddon
from ekspilot.core.exceptions import InvalidSpecError
from ekspilot.core.kubernetes.chart_config import HelmChart

if TYPE_CHECKING:
    from ekspilot.core.kubernetes import ClusterHandle


class FluxAddon(BaseAddon):
    """GitOps sync: installs the Flux controllers and points them at the operator's repository."""

    _helm_chart = HelmChart(
        name='flux2',
        repo_url='https://fluxcd-community.github.io/helm-charts',
        version='2.14.1',
    )

    kind = AddonKind.GITOPS_SYNC

    def __init__(self, spec: GitOpsSyncSpec) -> None:
        super().__init__(spec)

        self.spec: GitOpsSyncSpec = spec

    @property
    def namespace(self) -> str:
        return self.spec.namespace

    def validate(self) -> None:
        super().validate()

        for field_name in ('repo_url', 'repo_branch', 'repo_path', 'secret_name', 'namespace'):
            if not (getattr(self.spec, field_name) or '').strip():
                raise InvalidSpecError(f'GitOps sync addon {self.name}: {field_name} must not be empty')

    def chart_values(self, cluster: ClusterHandle, region: str | None = None) -> dict[str, Any]:
        return {
            'watchAllNamespaces': True,
            'imageAutomationController': {'create': False},
            'imageReflectionController': {'create': False},
        }

    @property
    def pre_installation_actions(self) -> list[BasePrePostInstallAction]:
        return [RequireSecretAction(name='require-repository-secret', secret_name=self.spec.secret_name)]

    @property
    def post_installation_actions(self) -> list[BasePrePostInstallAction]:
        source_values = {
            'name': self.name,
            'interval': self.spec.sync_interval,
            'repo_url': self.spec.repo_url,
            'repo_branch': self.spec.repo_branch,
            'secret_name': self.spec.secret_name,
        }

        return [
            ApplyTemplateAction(
                name='create-git-repository',
                template_name='git-repository.yaml',
                template_module='flux',
                values=source_values,
            ),
            ApplyTemplateAction(
                name='create-kustomization',
                template_name='kustomization.yaml',
                template_module='flux',
                values={'name': self.name, 'interval': self.spec.sync_interval, 'repo_path': self.spec.repo_path},
            ),
        ]

    def diagnostics(self) -> dict[str, Any]:
        return {
            **super().diagnostics(),
            'repo_url': self.spec.repo_url,
            'repo_branch': self.spec.repo_branch,
            'repo_path': self.spec.repo_path,
            'secret_name': self.spec.secret_name,
        }
