import json
from pathlib import Path
from typing import Any

import yaml
from kubernetes.client.exceptions import ApiException
from pyhelm3 import ReleaseRevision
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from ekspilot.core.exceptions import BackendError, NamespaceTerminatingError
from ekspilot.core.kubernetes.chart_config import HelmChart
from ekspilot.core.kubernetes.helm_client import HelmClient
from ekspilot.core.kubernetes.kubernetes_client import KubernetesClient
from ekspilot.core.template_loader import template_loader
from ekspilot.core.utils import setup_logger


class KubernetesCluster:
    def __init__(self, name: str, kubeconfig_path: Path):
        self._logger = setup_logger('KubernetesCluster')

        self.name = name
        self.kubeconfig_path = kubeconfig_path
        self._client = KubernetesClient(kubeconfig_path)
        self._helm_client = HelmClient(kubeconfig=kubeconfig_path)

    def _parse_kubernetes_api_exception(self, exception: ApiException) -> tuple[str, str]:
        self._logger.debug(f'Original reason: {exception.reason}')

        try:
            body = json.loads(exception.body or '{}')
        except (TypeError, ValueError):
            body = {}

        return body.get('reason') or str(exception.reason or ''), body.get('message') or ''

    @retry(retry=retry_if_exception_type(NamespaceTerminatingError), wait=wait_fixed(10), stop=stop_after_attempt(10), reraise=True)
    def create_namespace(self, namespace: str):
        try:
            self._client.create_namespace(namespace)
            self._logger.info(f'Namespace {namespace} created')
        except ApiException as e:
            reason, message = self._parse_kubernetes_api_exception(e)
            self._logger.debug(f'Reason: {reason}, message: {message}')

            if reason not in ('AlreadyExists', 'NamespaceTerminating'):
                self._logger.exception(f'Failed to create namespace {namespace}: {reason}', exc_info=False)
                raise BackendError('create_namespace', namespace, e) from e

            if 'object is being deleted' in message or 'is being terminated' in message:
                self._logger.warning(f'Namespace {namespace} is being deleted, retrying...')
                raise NamespaceTerminatingError(namespace) from e

            self._logger.info(f'Namespace {namespace} already exists, skipping creation')

    async def get_release(self, release_name: str, namespace: str) -> ReleaseRevision | None:
        return await self._helm_client.find_current_revision(release_name, namespace=namespace)

    async def install_or_upgrade_chart(
        self,
        release_name: str,
        helm_chart: HelmChart,
        values: dict[str, Any] | None = None,
        namespace: str | None = None,
        timeout: float = 600,
    ) -> ReleaseRevision:
        values = values or {}
        namespace = namespace or release_name

        self.create_namespace(namespace)

        self._logger.info(f'Installing {helm_chart.name} as {release_name} into {namespace}')
        try:
            chart = await self._helm_client.get_chart(helm_chart.name, repo=helm_chart.repo_url, version=helm_chart.version)
        except Exception as e:
            self._logger.exception(f'Failed to get chart {helm_chart.name}: {e}', exc_info=False)
            raise BackendError('get_chart', helm_chart.name, e) from e

        try:
            revision = await self._helm_client.install_or_upgrade_release(
                release_name,
                chart,
                values,
                create_namespace=False,
                namespace=namespace,
                wait=True,
                timeout=f'{int(timeout)}s',
            )
        except Exception as e:
            self._logger.exception(f'Failed to install chart {helm_chart.name}: {e}', exc_info=False)
            raise BackendError('install_chart', release_name, e) from e

        self._logger.info(f'{helm_chart.name} installation complete: {revision.status}')

        return revision

    def apply_template(self, template_name: str, template_module: str, values: dict[str, Any]):
        rendered = template_loader.render_template(template_name, template_module, values)

        for manifest in yaml.safe_load_all(rendered):
            if manifest:
                self.apply_manifest(manifest)

    def apply_manifest(self, manifest: dict):
        try:
            self._client.apply_manifest(manifest)
        except Exception as e:
            resource = f'{manifest.get("kind")}/{manifest.get("metadata", {}).get("name")}'
            self._logger.exception(f'Failed to apply {resource}: {e}', exc_info=False)
            raise BackendError('apply_manifest', resource, e) from e

    def apply_service_account(self, name: str, namespace: str, annotations: dict[str, str]):
        self.create_namespace(namespace)

        try:
            self._client.apply_service_account(name, namespace, annotations)
        except ApiException as e:
            raise BackendError('apply_service_account', f'{namespace}/{name}', e) from e

    def secret_exists(self, secret_name: str, namespace: str) -> bool:
        try:
            return self._client.secret_exists(secret_name, namespace)
        except ApiException as e:
            raise BackendError('read_secret', f'{namespace}/{secret_name}', e) from e
