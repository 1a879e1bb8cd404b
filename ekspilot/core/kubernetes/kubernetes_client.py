from pathlib import Path

from kubernetes import client, config
from kubernetes.client import ApiException
from kubernetes.dynamic.client import DynamicClient
from kubernetes.dynamic.exceptions import NotFoundError

from ekspilot.core.utils import setup_logger


class KubernetesClients:
    def __init__(self, api_client: client.ApiClient):
        self.api = api_client
        self.core = client.CoreV1Api(api_client)  # Namespaces, Secrets, ServiceAccounts

        self.dynamic = DynamicClient(api_client)


class KubernetesClient:
    def __init__(self, kubeconfig_path: Path):
        self._logger = setup_logger('KubernetesClient')

        self._clients = KubernetesClients(config.new_client_from_config(config_file=str(kubeconfig_path)))

    def create_namespace(self, namespace: str):
        self._clients.core.create_namespace(client.V1Namespace(metadata=client.V1ObjectMeta(name=namespace)))

    def apply_manifest(self, manifest: dict):
        api_version = manifest.get('apiVersion')
        kind = manifest.get('kind')
        resource_name = manifest.get('metadata').get('name')
        namespace = manifest.get('metadata').get('namespace')
        crd_api = self._clients.dynamic.resources.get(api_version=api_version, kind=kind)

        try:
            crd_api.get(namespace=namespace, name=resource_name)
            crd_api.patch(body=manifest, namespace=namespace, content_type='application/merge-patch+json')
            self._logger.info(f'{kind} {namespace}/{resource_name} patched')
        except NotFoundError:
            crd_api.create(body=manifest, namespace=namespace)
            self._logger.info(f'{kind} {namespace}/{resource_name} created')

    def apply_service_account(self, name: str, namespace: str, annotations: dict[str, str]):
        body = client.V1ServiceAccount(
            metadata=client.V1ObjectMeta(name=name, namespace=namespace, annotations=annotations),
        )

        try:
            self._clients.core.create_namespaced_service_account(namespace=namespace, body=body)
            self._logger.info(f'ServiceAccount {namespace}/{name} created')
        except ApiException as e:
            if e.status != 409:
                raise

            self._clients.core.patch_namespaced_service_account(name=name, namespace=namespace, body=body)
            self._logger.info(f'ServiceAccount {namespace}/{name} patched')

    def secret_exists(self, secret_name: str, namespace: str) -> bool:
        try:
            self._clients.core.read_namespaced_secret(secret_name, namespace)
        except ApiException as e:
            if e.status == 404:
                return False

            self._logger.exception(f"Error retrieving secret '{secret_name}': {e}", exc_info=False)
            raise

        return True
