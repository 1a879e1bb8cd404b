from collections.abc import Mapping

from tenacity import AsyncRetrying, RetryError, retry_if_result, stop_after_delay, wait_fixed

from ekspilot.core.config import ProvisioningTimeouts
from ekspilot.core.exceptions import (
    BackendError,
    ClusterNotReadyError,
    InvalidSpecError,
    ProvisionTimeoutError,
)
from ekspilot.core.kubernetes import (
    ClusterHandle,
    ClusterSpec,
    ClusterState,
    IdentityFederation,
    KubernetesVersion,
    RoleReference,
)
from ekspilot.core.providers.base_provider import BaseProvider, ClusterDescription
from ekspilot.core.provisioning.identity_binder import MasterIdentityBinding
from ekspilot.core.utils import setup_logger


class ClusterProvisioner:
    def __init__(self, provider: BaseProvider, timeouts: ProvisioningTimeouts | None = None) -> None:
        self._logger = setup_logger('ClusterProvisioner')

        self._provider = provider
        self._timeouts = timeouts or ProvisioningTimeouts()

    @staticmethod
    def validate(spec: ClusterSpec) -> None:
        if not spec.name:
            raise InvalidSpecError('Cluster name must not be empty')

        if not KubernetesVersion.is_supported(str(spec.version)):
            raise InvalidSpecError(
                f'Kubernetes version {spec.version} is not supported. Supported: {[str(x) for x in KubernetesVersion]}'
            )

        if not spec.role.is_valid:
            raise InvalidSpecError(f'Invalid cluster role reference: {spec.role.arn}')

        if not spec.network_id:
            raise InvalidSpecError('Cluster network id must not be empty')

        if not spec.subnet_ids:
            raise InvalidSpecError(f'Cluster {spec.name} has no subnets to place the control plane in')

        if spec.default_capacity != 0:
            raise InvalidSpecError('Default capacity must be 0, workers are added through node groups only')

    async def provision(self, spec: ClusterSpec) -> ClusterHandle:
        """
        Create the control plane described by spec and wait until it is ready.

        A cluster that already exists under the same name is reused, never created twice. It has to match the
        requested version and role, and if it is still booting it is waited for like a freshly created one.
        """
        self.validate(spec)

        existing = await self._provider.describe_cluster(spec.name)

        if existing is None:
            self._logger.info(f'Creating cluster {spec.name} (version {spec.version})')
            await self._provider.create_cluster(spec)
        else:
            self._check_matches(spec, existing)

            if existing.state == ClusterState.FAILED:
                raise BackendError('create_cluster', spec.name, 'cluster exists in a failed state')

            self._logger.info(f'Cluster {spec.name} already exists ({existing.state}), not creating')

        description = existing if existing and existing.state == ClusterState.READY else await self._wait_ready(spec)

        federation = await self._provider.resolve_identity_federation(spec.name)
        if federation is None:
            self._logger.warning(f'Cluster {spec.name} has no identity federation reference')

        handle = self._to_handle(spec, description, federation)

        self._logger.info(f'Cluster {spec.name} is ready at {handle.endpoint}')

        return handle

    async def _wait_ready(self, spec: ClusterSpec) -> ClusterDescription:
        last: ClusterDescription | None = None

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_delay(self._timeouts.cluster_ready),
                wait=wait_fixed(self._timeouts.poll_interval),
                retry=retry_if_result(lambda x: x is None or x.state == ClusterState.PENDING),
            ):
                with attempt:
                    last = await self._provider.describe_cluster(spec.name)
                    self._logger.debug(f'Cluster {spec.name} state: {last.state if last else "unknown"}')

                if not attempt.retry_state.outcome.failed:
                    attempt.retry_state.set_result(last)
        except RetryError as e:
            pending = ClusterHandle(
                name=spec.name,
                resource_id=last.resource_id if last else '',
                state=ClusterState.PENDING,
                version=str(spec.version),
                network_id=spec.network_id,
            )
            self._logger.warning(f'Cluster {spec.name} not ready after {self._timeouts.cluster_ready}s, left in place')
            raise ProvisionTimeoutError(
                f'Cluster {spec.name} did not become ready within {self._timeouts.cluster_ready}s', handle=pending
            ) from e

        if last.state == ClusterState.FAILED:
            raise BackendError('create_cluster', spec.name, 'control plane reported a failed state')

        return last

    @staticmethod
    def _check_matches(spec: ClusterSpec, existing: ClusterDescription) -> None:
        if existing.version != str(spec.version):
            raise InvalidSpecError(
                f'Cluster {spec.name} already exists with version {existing.version}, requested {spec.version}'
            )

        if existing.role_arn != spec.role.arn:
            raise InvalidSpecError(
                f'Cluster {spec.name} already exists with role {existing.role_arn}, requested {spec.role.arn}'
            )

    @staticmethod
    def _to_handle(
        spec: ClusterSpec, description: ClusterDescription, federation: IdentityFederation | None
    ) -> ClusterHandle:
        return ClusterHandle(
            name=spec.name,
            resource_id=description.resource_id,
            state=description.state,
            version=description.version,
            network_id=spec.network_id,
            endpoint=description.endpoint,
            certificate_authority=description.certificate_authority,
            identity_federation=federation,
        )

    async def bind_master_identity(self, cluster: ClusterHandle, role: RoleReference) -> MasterIdentityBinding:
        if not cluster.is_ready:
            raise ClusterNotReadyError(cluster.name, cluster.state)

        if not role.is_valid:
            raise InvalidSpecError(f'Invalid master role reference: {role.arn}')

        created = await self._provider.bind_master_role(cluster.name, role.arn)

        if created:
            self._logger.info(f'Granted cluster admin on {cluster.name} to {role.arn}')
        else:
            self._logger.info(f'{role.arn} already bound to {cluster.name}, nothing to do')

        return MasterIdentityBinding(role=role, cluster_name=cluster.name, created=created)

    async def bind_master_identities(
        self, cluster: ClusterHandle, bindings: Mapping[str, MasterIdentityBinding]
    ) -> dict[str, MasterIdentityBinding]:
        return {arn: await self.bind_master_identity(cluster, binding.role) for arn, binding in bindings.items()}
