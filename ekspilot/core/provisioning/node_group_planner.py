import asyncio
from collections import defaultdict

from tenacity import AsyncRetrying, RetryError, retry_if_result, stop_after_delay, wait_fixed

from ekspilot.core.config import ProvisioningTimeouts
from ekspilot.core.exceptions import BackendError, ClusterNotReadyError, DuplicateNameError, InvalidSpecError
from ekspilot.core.kubernetes import (
    CapacityType,
    ClusterHandle,
    NodeGroupHandle,
    NodeGroupSpec,
    PlacementKind,
    ResourceStatus,
)
from ekspilot.core.providers.base_provider import BaseProvider, NodeGroupDescription
from ekspilot.core.provisioning.network_selector import NetworkSelection
from ekspilot.core.utils import setup_logger

# Placement group used when a spec does not pin one
DEFAULT_PLACEMENT: dict[CapacityType, PlacementKind] = {
    CapacityType.ON_DEMAND: PlacementKind.PRIVATE,
    CapacityType.SPOT: PlacementKind.PUBLIC,
}


def placement_for(spec: NodeGroupSpec) -> PlacementKind:
    return spec.placement or DEFAULT_PLACEMENT[spec.capacity_type]


class NodeGroupPlanner:
    """
    Adds worker pools to a ready cluster.

    Capacity and placement policy is decided here: every pool lands in the placement group its capacity type maps to
    (unless the NodeGroupSpec pins one), Spot pools forward their full instance preference list and labels go through
    untouched. Pool names are claimed per cluster, so a second pool with the same name is rejected instead of
    racing the first one.
    """

    def __init__(
        self, provider: BaseProvider, network: NetworkSelection, timeouts: ProvisioningTimeouts | None = None
    ) -> None:
        self._logger = setup_logger('NodeGroupPlanner')

        self._provider = provider
        self._network = network
        self._timeouts = timeouts or ProvisioningTimeouts()

        self._locks: defaultdict[tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)
        self._claimed: set[tuple[str, str]] = set()

    def validate(self, spec: NodeGroupSpec) -> None:
        if not spec.name:
            raise InvalidSpecError('Node group name must not be empty')

        capacity = spec.capacity
        if not capacity.is_consistent():
            raise InvalidSpecError(
                f'Node group {spec.name}: capacity must satisfy 0 <= min <= desired <= max and max >= 1, '
                f'got {capacity.min_size}/{capacity.desired_size}/{capacity.max_size}'
            )

        if spec.capacity_type == CapacityType.SPOT and not spec.instance_types:
            raise InvalidSpecError(f'Node group {spec.name}: Spot capacity needs at least one instance type')

        if not spec.worker_role.is_valid:
            raise InvalidSpecError(f'Node group {spec.name}: invalid worker role {spec.worker_role.arn}')

        placement = placement_for(spec)
        if self._network.for_kind(placement).is_empty:
            raise InvalidSpecError(
                f'Node group {spec.name}: no {placement} subnets in network {self._network.network_id}'
            )

    async def add_node_group(self, cluster: ClusterHandle, spec: NodeGroupSpec) -> NodeGroupHandle:
        if not cluster.is_ready:
            raise ClusterNotReadyError(cluster.name, cluster.state)

        self.validate(spec)

        key = (cluster.name, spec.name)

        async with self._locks[key]:
            if key in self._claimed:
                raise DuplicateNameError(cluster.name, spec.name)

            existing = await self._provider.describe_node_group(cluster.name, spec.name)

            if existing is not None:
                if not self._is_compatible(spec, existing):
                    raise DuplicateNameError(cluster.name, spec.name)

                self._claimed.add(key)
                self._logger.info(f'Node group {spec.name} already exists on {cluster.name} ({existing.status})')

                if existing.status != ResourceStatus.PENDING:
                    return self._to_handle(cluster, spec, existing)
            else:
                self._claimed.add(key)
                placement = placement_for(spec)

                self._logger.info(
                    f'Creating node group {spec.name} on {cluster.name}: {spec.capacity_type}, {placement}, '
                    f'{spec.capacity.min_size}/{spec.capacity.desired_size}/{spec.capacity.max_size}'
                )

                try:
                    await self._provider.create_node_group(
                        cluster.name, spec, placement, self._network.for_kind(placement).subnet_ids
                    )
                except BackendError:
                    # Nothing was created, the name can be claimed again
                    self._claimed.discard(key)
                    raise

        return await self._wait_ready(cluster, spec)

    async def _wait_ready(self, cluster: ClusterHandle, spec: NodeGroupSpec) -> NodeGroupHandle:
        last: NodeGroupDescription | None = None

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_delay(self._timeouts.node_group_ready),
                wait=wait_fixed(self._timeouts.poll_interval),
                retry=retry_if_result(lambda x: x is None or x.status == ResourceStatus.PENDING),
            ):
                with attempt:
                    last = await self._provider.describe_node_group(cluster.name, spec.name)

                if not attempt.retry_state.outcome.failed:
                    attempt.retry_state.set_result(last)
        except RetryError:
            self._logger.warning(
                f'Node group {spec.name} not ready after {self._timeouts.node_group_ready}s, reported as pending'
            )
            return NodeGroupHandle(
                cluster_name=cluster.name,
                name=spec.name,
                status=ResourceStatus.PENDING,
                current_size=last.desired_size if last else 0,
                min_size=spec.capacity.min_size,
                max_size=spec.capacity.max_size,
                capacity_type=str(spec.capacity_type),
                placement=str(placement_for(spec)),
                labels=dict(spec.labels),
                error_kind='ProvisionTimeout',
                error_message=f'not ready after {self._timeouts.node_group_ready}s',
            )

        handle = self._to_handle(cluster, spec, last)

        if handle.status == ResourceStatus.FAILED:
            self._logger.error(f'Node group {spec.name} failed: {handle.error_message}')
        else:
            self._logger.info(f'Node group {spec.name} is ready with {handle.current_size} node(s)')

        return handle

    @staticmethod
    def _is_compatible(spec: NodeGroupSpec, existing: NodeGroupDescription) -> bool:
        return (
            existing.capacity_type == str(spec.capacity_type)
            and (not spec.instance_types or tuple(existing.instance_types) == tuple(spec.instance_types))
            and existing.labels == dict(spec.labels)
            and existing.min_size == spec.capacity.min_size
            and existing.max_size == spec.capacity.max_size
        )

    @staticmethod
    def _to_handle(cluster: ClusterHandle, spec: NodeGroupSpec, description: NodeGroupDescription) -> NodeGroupHandle:
        failed = description.status == ResourceStatus.FAILED

        return NodeGroupHandle(
            cluster_name=cluster.name,
            name=spec.name,
            status=description.status,
            current_size=description.desired_size,
            min_size=description.min_size,
            max_size=description.max_size,
            capacity_type=description.capacity_type,
            placement=str(placement_for(spec)),
            labels=dict(description.labels),
            scaling_group_names=tuple(description.scaling_group_names),
            error_kind='BackendError' if failed else None,
            error_message=('; '.join(description.health_issues) or 'node group failed') if failed else None,
        )
