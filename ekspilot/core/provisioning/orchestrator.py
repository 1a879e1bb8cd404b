import asyncio
import dataclasses
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum

from ekspilot.core.addons.addon_composer import AddonComposer
from ekspilot.core.config import ProvisioningTimeouts
from ekspilot.core.exceptions import DuplicateNameError, InvalidSpecError, ProvisioningError, ProvisionTimeoutError
from ekspilot.core.kubernetes import AddonHandle, ClusterHandle, NodeGroupHandle, NodeGroupSpec, ResourceStatus
from ekspilot.core.providers.base_provider import BaseProvider
from ekspilot.core.provisioning.cluster_provisioner import ClusterProvisioner
from ekspilot.core.provisioning.identity_binder import IdentityBinder, MasterIdentityBinding
from ekspilot.core.provisioning.network_selector import NetworkSelection, NetworkSelector
from ekspilot.core.provisioning.node_group_planner import NodeGroupPlanner, placement_for
from ekspilot.core.provisioning.plan import ProvisioningPlan
from ekspilot.core.utils import setup_logger


class RunState(StrEnum):
    INIT = 'init'
    NETWORK_READY = 'network_ready'
    IDENTITY_READY = 'identity_ready'
    CLUSTER_READY = 'cluster_ready'
    NODE_GROUPS_READY = 'node_groups_ready'
    ADDONS_READY = 'addons_ready'
    COMPLETE = 'complete'
    FAILED = 'failed'


@dataclass
class ProvisioningReport:
    state: RunState = RunState.INIT
    failed_stage: RunState | None = None
    error_kind: str | None = None
    error_message: str | None = None
    network: NetworkSelection | None = None
    identities: dict = field(default_factory=dict)
    cluster: ClusterHandle | None = None
    master_bindings: dict[str, MasterIdentityBinding] = field(default_factory=dict)
    node_groups: list[NodeGroupHandle] = field(default_factory=list)
    addons: list[AddonHandle] = field(default_factory=list)
    transitions: list[RunState] = field(default_factory=lambda: [RunState.INIT])

    @property
    def is_complete(self) -> bool:
        return self.state == RunState.COMPLETE

    def to_dict(self) -> dict:
        return {
            'state': str(self.state),
            'failed_stage': str(self.failed_stage) if self.failed_stage else None,
            'error_kind': self.error_kind,
            'error_message': self.error_message,
            'network': self.network.to_dict() if self.network else None,
            'identities': self.identities,
            'cluster': self.cluster.to_dict() if self.cluster else None,
            'master_bindings': [x.to_dict() for x in self.master_bindings.values()],
            'node_groups': [x.to_dict() for x in self.node_groups],
            'addons': [x.to_dict() for x in self.addons],
            'transitions': [str(x) for x in self.transitions],
        }


class ProvisioningOrchestrator:
    """
    Applies a ProvisioningPlan stage by stage.

    Every stage is entered only once the previous one holds. An error ends the run in the failed state, recording
    the stage that was being entered. Everything created so far is left in place and reported, re-applying the same
    plan picks up the existing resources and continues from there.
    """

    def __init__(
        self,
        provider: BaseProvider,
        timeouts: ProvisioningTimeouts | None = None,
        on_state_change: Callable[[RunState], None] | None = None,
    ) -> None:
        self._logger = setup_logger('ProvisioningOrchestrator')

        self._provider = provider
        self._timeouts = timeouts or ProvisioningTimeouts()
        self._on_state_change = on_state_change

        self.report = ProvisioningReport()
        # Stage currently being entered
        self.stage: RunState = RunState.INIT

    async def apply(self, plan: ProvisioningPlan) -> ProvisioningReport:
        self.report = report = ProvisioningReport()
        composer = AddonComposer(self._provider, self._timeouts)

        self._logger.info(f'Applying plan for cluster {plan.cluster.name}')

        try:
            await self._run(plan, report, composer)
        except ProvisioningError as e:
            self._fail(report, e.kind, str(e))

            if isinstance(e, ProvisionTimeoutError) and e.handle is not None:
                report.cluster = e.handle
        except asyncio.CancelledError:
            self._fail(report, 'Cancelled', 'run was cancelled')
            report.addons = report.addons or list(composer.outcomes.values())
            raise

        if report.state == RunState.FAILED:
            self._logger.error(
                f'Run for {plan.cluster.name} failed entering {report.failed_stage}: {report.error_message}'
            )
        else:
            self._logger.info(f'Run for {plan.cluster.name} complete')

        return report

    async def _run(self, plan: ProvisioningPlan, report: ProvisioningReport, composer: AddonComposer) -> None:
        self.stage = RunState.NETWORK_READY
        if plan.network_id != plan.cluster.network_id:
            raise InvalidSpecError(
                f'Plan network {plan.network_id} does not match cluster network {plan.cluster.network_id}'
            )

        report.network = await NetworkSelector(self._provider).select(plan.network_id)
        self._advance(report, RunState.NETWORK_READY)

        self.stage = RunState.IDENTITY_READY
        identities = await IdentityBinder(self._provider).resolve(plan.identities, plan.cluster.name)
        report.identities = identities.diagnostics()
        self._advance(report, RunState.IDENTITY_READY)

        self.stage = RunState.CLUSTER_READY
        provisioner = ClusterProvisioner(self._provider, self._timeouts)
        cluster_spec = dataclasses.replace(plan.cluster, subnet_ids=report.network.all_subnet_ids)

        report.cluster = await provisioner.provision(cluster_spec)
        report.master_bindings = await provisioner.bind_master_identities(report.cluster, identities.bindings)
        self._advance(report, RunState.CLUSTER_READY)

        self.stage = RunState.NODE_GROUPS_READY
        report.node_groups = await self._add_node_groups(report.cluster, report.network, plan.node_groups)

        # Strict readiness (DESIGN.md, node_groups_ready): any failed or pending pool fails the run, addons are skipped
        not_ready = [x.name for x in report.node_groups if x.status != ResourceStatus.READY]
        if not_ready:
            self._fail(report, 'NodeGroupNotReady', f'Node group(s) not ready: {not_ready}')
            return
        self._advance(report, RunState.NODE_GROUPS_READY)

        self.stage = RunState.ADDONS_READY
        report.addons = await composer.install_addons(report.cluster, report.node_groups, plan.addons)

        unsuccessful = [x.name for x in report.addons if not x.status.is_successful]
        if unsuccessful:
            self._fail(report, 'AddonNotReady', f'Addon(s) not ready: {unsuccessful}')
            return
        self._advance(report, RunState.ADDONS_READY)

        self._advance(report, RunState.COMPLETE)

    async def _add_node_groups(
        self, cluster: ClusterHandle, network: NetworkSelection, specs: tuple[NodeGroupSpec, ...]
    ) -> list[NodeGroupHandle]:
        planner = NodeGroupPlanner(self._provider, network, self._timeouts)

        names = [x.name for x in specs]
        duplicates = sorted({x for x in names if names.count(x) > 1})
        if duplicates:
            raise DuplicateNameError(cluster.name, ', '.join(duplicates))

        for spec in specs:
            planner.validate(spec)

        return list(await asyncio.gather(*(self._add_node_group(planner, cluster, x) for x in specs)))

    async def _add_node_group(
        self, planner: NodeGroupPlanner, cluster: ClusterHandle, spec: NodeGroupSpec
    ) -> NodeGroupHandle:
        try:
            return await planner.add_node_group(cluster, spec)
        except ProvisioningError as e:
            self._logger.exception(f'Node group {spec.name} failed: {e}', exc_info=False)

            return NodeGroupHandle(
                cluster_name=cluster.name,
                name=spec.name,
                status=ResourceStatus.FAILED,
                min_size=spec.capacity.min_size,
                max_size=spec.capacity.max_size,
                capacity_type=str(spec.capacity_type),
                placement=str(placement_for(spec)),
                labels=dict(spec.labels),
                error_kind=e.kind,
                error_message=str(e),
            )

    def _advance(self, report: ProvisioningReport, state: RunState) -> None:
        report.state = state
        report.transitions.append(state)

        self._logger.info(f'Run state: {state}')

        if self._on_state_change is not None:
            self._on_state_change(state)

    def _fail(self, report: ProvisioningReport, kind: str, message: str) -> None:
        report.state = RunState.FAILED
        report.failed_stage = self.stage
        report.error_kind = kind
        report.error_message = message
        report.transitions.append(RunState.FAILED)
