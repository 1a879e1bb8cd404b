import asyncio
import dataclasses

import pytest

from ekspilot.core.addons.addon_spec import AutoscalerSpec, GitOpsSyncSpec, LoadBalancerControllerSpec
from ekspilot.core.kubernetes import ClusterState, PlacementKind, ResourceStatus
from ekspilot.core.provisioning.identity_binder import IdentityPlan
from ekspilot.core.provisioning.orchestrator import ProvisioningOrchestrator, RunState
from ekspilot.core.provisioning.plan import ProvisioningPlan
from tests.fakes import ADMIN_ROLE, CLUSTER_ROLE, WORKER_ROLE, FakeProvider, on_demand_spec, spot_spec


@pytest.fixture
def plan(cluster_spec):
    return ProvisioningPlan(
        identities=IdentityPlan(cluster_role=CLUSTER_ROLE, worker_role=WORKER_ROLE, master_roles=(ADMIN_ROLE,)),
        network_id='vpc-0123',
        cluster=cluster_spec,
        node_groups=(
            on_demand_spec(placement=PlacementKind.PRIVATE),
            spot_spec(placement=PlacementKind.PUBLIC),
        ),
        addons=(
            AutoscalerSpec(node_groups=('ondemand', 'spot')),
            GitOpsSyncSpec(repo_url='https://example/repo', repo_branch='main', repo_path='/clusters/demo'),
            LoadBalancerControllerSpec(namespace='kube-system'),
        ),
    )


def apply(provider, timeouts, plan):
    return asyncio.run(ProvisioningOrchestrator(provider, timeouts).apply(plan))


class TestProvisioningOrchestrator:
    def test_full_run_reaches_complete(self, provider, timeouts, plan):
        report = apply(provider, timeouts, plan)

        assert report.is_complete
        assert report.failed_stage is None
        assert report.transitions == [
            RunState.INIT,
            RunState.NETWORK_READY,
            RunState.IDENTITY_READY,
            RunState.CLUSTER_READY,
            RunState.NODE_GROUPS_READY,
            RunState.ADDONS_READY,
            RunState.COMPLETE,
        ]

        assert report.cluster.state == ClusterState.READY
        assert report.cluster.version == '1.20'
        assert report.cluster.identity_federation is not None
        assert provider.clusters['demo']['subnet_ids'] == report.network.all_subnet_ids

        node_groups = {x.name: x for x in report.node_groups}
        assert node_groups['ondemand'].placement == 'private'
        assert (node_groups['ondemand'].min_size, node_groups['ondemand'].max_size) == (2, 2)
        assert node_groups['spot'].placement == 'public'
        assert (node_groups['spot'].min_size, node_groups['spot'].max_size) == (2, 5)
        assert provider.node_groups[('demo', 'spot')]['spec'].instance_types == ('m5.xlarge', 't3.xlarge')

        addons = {x.name: x for x in report.addons}
        assert all(x.status == ResourceStatus.READY for x in report.addons)
        assert addons['cluster-autoscaler'].diagnostics['tracked_node_groups'] == ['ondemand', 'spot']
        assert addons['flux'].diagnostics['repo_url'] == 'https://example/repo'
        assert addons['flux'].diagnostics['repo_path'] == '/clusters/demo'
        assert addons['aws-load-balancer-controller'].tier == 1

        lb_start = provider.events.index(('start', 'aws-load-balancer-controller'))
        assert provider.events.index(('end', 'cluster-autoscaler')) < lb_start
        assert provider.events.index(('end', 'flux')) < lb_start

        assert report.master_bindings[ADMIN_ROLE.arn].created is True

    def test_report_is_serializable(self, provider, timeouts, plan):
        data = apply(provider, timeouts, plan).to_dict()

        assert data['state'] == 'complete'
        assert data['transitions'][-1] == 'complete'
        assert data['identities']['worker_role']['expected_policies'] == [
            'AmazonEKSWorkerNodePolicy',
            'AmazonEKS_CNI_Policy',
            'AmazonEC2ContainerRegistryReadOnly',
        ]
        assert [x['name'] for x in data['node_groups']] == ['ondemand', 'spot']

    def test_state_changes_are_published_as_stages_advance(self, provider, timeouts, plan):
        states = []
        provider.failing_node_groups.add('spot')

        report = asyncio.run(ProvisioningOrchestrator(provider, timeouts, on_state_change=states.append).apply(plan))

        assert states == [RunState.NETWORK_READY, RunState.IDENTITY_READY, RunState.CLUSTER_READY]
        assert report.state == RunState.FAILED

    def test_reapply_is_idempotent(self, provider, timeouts, plan):
        apply(provider, timeouts, plan)
        created = (provider.calls['create_cluster'], provider.calls['create_node_group'], provider.calls['install_addon'])

        report = apply(provider, timeouts, plan)

        assert report.is_complete
        assert created == (1, 2, 3)
        assert (
            provider.calls['create_cluster'],
            provider.calls['create_node_group'],
            provider.calls['install_addon'],
        ) == created
        assert all(x.status == ResourceStatus.ALREADY_INSTALLED for x in report.addons)
        assert report.master_bindings[ADMIN_ROLE.arn].created is False

    def test_missing_role_fails_identity_stage(self, timeouts, plan):
        provider = FakeProvider(missing_roles={WORKER_ROLE.arn})

        report = apply(provider, timeouts, plan)

        assert report.state == RunState.FAILED
        assert report.failed_stage == RunState.IDENTITY_READY
        assert report.error_kind == 'BackendError'
        assert WORKER_ROLE.arn in report.error_message
        assert report.transitions == [RunState.INIT, RunState.NETWORK_READY, RunState.FAILED]
        assert provider.calls['create_cluster'] == 0

    def test_network_mismatch_is_invalid(self, provider, timeouts, plan):
        report = apply(provider, timeouts, dataclasses.replace(plan, network_id='vpc-other'))

        assert report.failed_stage == RunState.NETWORK_READY
        assert report.error_kind == 'InvalidSpec'
        assert provider.calls['list_subnets'] == 0

    def test_cluster_timeout_reports_pending_cluster(self, timeouts, plan):
        provider = FakeProvider(cluster_pending_polls=None)

        report = apply(provider, timeouts, plan)

        assert report.failed_stage == RunState.CLUSTER_READY
        assert report.error_kind == 'ProvisionTimeout'
        assert report.cluster.state == ClusterState.PENDING
        assert report.node_groups == []
        assert provider.calls['create_node_group'] == 0

    def test_failed_node_group_skips_addons(self, provider, timeouts, plan):
        provider.failing_node_groups.add('spot')

        report = apply(provider, timeouts, plan)

        assert report.failed_stage == RunState.NODE_GROUPS_READY
        assert report.error_kind == 'NodeGroupNotReady'
        statuses = {x.name: x.status for x in report.node_groups}
        assert statuses == {'ondemand': ResourceStatus.READY, 'spot': ResourceStatus.FAILED}
        assert report.addons == []
        assert provider.calls['install_addon'] == 0

    def test_rejected_node_group_is_reported_not_raised(self, provider, timeouts, plan):
        provider.rejected_node_groups.add('ondemand')

        report = apply(provider, timeouts, plan)

        handle = next(x for x in report.node_groups if x.name == 'ondemand')
        assert handle.status == ResourceStatus.FAILED
        assert handle.error_kind == 'BackendError'
        assert report.failed_stage == RunState.NODE_GROUPS_READY

    def test_duplicate_node_group_names_in_plan(self, provider, timeouts, plan):
        plan = dataclasses.replace(plan, node_groups=(on_demand_spec('workers'), spot_spec('workers')))

        report = apply(provider, timeouts, plan)

        assert report.failed_stage == RunState.NODE_GROUPS_READY
        assert report.error_kind == 'DuplicateName'
        assert provider.calls['create_node_group'] == 0

    def test_failed_addon_fails_addons_stage(self, provider, timeouts, plan):
        provider.failing_addons.add('flux')

        report = apply(provider, timeouts, plan)

        assert report.failed_stage == RunState.ADDONS_READY
        assert report.error_kind == 'AddonNotReady'
        assert len(report.addons) == 3
        assert {x.name: x.status for x in report.addons}['flux'] == ResourceStatus.FAILED

    def test_unexpected_addon_error_keeps_every_outcome(self, provider, timeouts, plan):
        provider.crashing_addons.add('flux')

        report = apply(provider, timeouts, plan)

        assert report.failed_stage == RunState.ADDONS_READY
        assert report.error_kind == 'AddonNotReady'
        assert {x.name: x.status for x in report.addons} == {
            'cluster-autoscaler': ResourceStatus.READY,
            'flux': ResourceStatus.FAILED,
            'aws-load-balancer-controller': ResourceStatus.READY,
        }

    def test_unresolved_addon_reference_installs_nothing(self, provider, timeouts, plan):
        plan = dataclasses.replace(plan, addons=(AutoscalerSpec(node_groups=('batch',)),))

        report = apply(provider, timeouts, plan)

        assert report.failed_stage == RunState.ADDONS_READY
        assert report.error_kind == 'UnresolvedDependency'
        assert provider.calls['install_addon'] == 0


class TestDefaultPlan:
    def test_default_topology(self):
        plan = ProvisioningPlan.default(
            cluster_name='demo',
            network_id='vpc-0123',
            cluster_role=CLUSTER_ROLE.arn,
            worker_role=WORKER_ROLE.arn,
            repo_url='https://example/repo',
            repo_path='/clusters/demo',
        )

        assert plan.cluster.version == '1.20'
        assert [x.name for x in plan.node_groups] == ['dev-2vcpu-8gb-ondemand', 'dev-4vcpu-16gb-spot']
        assert plan.addons[0].node_groups == ('dev-2vcpu-8gb-ondemand', 'dev-4vcpu-16gb-spot')
        assert plan.addons[1].repo_branch == 'main'
        assert plan.to_dict()['addons'][2] == {'kind': 'load_balancer_controller', 'name': 'aws-load-balancer-controller'}

    def test_default_plan_applies(self, provider, timeouts):
        plan = ProvisioningPlan.default(
            cluster_name='demo',
            network_id='vpc-0123',
            cluster_role=CLUSTER_ROLE.arn,
            worker_role=WORKER_ROLE.arn,
            repo_url='https://example/repo',
            repo_path='/clusters/demo',
            master_roles=(ADMIN_ROLE.arn,),
        )

        report = apply(provider, timeouts, plan)

        assert report.is_complete
        assert len(provider.master_bindings) == 1
