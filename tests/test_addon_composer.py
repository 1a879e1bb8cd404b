import asyncio
import dataclasses

import pytest

from ekspilot.core.addons.addon_composer import AddonComposer
from ekspilot.core.addons.addon_spec import AutoscalerSpec, GitOpsSyncSpec, LoadBalancerControllerSpec
from ekspilot.core.config import ProvisioningTimeouts
from ekspilot.core.exceptions import ClusterNotReadyError, InvalidSpecError, UnresolvedDependencyError
from ekspilot.core.kubernetes import ClusterState, NodeGroupHandle, ResourceStatus


@pytest.fixture
def node_groups():
    return [
        NodeGroupHandle(
            cluster_name='demo',
            name='ondemand',
            status=ResourceStatus.READY,
            current_size=2,
            min_size=2,
            max_size=2,
            labels={'intent': 'control-apps'},
            scaling_group_names=('eks-ondemand-asg',),
        ),
        NodeGroupHandle(
            cluster_name='demo',
            name='spot',
            status=ResourceStatus.READY,
            current_size=2,
            min_size=2,
            max_size=5,
            labels={'intent': 'apps'},
            scaling_group_names=('eks-spot-asg',),
        ),
    ]


@pytest.fixture
def gitops():
    return GitOpsSyncSpec(repo_url='https://example/repo', repo_path='/clusters/demo')


def by_name(handles):
    return {x.name: x for x in handles}


class TestAddonValidation:
    def test_unknown_node_group_reference_aborts_before_install(self, provider, timeouts, ready_cluster, node_groups, gitops):
        specs = [AutoscalerSpec(node_groups=('ondemand', 'missing', 'gone')), gitops]

        with pytest.raises(UnresolvedDependencyError) as exc_info:
            asyncio.run(AddonComposer(provider, timeouts).install_addons(ready_cluster, node_groups, specs))

        assert exc_info.value.missing == {'cluster-autoscaler': ['missing', 'gone']}
        assert provider.calls['install_addon'] == 0
        assert provider.calls['describe_addon'] == 0

    def test_label_selector_without_match_is_unresolved(self, provider, timeouts, ready_cluster, node_groups):
        specs = [AutoscalerSpec(match_labels={'intent': 'batch'})]

        with pytest.raises(UnresolvedDependencyError, match='labels'):
            asyncio.run(AddonComposer(provider, timeouts).install_addons(ready_cluster, node_groups, specs))

    def test_empty_gitops_field_is_invalid(self, provider, timeouts, ready_cluster, node_groups):
        specs = [AutoscalerSpec(), GitOpsSyncSpec(repo_url='https://example/repo', repo_path='', secret_name='')]

        with pytest.raises(InvalidSpecError, match='repo_path must not be empty'):
            asyncio.run(AddonComposer(provider, timeouts).install_addons(ready_cluster, node_groups, specs))

        assert provider.calls['install_addon'] == 0

    def test_duplicate_addon_names_are_invalid(self, provider, timeouts, ready_cluster, node_groups):
        specs = [AutoscalerSpec(), AutoscalerSpec(node_groups=('spot',))]

        with pytest.raises(InvalidSpecError, match='used more than once'):
            asyncio.run(AddonComposer(provider, timeouts).install_addons(ready_cluster, node_groups, specs))

    def test_cluster_must_be_ready(self, provider, timeouts, ready_cluster, node_groups, gitops):
        pending = dataclasses.replace(ready_cluster, state=ClusterState.PENDING)

        with pytest.raises(ClusterNotReadyError):
            asyncio.run(AddonComposer(provider, timeouts).install_addons(pending, node_groups, [gitops]))


class TestAddonComposer:
    def test_tier_one_waits_for_tier_zero(self, provider, timeouts, ready_cluster, node_groups, gitops):
        provider.addon_delays = {'cluster-autoscaler': 0.05, 'flux': 0.02}
        specs = [LoadBalancerControllerSpec(), AutoscalerSpec(), gitops]

        handles = asyncio.run(AddonComposer(provider, timeouts).install_addons(ready_cluster, node_groups, specs))

        assert [x.name for x in handles] == ['aws-load-balancer-controller', 'cluster-autoscaler', 'flux']
        assert all(x.status == ResourceStatus.READY for x in handles)

        lb_start = provider.events.index(('start', 'aws-load-balancer-controller'))
        assert provider.events.index(('end', 'cluster-autoscaler')) < lb_start
        assert provider.events.index(('end', 'flux')) < lb_start
        assert by_name(handles)['aws-load-balancer-controller'].tier == 1

    def test_tier_zero_addons_run_concurrently(self, provider, timeouts, ready_cluster, node_groups, gitops):
        provider.addon_delays = {'cluster-autoscaler': 0.05, 'flux': 0.05}

        asyncio.run(AddonComposer(provider, timeouts).install_addons(ready_cluster, node_groups, [AutoscalerSpec(), gitops]))

        assert provider.events[:2] == [('start', 'cluster-autoscaler'), ('start', 'flux')]

    def test_missing_federation_fails_only_tier_one(self, provider, timeouts, ready_cluster, node_groups, gitops):
        cluster = dataclasses.replace(ready_cluster, identity_federation=None)
        specs = [AutoscalerSpec(), gitops, LoadBalancerControllerSpec()]

        handles = by_name(asyncio.run(AddonComposer(provider, timeouts).install_addons(cluster, node_groups, specs)))

        assert handles['cluster-autoscaler'].status == ResourceStatus.READY
        assert handles['flux'].status == ResourceStatus.READY
        assert handles['aws-load-balancer-controller'].status == ResourceStatus.FAILED
        assert handles['aws-load-balancer-controller'].error_kind == 'TierPrecondition'
        assert ('start', 'aws-load-balancer-controller') not in provider.events

    def test_backend_error_does_not_abort_siblings(self, provider, timeouts, ready_cluster, node_groups, gitops):
        provider.failing_addons.add('flux')
        specs = [AutoscalerSpec(), gitops, LoadBalancerControllerSpec()]

        handles = asyncio.run(AddonComposer(provider, timeouts).install_addons(ready_cluster, node_groups, specs))

        assert len(handles) == 3
        statuses = {x.name: (x.status, x.error_kind) for x in handles}
        assert statuses == {
            'cluster-autoscaler': (ResourceStatus.READY, None),
            'flux': (ResourceStatus.FAILED, 'BackendError'),
            'aws-load-balancer-controller': (ResourceStatus.READY, None),
        }

    def test_unexpected_error_does_not_abort_siblings(self, provider, timeouts, ready_cluster, node_groups, gitops):
        provider.crashing_addons.add('cluster-autoscaler')
        specs = [AutoscalerSpec(), gitops, LoadBalancerControllerSpec()]

        handles = by_name(asyncio.run(AddonComposer(provider, timeouts).install_addons(ready_cluster, node_groups, specs)))

        assert handles['cluster-autoscaler'].status == ResourceStatus.FAILED
        assert handles['cluster-autoscaler'].error_kind == 'BackendError'
        assert 'forbidden' in handles['cluster-autoscaler'].error_message
        assert handles['flux'].status == ResourceStatus.READY
        assert handles['aws-load-balancer-controller'].status == ResourceStatus.READY

    def test_reinstall_reports_already_installed(self, provider, timeouts, ready_cluster, node_groups, gitops):
        specs = [AutoscalerSpec(), gitops]
        asyncio.run(AddonComposer(provider, timeouts).install_addons(ready_cluster, node_groups, specs))

        handles = asyncio.run(AddonComposer(provider, timeouts).install_addons(ready_cluster, node_groups, specs))

        assert all(x.status == ResourceStatus.ALREADY_INSTALLED for x in handles)
        assert all(x.status.is_successful for x in handles)
        assert provider.calls['install_addon'] == 2
        assert len(provider.releases) == 2

    def test_slow_addon_is_left_pending(self, provider, ready_cluster, node_groups, gitops):
        timeouts = ProvisioningTimeouts(addon_ready=0.05, poll_interval=0)
        provider.addon_delays = {'flux': 1}

        handles = by_name(
            asyncio.run(AddonComposer(provider, timeouts).install_addons(ready_cluster, node_groups, [AutoscalerSpec(), gitops]))
        )

        assert handles['flux'].status == ResourceStatus.PENDING
        assert handles['flux'].error_kind == 'Timeout'
        assert handles['cluster-autoscaler'].status == ResourceStatus.READY

    def test_autoscaler_tracks_selected_pools(self, provider, timeouts, ready_cluster, node_groups):
        specs = [AutoscalerSpec(match_labels={'intent': 'apps'})]

        handles = asyncio.run(AddonComposer(provider, timeouts).install_addons(ready_cluster, node_groups, specs))

        assert handles[0].diagnostics['tracked_node_groups'] == ['spot']
        assert handles[0].diagnostics['values']['autoscalingGroups'] == [
            {'name': 'eks-spot-asg', 'minSize': 2, 'maxSize': 5}
        ]

    def test_outcomes_are_recorded_while_installing(self, provider, timeouts, ready_cluster, node_groups, gitops):
        provider.addon_delays = {'flux': 1}
        composer = AddonComposer(provider, timeouts)

        async def cancel_midway():
            task = asyncio.create_task(composer.install_addons(ready_cluster, node_groups, [gitops]))
            await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(cancel_midway())

        assert composer.outcomes['flux'].status == ResourceStatus.PENDING
