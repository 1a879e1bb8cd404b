from dataclasses import dataclass
from typing import Any

import pytest

from ekspilot.core.addons.addon_factory import AddonFactory, register_builtin_addons
from ekspilot.core.addons.addon_spec import (
    AddonKind,
    AddonTier,
    AutoscalerSpec,
    GitOpsSyncSpec,
    LoadBalancerControllerSpec,
)
from ekspilot.core.addons.aws_load_balancer_controller_addon import AwsLoadBalancerControllerAddon
from ekspilot.core.addons.base_addon import BaseAddon
from ekspilot.core.addons.cluster_autoscaler_addon import ClusterAutoscalerAddon
from ekspilot.core.addons.flux_addon import FluxAddon
from ekspilot.core.exceptions import InvalidSpecError
from ekspilot.core.kubernetes import RoleReference
from ekspilot.core.kubernetes.chart_config import HelmChart


@dataclass(frozen=True)
class TestAddonSpec:
    kind = AddonKind.AUTOSCALER
    name: str = 'test-addon'


class TestAddon(BaseAddon):
    _helm_chart = HelmChart(
        name='test-addon',
        repo_url='https://example.com/charts',
        version='1.0.0',
    )

    kind = AddonKind.AUTOSCALER

    @property
    def namespace(self) -> str:
        return 'default'

    def chart_values(self, cluster, region=None) -> dict[str, Any]:
        return {}


@pytest.fixture(autouse=True)
def clean_registry():
    AddonFactory._registry.clear()
    yield


class TestAddonFactory:
    def test_register_addon_success(self):
        AddonFactory.register_addon(AddonKind.AUTOSCALER, TestAddon, TestAddonSpec)

        assert AddonKind.AUTOSCALER in AddonFactory._registry
        registered_addon_class, registered_spec_class = AddonFactory._registry[AddonKind.AUTOSCALER]
        assert registered_addon_class is TestAddon
        assert registered_spec_class is TestAddonSpec

    def test_register_addon_already_registered(self):
        AddonFactory.register_addon(AddonKind.AUTOSCALER, TestAddon, TestAddonSpec)

        with pytest.raises(ValueError, match="Addon kind 'autoscaler' is already registered."):
            AddonFactory.register_addon(AddonKind.AUTOSCALER, TestAddon, TestAddonSpec)

    def test_get_addon_info_not_registered(self):
        with pytest.raises(ValueError, match="Addon kind 'gitops_sync' is not registered."):
            AddonFactory._get_addon_info(AddonKind.GITOPS_SYNC)

    def test_get_addon_class_success(self):
        AddonFactory.register_addon(AddonKind.AUTOSCALER, TestAddon, TestAddonSpec)
        assert AddonFactory.get_addon_class(AddonKind.AUTOSCALER) is TestAddon

    def test_get_addon_success(self):
        AddonFactory.register_addon(AddonKind.AUTOSCALER, TestAddon, TestAddonSpec)

        addon = AddonFactory.get_addon(TestAddonSpec())

        assert isinstance(addon, TestAddon)
        assert addon.name == 'test-addon'
        assert addon.release_name == 'test-addon'
        assert addon.tier == AddonTier.CLUSTER

    def test_get_addon_not_registered_is_invalid_spec(self):
        with pytest.raises(InvalidSpecError, match='not registered'):
            AddonFactory.get_addon(GitOpsSyncSpec(repo_url='https://example/repo', repo_path='/'))

    def test_get_addon_wrong_spec_type_is_invalid_spec(self):
        AddonFactory.register_addon(AddonKind.AUTOSCALER, TestAddon, TestAddonSpec)

        with pytest.raises(InvalidSpecError, match='expects TestAddonSpec, got AutoscalerSpec'):
            AddonFactory.get_addon(AutoscalerSpec())

    def test_register_builtin_addons_is_idempotent(self):
        register_builtin_addons()
        register_builtin_addons()

        assert sorted(AddonFactory.get_registered_kinds()) == sorted(AddonKind)

    @pytest.mark.parametrize(
        'spec, addon_class, tier',
        [
            (AutoscalerSpec(), ClusterAutoscalerAddon, AddonTier.CLUSTER),
            (GitOpsSyncSpec(repo_url='https://example/repo', repo_path='/clusters/demo'), FluxAddon, AddonTier.CLUSTER),
            (LoadBalancerControllerSpec(), AwsLoadBalancerControllerAddon, AddonTier.IDENTITY_FEDERATION),
        ],
    )
    def test_builtin_addon_tiers(self, spec, addon_class, tier):
        register_builtin_addons()

        addon = AddonFactory.get_addon(spec)

        assert isinstance(addon, addon_class)
        assert addon.tier == tier


class TestBuiltinAddons:
    def test_flux_defaults(self):
        addon = FluxAddon(GitOpsSyncSpec(repo_url='https://example/repo', repo_path='/clusters/demo'))

        assert addon.spec.repo_branch == 'main'
        assert addon.spec.secret_name == 'github-keypair'
        assert [x.name for x in addon.pre_installation_actions] == ['require-repository-secret']
        assert [x.name for x in addon.post_installation_actions] == [
            'create-git-repository',
            'create-kustomization',
        ]

    def test_load_balancer_controller_values(self, ready_cluster):
        role = RoleReference('arn:aws:iam::123456789012:role/lb-controller')
        addon = AwsLoadBalancerControllerAddon(LoadBalancerControllerSpec(service_account_role=role))

        values = addon.chart_values(ready_cluster, 'eu-west-1')

        assert addon.namespace == 'kube-system'
        assert values['clusterName'] == 'demo'
        assert values['vpcId'] == 'vpc-0123'
        assert values['region'] == 'eu-west-1'
        assert values['serviceAccount'] == {'create': False, 'name': 'aws-load-balancer-controller'}
        assert addon.pre_installation_actions[0].role_arn == role.arn

    def test_load_balancer_controller_rejects_invalid_role(self):
        addon = AwsLoadBalancerControllerAddon(LoadBalancerControllerSpec(service_account_role=RoleReference('nope')))

        with pytest.raises(InvalidSpecError, match='invalid role reference'):
            addon.validate()

    def test_autoscaler_without_scaling_groups_uses_discovery(self, ready_cluster):
        addon = ClusterAutoscalerAddon(AutoscalerSpec())

        values = addon.chart_values(ready_cluster, 'eu-west-1')

        assert values['autoDiscovery'] == {'clusterName': 'demo'}
        assert 'autoscalingGroups' not in values
        assert values['awsRegion'] == 'eu-west-1'
