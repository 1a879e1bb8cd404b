from typing import ClassVar

from ekspilot.core.addons.addon_spec import (
    AddonKind,
    AddonSpec,
    AutoscalerSpec,
    GitOpsSyncSpec,
    LoadBalancerControllerSpec,
)
from ekspilot.core.addons.aws_load_balancer_controller_addon import AwsLoadBalancerControllerAddon
from ekspilot.core.addons.base_addon import BaseAddon
from ekspilot.core.addons.cluster_autoscaler_addon import ClusterAutoscalerAddon
from ekspilot.core.addons.flux_addon import FluxAddon
from ekspilot.core.exceptions import InvalidSpecError


class AddonFactory:
    # The internal registry mapping addon kind to (AddonClass, SpecClass).
    _registry: ClassVar[dict[AddonKind, tuple[type[BaseAddon], type]]] = {}

    @classmethod
    def register_addon(cls, kind: AddonKind, addon_class: type[BaseAddon], spec_class: type) -> None:
        if kind in cls._registry:
            raise ValueError(f"Addon kind '{kind}' is already registered.")

        cls._registry[kind] = (addon_class, spec_class)

    @classmethod
    def _get_addon_info(cls, kind: AddonKind) -> tuple[type[BaseAddon], type]:
        info = cls._registry.get(kind)
        if info is None:
            raise ValueError(f"Addon kind '{kind}' is not registered.")
        return info

    @classmethod
    def get_addon_class(cls, kind: AddonKind) -> type[BaseAddon]:
        addon_class, _ = cls._get_addon_info(kind)
        return addon_class

    @classmethod
    def get_addon(cls, spec: AddonSpec) -> BaseAddon:
        kind = getattr(spec, 'kind', None)

        try:
            addon_class, spec_class = cls._get_addon_info(kind)
        except ValueError as e:
            raise InvalidSpecError(str(e)) from e

        if not isinstance(spec, spec_class):
            raise InvalidSpecError(f'Addon kind {kind} expects {spec_class.__name__}, got {type(spec).__name__}')

        return addon_class(spec)

    @classmethod
    def get_registered_kinds(cls) -> list[AddonKind]:
        return list(cls._registry.keys())


def register_builtin_addons() -> None:
    builtin = (
        (AddonKind.AUTOSCALER, ClusterAutoscalerAddon, AutoscalerSpec),
        (AddonKind.GITOPS_SYNC, FluxAddon, GitOpsSyncSpec),
        (AddonKind.LOAD_BALANCER_CONTROLLER, AwsLoadBalancerControllerAddon, LoadBalancerControllerSpec),
    )

    for kind, addon_class, spec_class in builtin:
        if kind not in AddonFactory.get_registered_kinds():
            AddonFactory.register_addon(kind, addon_class, spec_class)
