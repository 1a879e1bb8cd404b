import asyncio
from collections.abc import Sequence
from itertools import groupby

from ekspilot.core.addons.addon_factory import AddonFactory
from ekspilot.core.addons.addon_spec import AddonSpec, AddonTier
from ekspilot.core.addons.base_addon import BaseAddon
from ekspilot.core.config import ProvisioningTimeouts
from ekspilot.core.exceptions import (
    BackendError,
    ClusterNotReadyError,
    InvalidSpecError,
    TierPreconditionError,
    UnresolvedDependencyError,
)
from ekspilot.core.kubernetes import AddonHandle, ClusterHandle, NodeGroupHandle, ResourceStatus
from ekspilot.core.providers.base_provider import BaseProvider
from ekspilot.core.utils import setup_logger


class AddonComposer:
    """
    Installs addons onto a ready cluster in dependency order.

    Addons are validated all together before anything is installed, then installed tier by
    tier. Installs within a tier run concurrently and a failing addon never aborts its
    siblings: every addon ends up with a handle describing its outcome.
    """

    def __init__(self, provider: BaseProvider, timeouts: ProvisioningTimeouts | None = None) -> None:
        self._logger = setup_logger('AddonComposer')

        self._provider = provider
        self._timeouts = timeouts or ProvisioningTimeouts()

        self._outcomes: dict[str, AddonHandle] = {}
        self._outcomes_lock = asyncio.Lock()

    @property
    def outcomes(self) -> dict[str, AddonHandle]:
        return dict(self._outcomes)

    def prepare(self, node_groups: Sequence[NodeGroupHandle], specs: Sequence[AddonSpec]) -> list[BaseAddon]:
        """Resolve and validate every addon. Raises before any side effect."""
        addons = [AddonFactory.get_addon(x) for x in specs]

        seen: set[str] = set()
        for addon in addons:
            addon.validate()

            if addon.name in seen:
                raise InvalidSpecError(f'Addon name {addon.name} is used more than once')
            seen.add(addon.name)

        available = {x.name: x for x in node_groups}

        missing = {x.name: refs for x in addons if (refs := x.node_group_references(available))}
        if missing:
            raise UnresolvedDependencyError(missing)

        for addon in addons:
            addon.bind_node_groups(available)

        return addons

    async def install_addons(
        self, cluster: ClusterHandle, node_groups: Sequence[NodeGroupHandle], specs: Sequence[AddonSpec]
    ) -> list[AddonHandle]:
        if not cluster.is_ready:
            raise ClusterNotReadyError(cluster.name, cluster.state)

        addons = self.prepare(node_groups, specs)

        self._logger.info(f'Installing {len(addons)} addon(s) on cluster {cluster.name}')

        by_tier = sorted(addons, key=lambda x: x.tier)
        for tier, tier_addons in groupby(by_tier, key=lambda x: x.tier):
            await self._install_tier(cluster, AddonTier(tier), list(tier_addons))

        return [self._outcomes[x.name] for x in addons]

    async def _install_tier(self, cluster: ClusterHandle, tier: AddonTier, addons: list[BaseAddon]) -> None:
        if tier == AddonTier.IDENTITY_FEDERATION and cluster.identity_federation is None:
            error = TierPreconditionError(f'Cluster {cluster.name} has no identity federation reference')
            self._logger.warning(f'Tier {tier} skipped: {error}')

            for addon in addons:
                await self._record(self._handle(addon, ResourceStatus.FAILED, error=error))
            return

        self._logger.info(f'Installing tier {tier}: {[x.name for x in addons]}')

        await asyncio.gather(*(self._install(cluster, x) for x in addons))

    async def _install(self, cluster: ClusterHandle, addon: BaseAddon) -> None:
        await self._record(self._handle(addon, ResourceStatus.PENDING))

        try:
            existing = await self._provider.describe_addon(cluster, addon)

            if existing is not None and existing.status == 'deployed':
                self._logger.info(f'Addon {addon.name} already installed (revision {existing.revision})')
                await self._record(
                    self._handle(addon, ResourceStatus.ALREADY_INSTALLED, {'revision': existing.revision})
                )
                return

            async with asyncio.timeout(self._timeouts.addon_ready):
                diagnostics = await self._provider.install_addon(cluster, addon, self._timeouts.addon_ready)
        except BackendError as e:
            self._logger.exception(f'Addon {addon.name} failed: {e}', exc_info=False)
            await self._record(self._handle(addon, ResourceStatus.FAILED, error=e))
            return
        except TimeoutError:
            self._logger.warning(f'Addon {addon.name} not ready after {self._timeouts.addon_ready}s, left pending')
            await self._record(
                self._handle(
                    addon,
                    ResourceStatus.PENDING,
                    error_kind='Timeout',
                    error_message=f'not ready after {self._timeouts.addon_ready}s',
                )
            )
            return
        except Exception as e:
            self._logger.exception(f'Unexpected error installing addon {addon.name}: {e}', exc_info=True)
            await self._record(
                self._handle(addon, ResourceStatus.FAILED, error_kind=BackendError.kind, error_message=str(e))
            )
            return

        self._logger.info(f'Addon {addon.name} installed')
        await self._record(self._handle(addon, ResourceStatus.READY, diagnostics))

    async def _record(self, handle: AddonHandle) -> None:
        async with self._outcomes_lock:
            self._outcomes[handle.name] = handle

    @staticmethod
    def _handle(
        addon: BaseAddon,
        status: ResourceStatus,
        diagnostics: dict | None = None,
        error: Exception | None = None,
        error_kind: str | None = None,
        error_message: str | None = None,
    ) -> AddonHandle:
        return AddonHandle(
            name=addon.name,
            kind=str(addon.kind),
            tier=int(addon.tier),
            status=status,
            diagnostics={**addon.diagnostics(), **(diagnostics or {})},
            error_kind=getattr(error, 'kind', None) if error else error_kind,
            error_message=str(error) if error else error_message,
        )
