from dataclasses import dataclass

from ekspilot.core.exceptions import InvalidSpecError
from ekspilot.core.kubernetes import PlacementKind
from ekspilot.core.providers.base_provider import BaseProvider
from ekspilot.core.utils import setup_logger


@dataclass(frozen=True)
class PlacementGroup:
    kind: PlacementKind
    subnet_ids: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.subnet_ids


@dataclass(frozen=True)
class NetworkSelection:
    network_id: str
    private: PlacementGroup
    public: PlacementGroup

    @property
    def all_subnet_ids(self) -> tuple[str, ...]:
        return self.private.subnet_ids + self.public.subnet_ids

    def for_kind(self, kind: PlacementKind) -> PlacementGroup:
        return self.private if kind == PlacementKind.PRIVATE else self.public

    def to_dict(self) -> dict:
        return {
            'network_id': self.network_id,
            'private': list(self.private.subnet_ids),
            'public': list(self.public.subnet_ids),
        }


class NetworkSelector:
    """Partitions the subnets of an existing network into private and public placement groups."""

    def __init__(self, provider: BaseProvider) -> None:
        self._logger = setup_logger('NetworkSelector')

        self._provider = provider

    async def select(self, network_id: str) -> NetworkSelection:
        if not network_id:
            raise InvalidSpecError('Network id must not be empty')

        subnets = await self._provider.list_subnets(network_id)

        if not subnets:
            raise InvalidSpecError(f'Network {network_id} has no subnets')

        selection = NetworkSelection(
            network_id=network_id,
            private=PlacementGroup(PlacementKind.PRIVATE, tuple(x.id for x in subnets if not x.is_public)),
            public=PlacementGroup(PlacementKind.PUBLIC, tuple(x.id for x in subnets if x.is_public)),
        )

        self._logger.info(
            f'Network {network_id}: {len(selection.private.subnet_ids)} private, '
            f'{len(selection.public.subnet_ids)} public subnet(s)'
        )

        return selection
