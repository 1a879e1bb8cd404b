from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ekspilot.core.kubernetes.kubernetes_cluster import KubernetesCluster


class BasePrePostInstallAction(ABC):
    def __init__(self, name: str, condition: bool = True) -> None:
        self.name = name
        self.condition = condition

        self._validate()

    @abstractmethod
    def run(self, cluster: KubernetesCluster, namespace: str) -> None:
        pass

    @abstractmethod
    def _validate(self) -> None:
        pass
