from abc import ABC, abstractmethod

from ekspilot.database.models import ProvisioningRun


class BaseDatabaseHandler(ABC):
    @abstractmethod
    def create_run(self, run: ProvisioningRun) -> int:
        pass

    @abstractmethod
    def get_run(self, run_id: int) -> ProvisioningRun | None:
        pass

    @abstractmethod
    def get_runs(self) -> list[ProvisioningRun]:
        pass

    @abstractmethod
    def update_run(self, run_id: int, updated_data: dict) -> None:
        pass
