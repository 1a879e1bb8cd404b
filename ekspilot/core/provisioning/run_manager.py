import logging
import re
from datetime import datetime
from pathlib import Path

from ekspilot.core.config import DATABASE_URL, ProvisioningTimeouts
from ekspilot.core.providers.base_provider import BaseProvider
from ekspilot.core.provisioning.orchestrator import ProvisioningOrchestrator, RunState
from ekspilot.core.provisioning.plan import ProvisioningPlan
from ekspilot.core.utils import setup_logger
from ekspilot.database.handlers.sqlite_handler import SQLiteHandler
from ekspilot.database.models import ProvisioningRun


class RunManager:
    """Keeps a record of every provisioning run and executes runs in the background."""

    _instance: 'RunManager' = None
    _logger: logging.Logger = None

    def __new__(cls, db_url: str = DATABASE_URL, timeouts: ProvisioningTimeouts | None = None) -> 'RunManager':
        if cls._instance is None:
            cls._instance = super().__new__(cls)

            cls._logger = setup_logger('RunManager')

            if db_url.startswith('sqlite:///'):
                Path(db_url.removeprefix('sqlite:///')).parent.mkdir(parents=True, exist_ok=True)

            cls.storage = SQLiteHandler(db_url)
            cls.timeouts = timeouts or ProvisioningTimeouts()

            cls._logger.info('RunManager initialised')
        return cls._instance

    def create_run(self, provider: BaseProvider, provider_config: dict, plan: ProvisioningPlan) -> int:
        run = ProvisioningRun(
            cluster_name=plan.cluster.name,
            provider=provider.name,
            provider_config=provider_config,
            plan=plan.to_dict(),
            state=RunState.INIT,
        )

        run_id = self.storage.create_run(run)

        self._logger.info(f'Run {run_id} created for cluster {plan.cluster.name}')

        return run_id

    async def execute_run(self, run_id: int, provider: BaseProvider, plan: ProvisioningPlan) -> None:
        orchestrator = ProvisioningOrchestrator(
            provider, self.timeouts, on_state_change=lambda state: self._record_state(run_id, state)
        )

        try:
            report = await orchestrator.apply(plan)
        except Exception as e:
            self._logger.exception(f'Error while executing run {run_id}: {e}', exc_info=True)

            self.storage.update_run(
                run_id,
                {
                    'state': RunState.FAILED,
                    'failed_stage': orchestrator.stage,
                    'error_message': self._format_error(str(e)),
                    'report': orchestrator.report.to_dict(),
                    'finished_at': datetime.now(),
                },
            )
            return

        self.storage.update_run(
            run_id,
            {
                'state': report.state,
                'failed_stage': report.failed_stage,
                'error_message': self._format_error(report.error_message) if report.error_message else None,
                'report': report.to_dict(),
                'finished_at': datetime.now(),
            },
        )

        self._logger.info(f'Run {run_id} finished in state {report.state}')

    def _record_state(self, run_id: int, state: RunState) -> None:
        self.storage.update_run(run_id, {'state': state})
        self._logger.debug(f'Run {run_id} entered {state}')

    @staticmethod
    def _format_error(message: str) -> str:
        return re.sub(
            r'WARNING: Kubernetes configuration file is (?:world|group)-readable\. This is insecure\. Location: .*\.yaml',
            '',
            message,
        ).strip()

    def get_run(self, run_id: int) -> ProvisioningRun | None:
        return self.storage.get_run(run_id)

    def get_runs(self) -> list[ProvisioningRun]:
        return self.storage.get_runs()
