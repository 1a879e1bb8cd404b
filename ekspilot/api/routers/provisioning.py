from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.background import BackgroundTasks

from ekspilot.api.schemas import ProvisioningRunCreateResponseSchema, ProvisioningRunCreateSchema, ProvisioningRunSchema
from ekspilot.core.provisioning.orchestrator import RunState
from ekspilot.core.provisioning.run_manager import RunManager
from ekspilot.core.providers.provider_factory import ProviderFactory
from ekspilot.core.utils import setup_logger

logger = setup_logger('APIProvisioningRouter')

router = APIRouter()


def get_run_manager() -> RunManager:
    return RunManager()


@router.post(
    '/provisioning-runs/', response_model=ProvisioningRunCreateResponseSchema, status_code=status.HTTP_202_ACCEPTED
)
async def create_provisioning_run(
    run: ProvisioningRunCreateSchema,
    background_tasks: BackgroundTasks,
    run_manager: RunManager = Depends(get_run_manager),
) -> ProvisioningRunCreateResponseSchema:
    logger.info(f'Received request to provision cluster: {run.plan.cluster.name}')

    try:
        provider = ProviderFactory.get_provider(run.provider, run.provider_config)
    except (TypeError, ValueError) as e:
        logger.exception(f'Invalid provider {run.provider}: {e}', exc_info=False)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    plan = run.plan.to_plan()

    run_id = run_manager.create_run(provider, run.provider_config, plan)

    background_tasks.add_task(run_manager.execute_run, run_id, provider, plan)

    return ProvisioningRunCreateResponseSchema(id=run_id, cluster_name=plan.cluster.name, state=RunState.INIT)


@router.get('/provisioning-runs/{run_id}', response_model=ProvisioningRunSchema)
def get_provisioning_run(run_id: int, run_manager: RunManager = Depends(get_run_manager)) -> ProvisioningRunSchema:
    run = run_manager.get_run(run_id)
    if not run:
        raise HTTPException(status_code=404, detail='Provisioning run not found')
    return run


@router.get('/provisioning-runs/', response_model=list[ProvisioningRunSchema])
def get_provisioning_runs(run_manager: RunManager = Depends(get_run_manager)) -> list[ProvisioningRunSchema]:
    return run_manager.get_runs()
