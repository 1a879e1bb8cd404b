import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ekspilot.api.routers.provisioning import router as provisioning_router
from ekspilot.core.addons.addon_factory import AddonFactory, register_builtin_addons

app = FastAPI()


app.add_middleware(
    CORSMiddleware,
    allow_origins=['*'],
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    exc_str = f'{exc}'.replace('\n', ' ').replace('   ', ' ')
    logging.error(f'{request}: {exc_str}')
    content = {'status_code': 10422, 'message': exc_str, 'data': None}
    return JSONResponse(content=content, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY)


@app.on_event('startup')
async def register_addons() -> None:
    logging.info('Registering addons with AddonFactory...')

    register_builtin_addons()

    logging.info(f'Addons registration complete: {AddonFactory.get_registered_kinds()}')


app.include_router(provisioning_router)
