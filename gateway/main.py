import logging
from contextlib import asynccontextmanager
from pprint import pprint
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import ORJSONResponse

from gateway.config import ConfigurationService, setup_config
from gateway.config.log import configure_structlog, get_logger
from gateway.config.models import ConfigModel
from gateway.dependencies.container import ServiceContainer, build_service_container
from gateway.errors import GatewayException
from gateway.middlewares.request_context import RequestContextMiddleware
from gateway.routers.chat import router as chat_router
from gateway.routers.health import router as health_router


def create_app(config: Optional[ConfigModel] = None, service_container: Optional[ServiceContainer] = None) -> FastAPI:
    """Application factory for creating FastAPI instances.

    Args:
        config: Optional configuration. If None, loads the user's config file.
        service_container: Optional prebuilt container, mostly for tests.

    Returns:
        Configured FastAPI application instance.
    """
    if config is None:
        setup_config()
        config_service = ConfigurationService()
        config = config_service.get_config()
    else:
        config_service = ConfigurationService(config=config)

    configure_structlog(config.logging)
    logger = get_logger(__name__)

    if service_container is None:
        service_container = build_service_container(config_service)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.service_container.aclose()

    app = FastAPI(title='inference-gateway', version='0.1.0', lifespan=lifespan)

    app.state.config = config
    app.state.config_service = config_service
    app.state.service_container = service_container

    for k in logging.root.manager.loggerDict.keys():
        if any(k.startswith(v) for v in {'fastapi', 'uvicorn', 'httpx', 'httpcore', 'hpack'}):
            logging.getLogger(k).setLevel('INFO')

    app.include_router(health_router, prefix='/api', tags=['health'])
    app.include_router(chat_router, prefix='/api', tags=['chat'])

    # Executed LIFO
    app.add_middleware(GZipMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_allow_origins,
        allow_credentials=True,
        allow_methods=['GET', 'POST', 'OPTIONS'],
        allow_headers=['*'],
    )
    app.add_middleware(RequestContextMiddleware)

    @app.exception_handler(RequestValidationError)
    async def request_validation_error_handler(request: Request, exc: RequestValidationError):
        error_msg = f'request validation error: {exc.errors()}'
        logger.debug('validation error', errors=exc.errors())
        return ORJSONResponse(status_code=400, content={'error': {'type': 'invalid_request_error', 'message': error_msg}})

    @app.exception_handler(GatewayException)
    async def gateway_exception_handler(request: Request, exc: GatewayException):
        handler = request.app.state.service_container.error_handler
        return ORJSONResponse(status_code=handler.get_http_status(exc), content=handler.get_error_payload(exc))

    if config.dev:
        pprint(config.model_dump())

    return app


def main() -> None:
    import uvicorn

    setup_config()
    config = ConfigurationService().get_config()
    uvicorn.run(
        'gateway.main:create_app',
        factory=True,
        host=config.host,
        port=config.port,
        reload=config.dev,
    )


if __name__ == '__main__':
    main()
