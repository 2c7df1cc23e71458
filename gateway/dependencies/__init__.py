"""FastAPI dependencies resolving services from the application's container."""

from fastapi import Depends, Request

from gateway.dependencies.container import ServiceContainer, build_service_container
from gateway.services.chat import ChatService
from gateway.services.error_handler import ErrorHandlingService
from gateway.services.relay import SseRelay


def get_service_container_dependency(request: Request) -> ServiceContainer:
    """Container from app state, built lazily from the config service on first use."""
    container = getattr(request.app.state, 'service_container', None)
    if container is None:
        container = build_service_container(request.app.state.config_service)
        request.app.state.service_container = container
    return container


def get_chat_service_dependency(container: ServiceContainer = Depends(get_service_container_dependency)) -> ChatService:
    return container.chat_service


def get_relay_dependency(container: ServiceContainer = Depends(get_service_container_dependency)) -> SseRelay:
    return container.relay


def get_error_handler_dependency(container: ServiceContainer = Depends(get_service_container_dependency)) -> ErrorHandlingService:
    return container.error_handler
