"""Service container wiring stores, transport and the streaming services together."""

from typing import Optional

import httpx

from gateway.config import ConfigurationService
from gateway.config.log import get_logger
from gateway.providers.auth import AuthResolver
from gateway.services.budget import TokenBudgetManager
from gateway.services.chat import ChatService
from gateway.services.error_handler import ErrorHandlingService
from gateway.services.fallback import NonStreamFallback
from gateway.services.relay import SseRelay
from gateway.services.tokenizer import TokenizerService
from gateway.services.transport import ProviderRequester
from gateway.services.usage import UsageReconciler
from gateway.stores import (
    ConfigConnectionStore,
    ConnectionStore,
    CredentialCipher,
    InMemoryMessageStore,
    InMemorySessionStore,
    InMemoryUsageStore,
    MessageStore,
    PassthroughCipher,
    SessionStore,
    UsageStore,
)

logger = get_logger(__name__)


class ServiceContainer:
    """Owns the shared HTTP client and every per-process service."""

    def __init__(
        self,
        config_service: ConfigurationService,
        http_client: Optional[httpx.AsyncClient] = None,
        connections: Optional[ConnectionStore] = None,
        sessions: Optional[SessionStore] = None,
        messages: Optional[MessageStore] = None,
        usage: Optional[UsageStore] = None,
        cipher: Optional[CredentialCipher] = None,
    ):
        self.config_service = config_service
        self.app_config = config_service.get_config()
        streaming = self.app_config.streaming

        # Shared across providers, the abort signal governs per-call deadlines
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(streaming.provider_timeout, connect=30.0),
            http2=True,
        )

        self.connections = connections or ConfigConnectionStore(self.app_config)
        self.sessions = sessions or InMemorySessionStore()
        self.messages = messages or InMemoryMessageStore()
        self.usage = usage or InMemoryUsageStore()
        self.cipher = cipher or PassthroughCipher()

        self.error_handler = ErrorHandlingService()
        self.tokenizer = TokenizerService()
        self.auth = AuthResolver(self.cipher, self.http_client, system_oauth_token=self.app_config.system_oauth_token)
        self.requester = ProviderRequester(
            self.http_client,
            backoff_429=streaming.backoff_429,
            backoff_5xx=streaming.backoff_5xx,
            error_handler=self.error_handler,
        )
        self.reconciler = UsageReconciler(self.usage, self.tokenizer)
        self.relay = SseRelay(
            self.requester,
            NonStreamFallback(self.requester),
            self.reconciler,
            self.messages,
            error_handler=self.error_handler,
        )
        self.chat_service = ChatService(
            streaming,
            self.connections,
            self.sessions,
            self.messages,
            self.auth,
            budget=TokenBudgetManager(self.tokenizer),
        )

        logger.info(f'Service container initialized: {len(self.app_config.connections)} connections, {len(self.app_config.models)} models')

    async def aclose(self, drain_timeout: float = 5.0) -> None:
        """Let in-flight relays persist, then close the shared client."""
        await self.relay.wait_closed(timeout=drain_timeout)
        await self.http_client.aclose()


def build_service_container(config_service: ConfigurationService, **overrides) -> ServiceContainer:
    return ServiceContainer(config_service, **overrides)
