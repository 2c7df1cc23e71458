"""Resolution of an incoming chat request into a relay job."""

from typing import Any, Dict, List, Optional

from gateway.config.log import get_logger
from gateway.config.models import StreamingConfig
from gateway.config.settings import StreamSettings, resolve_stream_settings
from gateway.context import get_request_context
from gateway.errors import ModelNotFoundError, SessionNotFoundError, ValidationError
from gateway.models import CanonicalRequest, ChatStreamRequest, ContentPart, ImagePart, ReasoningOptions, SamplingParams, TextPart, Turn
from gateway.providers.auth import AuthResolver
from gateway.providers.registry import get_adapter
from gateway.services.budget import TokenBudgetManager
from gateway.services.relay import RelayJob
from gateway.stores import ConnectionStore, MessageStore, Session, SessionStore, StoredMessage


def _build_content(text: str, images: List[str]) -> str | tuple:
    if not images:
        return text
    parts: List[ContentPart] = []
    if text:
        parts.append(TextPart(text=text))
    parts.extend(ImagePart(image_url=url) for url in images)
    return tuple(parts)


def request_overrides(payload: ChatStreamRequest) -> Dict[str, Any]:
    """Per-request stream setting overrides carried on the request body."""
    return {
        'reasoning_enabled': payload.reasoning_enabled,
        'reasoning_effort': payload.reasoning_effort,
        'ollama_think': payload.ollama_think,
        'reasoning_save_to_db': payload.save_reasoning,
        'temperature': payload.temperature,
    }


class ChatService:
    """Validates a chat turn and builds everything the relay needs before any upstream call."""

    def __init__(
        self,
        streaming: StreamingConfig,
        connections: ConnectionStore,
        sessions: SessionStore,
        messages: MessageStore,
        auth: AuthResolver,
        budget: Optional[TokenBudgetManager] = None,
        logger=None,
    ):
        self.streaming = streaming
        self.connections = connections
        self.sessions = sessions
        self.messages = messages
        self.auth = auth
        self.budget = budget or TokenBudgetManager()
        self.logger = logger or get_logger(__name__)

    async def prepare(self, payload: ChatStreamRequest) -> RelayJob:
        if not payload.content.strip() and not payload.images:
            raise ValidationError('Message content must not be empty')

        session = await self._resolve_session(payload)
        alias = payload.model or session.model_alias
        model = await self.connections.get_model(alias) if alias else await self.connections.default_model()
        if model is None:
            raise ModelNotFoundError(f"Model '{alias}' not found" if alias else 'No model configured')

        connection = await self.connections.get_connection(model.connection)
        if connection is None:
            raise ModelNotFoundError(f"Connection '{model.connection}' for model '{model.alias}' not found")
        adapter = get_adapter(connection.provider)

        settings = resolve_stream_settings(self.streaming, session.settings, request_overrides(payload))

        images = [image.to_data_url() for image in payload.images]
        user_message = await self.messages.create_user_message(session.id, payload.content, images, payload.client_message_id)

        history: List[Turn] = []
        if payload.context_enabled is not False:
            history = self._history_turns(await self.messages.list_history(session.id), user_message.id)
        pending = Turn(role='user', content=_build_content(payload.content, images))

        context = self.budget.build_context(history, pending, model.context_limit, model.completion_limit, payload.max_tokens)
        request = CanonicalRequest(
            model=model.id,
            turns=tuple(context.turns),
            sampling=SamplingParams(temperature=settings.temperature, max_tokens=context.applied_max_tokens),
            reasoning=self._reasoning_options(settings),
            stream=True,
        )

        auth_headers = await self.auth.resolve(connection)
        provider_request = adapter.build_request(request, connection, model.id, auth_headers, stream=True)

        get_request_context().update_turn_info(session.id, model.alias, connection.provider)
        self.logger.info(
            'Prepared chat turn',
            model=model.alias,
            provider=connection.provider,
            prompt_tokens=context.prompt_tokens,
            turns=len(context.turns),
        )

        return RelayJob(
            session_id=session.id,
            user_message_id=user_message.id,
            model=model,
            connection=connection,
            adapter=adapter,
            request=request,
            provider_request=provider_request,
            auth_headers=auth_headers,
            prompt_tokens=context.prompt_tokens,
            context_limit=context.context_limit,
            context_remaining=context.context_remaining,
            settings=settings,
        )

    async def _resolve_session(self, payload: ChatStreamRequest) -> Session:
        if payload.session_id:
            session = await self.sessions.get_session(payload.session_id)
            if session is None:
                raise SessionNotFoundError(f"Session '{payload.session_id}' not found")
            return session
        return await self.sessions.create_session(payload.model)

    @staticmethod
    def _history_turns(messages: List[StoredMessage], user_message_id: str) -> List[Turn]:
        """Turns strictly before the pending user message."""
        turns = []
        for message in messages:
            if message.id == user_message_id:
                break
            if message.role not in ('system', 'user', 'assistant'):
                continue
            turns.append(Turn(role=message.role, content=_build_content(message.content, message.images)))
        return turns

    @staticmethod
    def _reasoning_options(settings: StreamSettings) -> ReasoningOptions:
        return ReasoningOptions(
            enabled=settings.reasoning_enabled,
            effort=settings.reasoning_effort or None,
            think=settings.ollama_think,
        )
