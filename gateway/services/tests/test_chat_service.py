import httpx
import pytest

from gateway.config.models import ConfigModel
from gateway.errors import ModelNotFoundError, SessionNotFoundError, UnsupportedProviderError, ValidationError
from gateway.models import ChatImage, ChatStreamRequest, ImagePart, TextPart
from gateway.providers.auth import AuthResolver
from gateway.services.chat import ChatService, request_overrides
from gateway.stores import ConfigConnectionStore, InMemoryMessageStore, InMemorySessionStore, PassthroughCipher

CONFIG = {
    'connections': [
        {'id': 'main', 'provider': 'openai', 'base_url': 'https://upstream.test/v1', 'api_key': 'sk-test'},
        {'id': 'odd', 'provider': 'anthropic', 'base_url': 'https://other.test'},
    ],
    'models': [
        {'alias': 'gpt', 'connection': 'main', 'id': 'gpt-4o-mini', 'context_limit': 100},
        {'alias': 'claude', 'connection': 'odd'},
    ],
}


@pytest.fixture
def config():
    return ConfigModel(**CONFIG)


@pytest.fixture
def sessions():
    return InMemorySessionStore()


@pytest.fixture
def messages():
    return InMemoryMessageStore()


@pytest.fixture
def service(config, sessions, messages):
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    return ChatService(config.streaming, ConfigConnectionStore(config), sessions, messages, AuthResolver(PassthroughCipher(), client))


class TestValidation:
    @pytest.mark.asyncio
    async def test_empty_content_rejected(self, service):
        with pytest.raises(ValidationError):
            await service.prepare(ChatStreamRequest(model='gpt', content='   '))

    @pytest.mark.asyncio
    async def test_unknown_model(self, service):
        with pytest.raises(ModelNotFoundError, match='nope'):
            await service.prepare(ChatStreamRequest(model='nope', content='Hi'))

    @pytest.mark.asyncio
    async def test_unknown_session(self, service):
        with pytest.raises(SessionNotFoundError):
            await service.prepare(ChatStreamRequest(session_id='missing', model='gpt', content='Hi'))

    @pytest.mark.asyncio
    async def test_unsupported_provider_fails_before_any_call(self, service, messages):
        with pytest.raises(UnsupportedProviderError):
            await service.prepare(ChatStreamRequest(model='claude', content='Hi'))

        assert messages.messages == {}


class TestPrepare:
    @pytest.mark.asyncio
    async def test_builds_provider_request(self, service):
        job = await service.prepare(ChatStreamRequest(model='gpt', content='Hello'))

        assert job.model.alias == 'gpt'
        assert job.connection.id == 'main'
        assert job.prompt_tokens == 10
        assert job.context_limit == 100
        assert job.context_remaining == 90
        assert job.provider_request.url == 'https://upstream.test/v1/chat/completions'
        assert job.provider_request.headers['Authorization'] == 'Bearer sk-test'
        assert job.provider_request.payload['model'] == 'gpt-4o-mini'
        assert job.provider_request.payload['messages'] == [{'role': 'user', 'content': 'Hello'}]
        assert job.provider_request.payload['max_tokens'] == 90
        assert job.provider_request.payload['temperature'] == 0.7

    @pytest.mark.asyncio
    async def test_default_model_used_without_alias(self, service):
        job = await service.prepare(ChatStreamRequest(content='Hello'))

        assert job.model.alias == 'gpt'

    @pytest.mark.asyncio
    async def test_history_precedes_pending_turn(self, service, messages):
        first = await service.prepare(ChatStreamRequest(model='gpt', content='Hello'))
        await messages.create_assistant_message(first.session_id, 'Hi there', parent_id=first.user_message_id)

        second = await service.prepare(ChatStreamRequest(session_id=first.session_id, content='Again'))

        assert second.provider_request.payload['messages'] == [
            {'role': 'user', 'content': 'Hello'},
            {'role': 'assistant', 'content': 'Hi there'},
            {'role': 'user', 'content': 'Again'},
        ]

    @pytest.mark.asyncio
    async def test_context_disabled_sends_only_pending_turn(self, service, messages):
        first = await service.prepare(ChatStreamRequest(model='gpt', content='Hello'))
        await messages.create_assistant_message(first.session_id, 'Hi there')

        second = await service.prepare(ChatStreamRequest(session_id=first.session_id, content='Fresh', context_enabled=False))

        assert second.provider_request.payload['messages'] == [{'role': 'user', 'content': 'Fresh'}]

    @pytest.mark.asyncio
    async def test_client_message_id_is_idempotent(self, service, messages):
        first = await service.prepare(ChatStreamRequest(model='gpt', content='Hello', client_message_id='c-1'))
        again = await service.prepare(
            ChatStreamRequest(session_id=first.session_id, model='gpt', content='Hello', client_message_id='c-1')
        )

        assert again.user_message_id == first.user_message_id
        assert len(messages.messages[first.session_id]) == 1
        assert again.provider_request.payload['messages'] == [{'role': 'user', 'content': 'Hello'}]

    @pytest.mark.asyncio
    async def test_images_become_content_parts(self, service):
        job = await service.prepare(ChatStreamRequest(model='gpt', content='What is this?', images=[ChatImage(data='Zm9v', mime='image/jpeg')]))

        assert job.request.turns[-1].content == (
            TextPart(text='What is this?'),
            ImagePart(image_url='data:image/jpeg;base64,Zm9v'),
        )

    @pytest.mark.asyncio
    async def test_request_overrides_win(self, service):
        job = await service.prepare(ChatStreamRequest(model='gpt', content='Hi', temperature=0.2, reasoning_effort='high', max_tokens=5))

        payload = job.provider_request.payload
        assert payload['temperature'] == 0.2
        assert payload['reasoning_effort'] == 'high'
        assert payload['max_tokens'] == 5
        assert job.settings.temperature == 0.2

    @pytest.mark.asyncio
    async def test_session_defaults_apply(self, service, sessions):
        session = await sessions.create_session('gpt')
        session.settings = {'temperature': 1.5, 'usage_emit': False}

        job = await service.prepare(ChatStreamRequest(session_id=session.id, content='Hi'))

        assert job.settings.temperature == 1.5
        assert job.settings.usage_emit is False
        assert job.model.alias == 'gpt'


def test_request_overrides_map_save_reasoning():
    overrides = request_overrides(ChatStreamRequest(content='x', save_reasoning=False))

    assert overrides['reasoning_save_to_db'] is False
    assert overrides['temperature'] is None
