"""OpenAI-style chat completions adapters (OpenAI and Azure OpenAI)."""

from typing import Any, Dict, List, Mapping, Union

from gateway.config.models import ConnectionConfig
from gateway.models import CanonicalRequest, ImagePart, TextPart, Turn
from gateway.providers.base import ChunkDelta, FinalResponse, ProviderAdapter, ProviderRequest
from gateway.providers.types import ProviderKind
from gateway.services.usage import normalize_usage

DEFAULT_AZURE_API_VERSION = '2024-02-15-preview'


def _text_of(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return ''.join(part.get('text', '') for part in content if isinstance(part, dict) and part.get('type') == 'text')
    return ''


def _first_choice(body: Dict[str, Any]) -> Dict[str, Any]:
    choices = body.get('choices') or []
    if choices and isinstance(choices[0], dict):
        return choices[0]
    return {}


class OpenAIAdapter(ProviderAdapter):
    """Adapter for `/chat/completions` endpoints."""

    kind = ProviderKind.OPENAI
    framing = 'sse'

    def build_request(
        self,
        request: CanonicalRequest,
        connection: ConnectionConfig,
        raw_model_id: str,
        auth_headers: Mapping[str, str],
        stream: bool = True,
    ) -> ProviderRequest:
        payload: Dict[str, Any] = {
            'model': raw_model_id,
            'messages': [self._convert_turn(turn) for turn in request.turns],
            'stream': stream,
        }

        sampling = request.sampling
        if sampling.temperature is not None:
            payload['temperature'] = sampling.temperature
        if sampling.top_p is not None:
            payload['top_p'] = sampling.top_p
        if sampling.max_tokens is not None:
            payload['max_tokens'] = sampling.max_tokens

        reasoning = request.reasoning
        if reasoning.enabled and reasoning.effort:
            payload['reasoning_effort'] = reasoning.effort
        if reasoning.enabled and reasoning.think:
            payload['think'] = True

        # o1 family rejects max_tokens
        if raw_model_id.lower().startswith('o1') and 'max_tokens' in payload:
            payload['max_completion_tokens'] = payload.pop('max_tokens')

        return ProviderRequest(
            url=self._build_url(connection, raw_model_id),
            headers=self._base_headers(connection, auth_headers),
            payload=payload,
            framing=self.framing,
            stream=stream,
        )

    def _build_url(self, connection: ConnectionConfig, raw_model_id: str) -> str:
        return self._join_url(connection.base_url, '/chat/completions')

    def _convert_turn(self, turn: Turn) -> Dict[str, Any]:
        content: Union[str, List[Dict[str, Any]]]
        if isinstance(turn.content, str):
            content = turn.content
        else:
            content = []
            for part in turn.content:
                if isinstance(part, TextPart):
                    content.append({'type': 'text', 'text': part.text})
                elif isinstance(part, ImagePart):
                    content.append({'type': 'image_url', 'image_url': {'url': part.image_url}})
        return {'role': turn.role, 'content': content}

    def parse_chunk(self, unit: Dict[str, Any]) -> ChunkDelta:
        choice = _first_choice(unit)
        delta = choice.get('delta') or {}

        reasoning = delta.get('reasoning_content') or delta.get('reasoning') or ''
        usage = unit.get('usage')

        return ChunkDelta(
            content=_text_of(delta.get('content')),
            reasoning=reasoning if isinstance(reasoning, str) else '',
            finish_reason=choice.get('finish_reason'),
            usage=normalize_usage(usage) if isinstance(usage, dict) else None,
        )

    def parse_final(self, body: Dict[str, Any]) -> FinalResponse:
        choice = _first_choice(body)
        message = choice.get('message') or {}
        usage = body.get('usage')

        return FinalResponse(
            content=_text_of(message.get('content')),
            reasoning=message.get('reasoning_content') or message.get('reasoning') or '',
            finish_reason=choice.get('finish_reason'),
            usage=normalize_usage(usage) if isinstance(usage, dict) else None,
            raw=body,
        )


class AzureOpenAIAdapter(OpenAIAdapter):
    """Azure deployments speak the OpenAI protocol under a deployment path."""

    kind = ProviderKind.AZURE_OPENAI

    def _build_url(self, connection: ConnectionConfig, raw_model_id: str) -> str:
        api_version = connection.api_version or DEFAULT_AZURE_API_VERSION
        return self._join_url(connection.base_url, f'/openai/deployments/{raw_model_id}/chat/completions?api-version={api_version}')
