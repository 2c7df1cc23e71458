"""Ollama `/api/chat` adapter. Streams newline-delimited JSON."""

from typing import Any, Dict, Mapping

from gateway.config.models import ConnectionConfig
from gateway.models import CanonicalRequest
from gateway.providers.base import ChunkDelta, FinalResponse, ProviderAdapter, ProviderRequest
from gateway.providers.types import ProviderKind
from gateway.services.usage import normalize_usage


class OllamaAdapter(ProviderAdapter):
    kind = ProviderKind.OLLAMA
    framing = 'ndjson'

    def build_request(
        self,
        request: CanonicalRequest,
        connection: ConnectionConfig,
        raw_model_id: str,
        auth_headers: Mapping[str, str],
        stream: bool = True,
    ) -> ProviderRequest:
        # Multi-part content is flattened to text, images are not forwarded
        messages = [{'role': turn.role, 'content': turn.text} for turn in request.turns]
        payload: Dict[str, Any] = {'model': raw_model_id, 'messages': messages, 'stream': stream}

        options = {}
        sampling = request.sampling
        if sampling.temperature is not None:
            options['temperature'] = sampling.temperature
        if sampling.top_p is not None:
            options['top_p'] = sampling.top_p
        if sampling.max_tokens is not None:
            options['num_predict'] = sampling.max_tokens
        if options:
            payload['options'] = options

        if request.reasoning.enabled and request.reasoning.think:
            payload['think'] = True

        return ProviderRequest(
            url=self._join_url(connection.base_url, '/api/chat'),
            headers=self._base_headers(connection, auth_headers),
            payload=payload,
            framing=self.framing,
            stream=stream,
        )

    def parse_chunk(self, unit: Dict[str, Any]) -> ChunkDelta:
        message = unit.get('message') or {}
        done = bool(unit.get('done'))
        return ChunkDelta(
            content=message.get('content') or '',
            reasoning=message.get('thinking') or '',
            finish_reason=(unit.get('done_reason') or 'stop') if done else None,
            usage=normalize_usage(unit) if done else None,
            done=done,
        )

    def parse_final(self, body: Dict[str, Any]) -> FinalResponse:
        message = body.get('message') or {}
        return FinalResponse(
            content=message.get('content') or '',
            reasoning=message.get('thinking') or '',
            finish_reason=body.get('done_reason'),
            usage=normalize_usage(body),
            raw=body,
        )
