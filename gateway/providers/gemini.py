"""Google GenAI content-generation adapter."""

import re
from typing import Any, Dict, List, Mapping, Optional, Tuple

from gateway.config.models import ConnectionConfig
from gateway.models import CanonicalRequest, ImagePart, TextPart, Turn
from gateway.providers.base import ChunkDelta, FinalResponse, ProviderAdapter, ProviderRequest
from gateway.providers.types import ProviderKind
from gateway.services.usage import normalize_usage

_DATA_URL_RE = re.compile(r'^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.+)$', re.DOTALL)

FINISH_REASON_MAPPING = {
    'STOP': 'stop',
    'MAX_TOKENS': 'length',
    'SAFETY': 'content_filter',
    'RECITATION': 'content_filter',
}


def parse_data_url(url: str) -> Optional[Tuple[str, str]]:
    """Split a base64 data URL into (mime type, payload)."""
    match = _DATA_URL_RE.match(url)
    if not match:
        return None
    return match.group('mime'), match.group('data')


class GeminiAdapter(ProviderAdapter):
    kind = ProviderKind.GOOGLE_GENAI
    framing = 'sse'

    def build_request(
        self,
        request: CanonicalRequest,
        connection: ConnectionConfig,
        raw_model_id: str,
        auth_headers: Mapping[str, str],
        stream: bool = True,
    ) -> ProviderRequest:
        payload: Dict[str, Any] = {}

        system_texts = [turn.text for turn in request.turns if turn.role == 'system' and turn.text]
        if system_texts:
            payload['systemInstruction'] = {'parts': [{'text': '\n'.join(system_texts)}]}

        payload['contents'] = self._convert_turns(request.turns)

        generation_config = self._build_generation_config(request)
        if generation_config:
            payload['generationConfig'] = generation_config

        suffix = ':streamGenerateContent?alt=sse' if stream else ':generateContent'
        return ProviderRequest(
            url=self._join_url(connection.base_url, f'/models/{raw_model_id}{suffix}'),
            headers=self._base_headers(connection, auth_headers),
            payload=payload,
            framing=self.framing,
            stream=stream,
        )

    def _convert_turns(self, turns: Tuple[Turn, ...]) -> List[Dict[str, Any]]:
        contents = []
        for turn in turns:
            if turn.role == 'system':
                continue
            parts = self._convert_parts(turn)
            if parts:
                contents.append({'role': 'model' if turn.role == 'assistant' else 'user', 'parts': parts})
        return contents

    def _convert_parts(self, turn: Turn) -> List[Dict[str, Any]]:
        if isinstance(turn.content, str):
            return [{'text': turn.content}] if turn.content else []

        parts = []
        for part in turn.content:
            if isinstance(part, TextPart):
                parts.append({'text': part.text})
            elif isinstance(part, ImagePart):
                parsed = parse_data_url(part.image_url)
                if parsed is None:
                    self.logger.debug('Dropping non data-url image for google_genai', url=part.image_url[:64])
                    continue
                mime, data = parsed
                parts.append({'inlineData': {'mimeType': mime, 'data': data}})
        return parts

    def _build_generation_config(self, request: CanonicalRequest) -> Dict[str, Any]:
        config: Dict[str, Any] = {}
        sampling = request.sampling
        if sampling.temperature is not None:
            config['temperature'] = sampling.temperature
        if sampling.top_p is not None:
            config['topP'] = sampling.top_p
        if sampling.max_tokens is not None:
            config['maxOutputTokens'] = sampling.max_tokens
        if request.reasoning.enabled:
            config['thinkingConfig'] = {'includeThoughts': True}
        return config

    def _split_parts(self, body: Dict[str, Any]) -> Tuple[str, str, Optional[str]]:
        candidates = body.get('candidates') or []
        if not candidates:
            return '', '', None
        candidate = candidates[0]
        content, reasoning = [], []
        for part in (candidate.get('content') or {}).get('parts') or []:
            text = part.get('text')
            if not isinstance(text, str):
                continue
            (reasoning if part.get('thought') else content).append(text)

        finish_reason = candidate.get('finishReason')
        if finish_reason:
            finish_reason = FINISH_REASON_MAPPING.get(finish_reason, finish_reason.lower())
        return ''.join(content), ''.join(reasoning), finish_reason

    def parse_chunk(self, unit: Dict[str, Any]) -> ChunkDelta:
        content, reasoning, finish_reason = self._split_parts(unit)
        usage = unit.get('usageMetadata')
        return ChunkDelta(
            content=content,
            reasoning=reasoning,
            finish_reason=finish_reason,
            usage=normalize_usage(usage) if isinstance(usage, dict) else None,
        )

    def parse_final(self, body: Dict[str, Any]) -> FinalResponse:
        content, reasoning, finish_reason = self._split_parts(body)
        usage = body.get('usageMetadata')
        return FinalResponse(
            content=content,
            reasoning=reasoning,
            finish_reason=finish_reason,
            usage=normalize_usage(usage) if isinstance(usage, dict) else None,
            raw=body,
        )
