"""Usage normalization, reconciliation and stream metrics."""

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

from gateway.config.log import get_logger
from gateway.models import UsageSnapshot
from gateway.services.tokenizer import TokenizerService
from gateway.stores import UsageRecord, UsageStore

PROMPT_KEYS = ('prompt_tokens', 'prompt_eval_count', 'input_tokens', 'promptTokenCount')
COMPLETION_KEYS = ('completion_tokens', 'eval_count', 'output_tokens', 'candidatesTokenCount')
TOTAL_KEYS = ('total_tokens', 'totalTokenCount')


def _first_count(raw: Mapping[str, Any], keys: Sequence[str]) -> Optional[int]:
    for key in keys:
        value = raw.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            return max(0, int(value))
    return None


def normalize_usage(raw: Optional[Mapping[str, Any]]) -> Optional[UsageSnapshot]:
    """Read provider usage under any of the known field names. None when no counter is present."""
    if not raw:
        return None
    prompt = _first_count(raw, PROMPT_KEYS)
    completion = _first_count(raw, COMPLETION_KEYS)
    total = _first_count(raw, TOTAL_KEYS)
    if prompt is None and completion is None and total is None:
        return None

    prompt = prompt or 0
    completion = completion or 0
    return UsageSnapshot(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=total if total else prompt + completion,
        source='provider',
    )


@dataclass(frozen=True, slots=True)
class StreamMetrics:
    first_token_latency_ms: int
    response_time_ms: int
    tokens_per_second: float


def compute_stream_metrics(started_at: float, first_chunk_at: Optional[float], completed_at: float, completion_tokens: int) -> StreamMetrics:
    """Timings are monotonic seconds. The speed window starts at the first chunk when there was one."""
    first_chunk_at = first_chunk_at if first_chunk_at is not None else started_at
    first_token_latency_ms = max(0, round((first_chunk_at - started_at) * 1000))
    response_time_ms = max(0, round((completed_at - started_at) * 1000))

    window_ms = (completed_at - first_chunk_at) * 1000 or (completed_at - started_at) * 1000
    window_ms = max(1.0, window_ms)
    tokens_per_second = completion_tokens / (window_ms / 1000) if completion_tokens > 0 else 0.0

    return StreamMetrics(
        first_token_latency_ms=first_token_latency_ms,
        response_time_ms=response_time_ms,
        tokens_per_second=tokens_per_second,
    )


class UsageReconciler:
    """Chooses between provider-reported and locally estimated usage and persists the result."""

    def __init__(self, usage_store: UsageStore, tokenizer: Optional[TokenizerService] = None, logger=None):
        self.usage_store = usage_store
        self.tokenizer = tokenizer or TokenizerService()
        self.logger = logger or get_logger(__name__)

    def initial(self, prompt_tokens: int, context_limit: int) -> UsageSnapshot:
        """Prompt-only usage announced before the first upstream byte."""
        return UsageSnapshot(
            prompt_tokens=prompt_tokens,
            completion_tokens=0,
            total_tokens=prompt_tokens,
            context_limit=context_limit,
            context_remaining=max(0, context_limit - prompt_tokens),
            source='local',
        )

    def reconcile(self, provider_usage: Optional[UsageSnapshot], prompt_tokens: int, visible_text: str, context_limit: int) -> UsageSnapshot:
        """Trust provider usage when any counter is nonzero, otherwise estimate locally."""
        if provider_usage is not None and provider_usage.is_valid:
            prompt = provider_usage.prompt_tokens
            completion = provider_usage.completion_tokens
            total = provider_usage.total_tokens or prompt + completion
            source = 'provider'
        else:
            prompt = prompt_tokens
            completion = self.tokenizer.count_text(visible_text)
            total = prompt + completion
            source = 'local'

        return UsageSnapshot(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=total,
            context_limit=context_limit,
            context_remaining=max(0, context_limit - prompt),
            source=source,
        )

    async def persist(
        self,
        usage: UsageSnapshot,
        session_id: str,
        message_id: Optional[str],
        model: str,
        connection_id: str,
        metrics: Optional[StreamMetrics] = None,
    ) -> Optional[UsageRecord]:
        record = UsageRecord(
            session_id=session_id,
            message_id=message_id,
            model=model,
            connection_id=connection_id,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
            context_limit=usage.context_limit,
            source=usage.source,
            first_token_latency_ms=metrics.first_token_latency_ms if metrics else None,
            response_time_ms=metrics.response_time_ms if metrics else None,
            tokens_per_second=metrics.tokens_per_second if metrics else None,
        )
        try:
            await self.usage_store.record_usage(record)
        except Exception as e:
            self.logger.error(f'Failed to persist usage record: {e}', message_id=message_id, exc_info=True)
            return None
        return record
