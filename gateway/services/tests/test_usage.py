from unittest.mock import MagicMock

import pytest

from gateway.models import UsageSnapshot
from gateway.services.usage import UsageReconciler, compute_stream_metrics, normalize_usage
from gateway.stores import InMemoryUsageStore


class TestNormalizeUsage:
    @pytest.mark.parametrize(
        'raw,expected',
        [
            ({'prompt_tokens': 10, 'completion_tokens': 5, 'total_tokens': 15}, (10, 5, 15)),
            ({'prompt_eval_count': 7, 'eval_count': 3}, (7, 3, 10)),
            ({'input_tokens': 4, 'output_tokens': 6}, (4, 6, 10)),
            ({'promptTokenCount': 2, 'candidatesTokenCount': 1, 'totalTokenCount': 9}, (2, 1, 9)),
            ({'prompt_tokens': 0, 'completion_tokens': 0}, (0, 0, 0)),
        ],
    )
    def test_known_field_names(self, raw, expected):
        usage = normalize_usage(raw)

        assert (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens) == expected
        assert usage.source == 'provider'

    @pytest.mark.parametrize('raw', [None, {}, {'model': 'x'}, {'prompt_tokens': 'many'}])
    def test_no_counters(self, raw):
        assert normalize_usage(raw) is None


class TestReconcile:
    def setup_method(self):
        self.reconciler = UsageReconciler(InMemoryUsageStore())

    def test_initial_is_prompt_only(self):
        usage = self.reconciler.initial(100, 4096)

        assert usage.to_dict() == {
            'prompt_tokens': 100,
            'completion_tokens': 0,
            'total_tokens': 100,
            'context_limit': 4096,
            'context_remaining': 3996,
        }

    def test_provider_usage_wins(self):
        provider = UsageSnapshot(prompt_tokens=50, completion_tokens=20, total_tokens=70, source='provider')

        usage = self.reconciler.reconcile(provider, 40, 'ignored text', 1000)

        assert (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens) == (50, 20, 70)
        assert usage.context_remaining == 950
        assert usage.source == 'provider'

    @pytest.mark.parametrize('provider', [None, UsageSnapshot(source='provider')])
    def test_local_estimate_when_provider_silent_or_zero(self, provider):
        usage = self.reconciler.reconcile(provider, 40, 'abcdefgh', 1000)

        assert (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens) == (40, 2, 42)
        assert usage.source == 'local'


class TestStreamMetrics:
    def test_window_starts_at_first_chunk(self):
        metrics = compute_stream_metrics(10.0, 10.5, 12.5, 100)

        assert metrics.first_token_latency_ms == 500
        assert metrics.response_time_ms == 2500
        assert metrics.tokens_per_second == pytest.approx(50.0)

    def test_without_first_chunk(self):
        metrics = compute_stream_metrics(10.0, None, 12.5, 100)

        assert metrics.first_token_latency_ms == 0
        assert metrics.tokens_per_second == pytest.approx(40.0)

    def test_no_tokens(self):
        assert compute_stream_metrics(1.0, 1.0, 1.0, 0).tokens_per_second == 0.0


class TestPersist:
    @pytest.mark.asyncio
    async def test_record_written(self):
        store = InMemoryUsageStore()
        reconciler = UsageReconciler(store)
        usage = reconciler.reconcile(None, 10, 'abcd', 100)

        record = await reconciler.persist(usage, 's1', 'm1', 'gpt-4o', 'main', compute_stream_metrics(0.0, 0.1, 1.1, 1))

        assert store.records == [record]
        assert record.total_tokens == 11
        assert record.source == 'local'
        assert record.first_token_latency_ms == 100

    @pytest.mark.asyncio
    async def test_store_failure_is_logged_not_raised(self):
        class BrokenStore:
            async def record_usage(self, record):
                raise RuntimeError('disk full')

        logger = MagicMock()
        reconciler = UsageReconciler(BrokenStore(), logger=logger)

        result = await reconciler.persist(reconciler.initial(1, 10), 's1', 'm1', 'model', 'conn')

        assert result is None
        logger.error.assert_called_once()
        assert 'disk full' in logger.error.call_args[0][0]
