import pytest

from gateway.services.framing import StreamDecoder


class TestSseFraming:
    def test_complete_events(self):
        decoder = StreamDecoder('sse')

        frames = decoder.feed(b'data: {"a": 1}\n\ndata: {"a": 2}\n\n')

        assert [f.data for f in frames] == [{'a': 1}, {'a': 2}]

    def test_line_split_across_chunks(self):
        decoder = StreamDecoder('sse')

        assert decoder.feed(b'data: {"text": "hel') == []
        frames = decoder.feed(b'lo"}\n\n')

        assert frames[0].data == {'text': 'hello'}

    def test_multibyte_character_split_across_chunks(self):
        decoder = StreamDecoder('sse')
        encoded = 'data: {"text": "日本"}\n\n'.encode('utf-8')
        split_at = encoded.index('日'.encode('utf-8')) + 1

        frames = decoder.feed(encoded[:split_at]) + decoder.feed(encoded[split_at:])

        assert frames[0].data == {'text': '日本'}

    def test_done_sentinel(self):
        decoder = StreamDecoder('sse')

        frames = decoder.feed(b'data: {"a": 1}\n\ndata: [DONE]\n\n')

        assert frames[0].done is False
        assert frames[1].done is True

    @pytest.mark.parametrize(
        'raw',
        [b': ping\n\n', b'event: message\n\n', b'data: not json\n\n', b'data: [1, 2]\n\n', b'\n\n'],
    )
    def test_ignored_lines(self, raw):
        assert StreamDecoder('sse').feed(raw) == []

    def test_flush_parses_unterminated_tail(self):
        decoder = StreamDecoder('sse')

        assert decoder.feed(b'data: {"tail": true}') == []
        frames = decoder.flush()

        assert frames[0].data == {'tail': True}
        assert decoder.flush() == []


class TestNdjsonFraming:
    def test_lines_and_partial_line(self):
        decoder = StreamDecoder('ndjson')

        frames = decoder.feed(b'{"n": 1}\n{"n": 2}\n{"n"')
        frames += decoder.feed(b': 3}\n')

        assert [f.data['n'] for f in frames] == [1, 2, 3]

    def test_data_prefix_is_not_special(self):
        decoder = StreamDecoder('ndjson')

        assert decoder.feed(b'data: {"n": 1}\n') == []
