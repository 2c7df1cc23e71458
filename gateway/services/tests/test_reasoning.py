import pytest

from gateway.services.reasoning import (
    DEFAULT_REASONING_TAGS,
    ReasoningState,
    TagPair,
    extract_by_tags,
    flush,
    resolve_tags,
)


def _run(chunks, tags=DEFAULT_REASONING_TAGS):
    state = ReasoningState()
    visible, reasoning = [], []
    for chunk in chunks:
        result = extract_by_tags(chunk, tags, state)
        visible.append(result.visible_delta)
        reasoning.append(result.reasoning_delta)
    rest = flush(state)
    visible.append(rest.visible_delta)
    reasoning.append(rest.reasoning_delta)
    return ''.join(visible), ''.join(reasoning)


class TestExtractByTags:
    def test_tag_split_inside_open_delimiter(self):
        visible, reasoning = _run(['<thi', 'nk>reasoning text</think>visible'])

        assert visible == 'visible'
        assert reasoning == 'reasoning text'

    @pytest.mark.parametrize(
        'text,expected_visible,expected_reasoning',
        [
            ('Hello <think>plan</think>world', 'Hello world', 'plan'),
            ('<thinking>a</thinking>b<reasoning>c</reasoning>d', 'bd', 'ac'),
            ('<|begin_of_thought|>deep<|end_of_thought|>out', 'out', 'deep'),
            ('◁think▷inner◁/think▷outer', 'outer', 'inner'),
            ('a < b and c > d', 'a < b and c > d', ''),
            ('no tags at all', 'no tags at all', ''),
            ('<think>never closed', '', 'never closed'),
            ('ends with <thi', 'ends with <thi', ''),
        ],
    )
    def test_split_invariance(self, text, expected_visible, expected_reasoning):
        for split_at in range(len(text) + 1):
            visible, reasoning = _run([text[:split_at], text[split_at:]])
            assert (visible, reasoning) == (expected_visible, expected_reasoning), split_at

    def test_character_by_character(self):
        text = 'x<think>y</think>z'

        assert _run(list(text)) == ('xz', 'y')

    def test_closing_tag_must_match_opening(self):
        visible, reasoning = _run(['<think>a</thinking>b</think>c'])

        assert visible == 'c'
        assert reasoning == 'a</thinking>b'

    def test_custom_tags(self):
        tags = (TagPair('[[', ']]'),)

        assert _run(['pre[[hidden]]post'], tags) == ('prepost', 'hidden')
        assert _run(['<think>kept</think>'], tags) == ('<think>kept</think>', '')

    def test_no_tags_passes_through(self):
        assert _run(['<think>x</think>'], ()) == ('<think>x</think>', '')

    def test_pending_holds_partial_delimiter(self):
        state = ReasoningState()

        result = extract_by_tags('abc<thin', DEFAULT_REASONING_TAGS, state)

        assert result.visible_delta == 'abc'
        assert state.pending == '<thin'


class TestResolveTags:
    @pytest.mark.parametrize(
        'mode,custom,expected',
        [
            ('default', None, DEFAULT_REASONING_TAGS),
            ('off', ('[[', ']]'), ()),
            ('custom', ('[[', ']]'), (TagPair('[[', ']]'),)),
            ('custom', None, DEFAULT_REASONING_TAGS),
            ('custom', ('[[', ''), DEFAULT_REASONING_TAGS),
        ],
    )
    def test_modes(self, mode, custom, expected):
        assert resolve_tags(mode, custom) == expected


class TestReasoningState:
    def test_record_stamps_first_piece(self):
        state = ReasoningState()

        state.record('')
        assert state.started_at is None

        state.record('a')
        started = state.started_at
        state.record('b')

        assert state.buffer == 'ab'
        assert state.started_at == started

    def test_record_uses_given_clock(self):
        state = ReasoningState()

        state.record('a', now=10.0)
        state.record('b', now=12.0)

        assert state.started_at == 10.0
        assert state.duration_seconds(now=14.4) == 4

    def test_duration_rounds_seconds(self):
        state = ReasoningState(started_at=100.0)

        assert state.duration_seconds(now=102.6) == 3
        assert ReasoningState().duration_seconds(now=5.0) == 0
