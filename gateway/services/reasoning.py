"""Separation of the reasoning channel from visible content.

Reasoning arrives either in a dedicated provider field (appended verbatim) or
inline, wrapped in delimiter tags inside the content stream. The tag extractor
is incremental: a delimiter split across chunks is held back in
``ReasoningState.pending`` until it can be classified, so the output does not
depend on how the upstream happened to split its chunks.
"""

import time
from dataclasses import dataclass, field
from typing import List, NamedTuple, Optional, Sequence, Tuple


class TagPair(NamedTuple):
    open: str
    close: str


DEFAULT_REASONING_TAGS: Tuple[TagPair, ...] = (
    TagPair('<think>', '</think>'),
    TagPair('<thinking>', '</thinking>'),
    TagPair('<reason>', '</reason>'),
    TagPair('<reasoning>', '</reasoning>'),
    TagPair('<thought>', '</thought>'),
    TagPair('<Thought>', '</Thought>'),
    TagPair('<|begin_of_thought|>', '<|end_of_thought|>'),
    TagPair('◁think▷', '◁/think▷'),
)


@dataclass(slots=True)
class ReasoningState:
    buffer: str = ''
    started_at: Optional[float] = None
    pending: str = ''
    in_tag: bool = False
    end_tag: Optional[str] = None
    done_emitted: bool = False

    def record(self, reasoning_delta: str, now: Optional[float] = None) -> None:
        """Accumulate reasoning text, stamping the time the first piece arrived.

        `now` must come from the same clock later passed to `duration_seconds`.
        """
        if not reasoning_delta:
            return
        if self.started_at is None:
            self.started_at = time.monotonic() if now is None else now
        self.buffer += reasoning_delta

    def duration_seconds(self, now: Optional[float] = None) -> int:
        if self.started_at is None:
            return 0
        now = time.monotonic() if now is None else now
        return max(0, round(now - self.started_at))


class ExtractResult(NamedTuple):
    visible_delta: str
    reasoning_delta: str


def resolve_tags(mode: str, custom_tags: Optional[Sequence[str]] = None) -> Tuple[TagPair, ...]:
    """Tag set for a tags mode. `off` and an incomplete custom pair yield no tags."""
    match mode:
        case 'off':
            return ()
        case 'custom':
            if custom_tags and len(custom_tags) == 2 and custom_tags[0] and custom_tags[1]:
                return (TagPair(custom_tags[0], custom_tags[1]),)
            return DEFAULT_REASONING_TAGS
        case _:
            return DEFAULT_REASONING_TAGS


def _held_suffix_length(text: str, start: int, delimiters: Sequence[str]) -> int:
    """Length of the longest suffix of text[start:] that is a proper prefix of a delimiter."""
    tail_len = len(text) - start
    longest = 0
    for delimiter in delimiters:
        for size in range(min(len(delimiter) - 1, tail_len), longest, -1):
            if text.endswith(delimiter[:size]):
                longest = size
                break
    return longest


def _find_open_tag(text: str, start: int, tags: Sequence[TagPair]) -> Tuple[int, Optional[TagPair]]:
    best_pos, best = -1, None
    for pair in tags:
        pos = text.find(pair.open, start)
        if pos == -1:
            continue
        if best_pos == -1 or pos < best_pos or (pos == best_pos and len(pair.open) > len(best.open)):
            best_pos, best = pos, pair
    return best_pos, best


def extract_by_tags(chunk: str, tags: Sequence[TagPair], state: ReasoningState) -> ExtractResult:
    """Split one content chunk into visible and reasoning deltas, updating `state`."""
    if not tags and not state.in_tag:
        text, state.pending = state.pending + chunk, ''
        return ExtractResult(text, '')

    text = state.pending + chunk
    state.pending = ''
    visible: List[str] = []
    reasoning: List[str] = []
    i = 0

    while i < len(text):
        if not state.in_tag:
            pos, pair = _find_open_tag(text, i, tags)
            if pair is None:
                held = _held_suffix_length(text, i, [t.open for t in tags])
                visible.append(text[i : len(text) - held])
                state.pending = text[len(text) - held :]
                break
            visible.append(text[i:pos])
            state.in_tag = True
            state.end_tag = pair.close
            i = pos + len(pair.open)
        else:
            end_tag = state.end_tag
            pos = text.find(end_tag, i)
            if pos == -1:
                held = _held_suffix_length(text, i, [end_tag])
                reasoning.append(text[i : len(text) - held])
                state.pending = text[len(text) - held :]
                break
            reasoning.append(text[i:pos])
            state.in_tag = False
            state.end_tag = None
            i = pos + len(end_tag)

    return ExtractResult(''.join(visible), ''.join(reasoning))


def flush(state: ReasoningState) -> ExtractResult:
    """Release the held partial delimiter at end of stream. It was never a full delimiter."""
    pending, state.pending = state.pending, ''
    if state.in_tag:
        return ExtractResult('', pending)
    return ExtractResult(pending, '')
