"""Deterministic token estimation used for truncation and local usage."""

import math
from typing import Iterable

from gateway.models import Turn

MESSAGE_OVERHEAD = 4
CONVERSATION_OVERHEAD = 3


class TokenizerService:
    """Character-based estimator: ASCII costs a quarter token, anything else one token."""

    def count_text(self, text: str) -> int:
        if not text:
            return 0
        ascii_chars = sum(1 for ch in text if ord(ch) < 128)
        return math.ceil(ascii_chars / 4) + (len(text) - ascii_chars)

    def count_message(self, role: str, content: str) -> int:
        return MESSAGE_OVERHEAD + self.count_text(content) + self.count_text(role)

    def count_turn(self, turn: Turn) -> int:
        # Image parts are not counted
        return self.count_message(turn.role, turn.text)

    def count_conversation(self, turns: Iterable[Turn]) -> int:
        return CONVERSATION_OVERHEAD + sum(self.count_turn(turn) for turn in turns)
