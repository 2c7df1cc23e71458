"""Context window budgeting for outgoing conversations."""

from dataclasses import dataclass
from typing import List, Optional, Sequence

from gateway.config.log import get_logger
from gateway.errors import ValidationError
from gateway.models import Turn
from gateway.services.tokenizer import CONVERSATION_OVERHEAD, TokenizerService


@dataclass(frozen=True, slots=True)
class ContextBudget:
    turns: List[Turn]
    prompt_tokens: int
    context_limit: int
    context_remaining: int
    applied_max_tokens: int


class TokenBudgetManager:
    """Drops the oldest history until the conversation fits the model's context window.

    System turns and the pending turn always survive. The same counting function
    later estimates usage, so truncation and accounting agree.
    """

    def __init__(self, tokenizer: Optional[TokenizerService] = None, logger=None):
        self.tokenizer = tokenizer or TokenizerService()
        self.logger = logger or get_logger(__name__)

    def truncate(self, history: Sequence[Turn], pending: Turn, limit: int) -> List[Turn]:
        priority_tokens = CONVERSATION_OVERHEAD + self.tokenizer.count_turn(pending)
        priority_tokens += sum(self.tokenizer.count_turn(turn) for turn in history if turn.role == 'system')
        if priority_tokens > limit:
            raise ValidationError(
                f'Conversation needs at least {priority_tokens} tokens but the model context is {limit}',
                code='context_length_exceeded',
            )

        kept = set()
        used = priority_tokens
        for index in range(len(history) - 1, -1, -1):
            turn = history[index]
            if turn.role == 'system':
                continue
            cost = self.tokenizer.count_turn(turn)
            if used + cost > limit:
                break
            used += cost
            kept.add(index)

        truncated = [turn for index, turn in enumerate(history) if turn.role == 'system' or index in kept]
        dropped = len(history) - len(truncated)
        if dropped:
            self.logger.debug('Truncated conversation history', dropped=dropped, kept=len(truncated), limit=limit)
        truncated.append(pending)
        return truncated

    def build_context(
        self,
        history: Sequence[Turn],
        pending: Turn,
        context_limit: int,
        completion_limit: int = 0,
        requested_max_tokens: Optional[int] = None,
    ) -> ContextBudget:
        turns = self.truncate(history, pending, context_limit)
        prompt_tokens = self.tokenizer.count_conversation(turns)
        context_remaining = max(0, context_limit - prompt_tokens)

        applied = min(completion_limit or context_limit, max(1, context_remaining))
        if requested_max_tokens:
            applied = min(applied, requested_max_tokens)

        return ContextBudget(
            turns=turns,
            prompt_tokens=prompt_tokens,
            context_limit=context_limit,
            context_remaining=context_remaining,
            applied_max_tokens=max(1, applied),
        )
