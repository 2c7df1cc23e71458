import pytest

from gateway.errors import ValidationError
from gateway.models import ImagePart, TextPart, Turn
from gateway.services.budget import TokenBudgetManager
from gateway.services.tokenizer import TokenizerService

SYSTEM = Turn(role='system', content='sys')
FIRST = Turn(role='user', content='aaaa')
REPLY = Turn(role='assistant', content='bbbb')
SECOND = Turn(role='user', content='cccc')
PENDING = Turn(role='user', content='dddd')
HISTORY = [SYSTEM, FIRST, REPLY, SECOND]


class TestTokenizer:
    @pytest.mark.parametrize(
        'text,expected',
        [('', 0), ('abcd', 1), ('abcde', 2), ('日本', 2), ('ab日', 2)],
    )
    def test_count_text(self, text, expected):
        assert TokenizerService().count_text(text) == expected

    def test_message_and_conversation_overheads(self):
        tokenizer = TokenizerService()

        assert tokenizer.count_message('user', 'hi') == 6
        assert tokenizer.count_conversation([Turn(role='user', content='hi')]) == 9

    def test_images_are_not_counted(self):
        tokenizer = TokenizerService()
        with_image = Turn(role='user', content=(TextPart(text='hi'), ImagePart(image_url='data:image/png;base64,' + 'A' * 4000)))

        assert tokenizer.count_turn(with_image) == tokenizer.count_message('user', 'hi')


class TestTruncate:
    def setup_method(self):
        self.manager = TokenBudgetManager()

    def test_everything_fits(self):
        assert self.manager.truncate(HISTORY, PENDING, 36) == HISTORY + [PENDING]

    def test_oldest_dropped_first(self):
        assert self.manager.truncate(HISTORY, PENDING, 35) == [SYSTEM, REPLY, SECOND, PENDING]

    def test_system_and_pending_always_kept(self):
        assert self.manager.truncate(HISTORY, PENDING, 16) == [SYSTEM, PENDING]

    def test_truncation_is_idempotent(self):
        once = self.manager.truncate(HISTORY, PENDING, 30)
        twice = self.manager.truncate(once[:-1], PENDING, 30)

        assert once == twice

    def test_stops_at_first_turn_that_does_not_fit(self):
        huge = Turn(role='assistant', content='x' * 400)
        history = [FIRST, huge, SECOND]

        assert self.manager.truncate(history, PENDING, 40) == [SECOND, PENDING]

    def test_pending_alone_too_large(self):
        with pytest.raises(ValidationError) as exc_info:
            self.manager.truncate(HISTORY, PENDING, 15)

        assert exc_info.value.error_type == 'context_length_exceeded'
        assert exc_info.value.http_status == 400


class TestBuildContext:
    def setup_method(self):
        self.manager = TokenBudgetManager()

    def test_prompt_tokens_match_truncation(self):
        context = self.manager.build_context(HISTORY, PENDING, 35)

        assert context.prompt_tokens == 30
        assert context.context_remaining == 5
        assert context.applied_max_tokens == 5

    @pytest.mark.parametrize(
        'completion_limit,requested,expected',
        [(0, None, 5), (4, None, 4), (0, 3, 3), (10, 2, 2), (4, 100, 4)],
    )
    def test_applied_max_tokens(self, completion_limit, requested, expected):
        context = self.manager.build_context(HISTORY, PENDING, 35, completion_limit, requested)

        assert context.applied_max_tokens == expected

    def test_exhausted_context_still_allows_one_token(self):
        context = self.manager.build_context(HISTORY, PENDING, 16)

        assert context.context_remaining == 0
        assert context.applied_max_tokens == 1
