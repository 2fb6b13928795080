import asyncio

import pytest

from core.capture import (
    AUTO_CAPTURE_TAG,
    AutoCapturer,
    has_business_context,
    is_strategic,
    is_substantial,
    should_auto_capture,
)


class SlowKnowledge:
    enabled = True

    async def capture_idea(self, *args, **kwargs):
        await asyncio.sleep(1)


class TestClassifier:
    def test_short_messages_never_captured(self):
        assert not should_auto_capture("pricing strategy q3")
        assert not should_auto_capture("")

    def test_strategic_keyword_alone_is_not_enough(self):
        assert is_strategic("Our pricing strategy")
        assert not should_auto_capture("Our pricing strategy")

    def test_business_context_without_strategy(self):
        text = "the team had lunch with a client today"
        assert has_business_context(text)
        assert not should_auto_capture(text)

    def test_strategic_with_business_context(self):
        assert should_auto_capture("We should revisit our enterprise pricing next quarter")

    def test_strategic_and_substantial(self):
        text = "I think the product roadmap needs a rethink because people keep asking for offline mode"
        assert not has_business_context(text)
        assert is_substantial(text)
        assert should_auto_capture(text)

    def test_substantial_needs_words_and_length(self):
        assert not is_substantial("a" * 80)
        assert not is_substantial("one two three four five six seven eight nine")


class TestAutoCapturer:
    @pytest.mark.asyncio
    async def test_captures_with_provenance_and_defaults(self, knowledge):
        capturer = AutoCapturer(knowledge)
        idea = await capturer.maybe_capture(
            "We should revisit our enterprise pricing next quarter", 101, 555
        )
        assert idea is not None
        assert AUTO_CAPTURE_TAG in idea.tags
        assert idea.category == "strategy"
        assert idea.priority == "medium"
        assert knowledge.list_user_ideas("101")[0].id == idea.id

    @pytest.mark.asyncio
    async def test_casual_chat_not_captured(self, knowledge):
        capturer = AutoCapturer(knowledge)
        assert await capturer.maybe_capture("haha that was a fun evening", 101, 555) is None
        assert knowledge.list_user_ideas("101") == []

    @pytest.mark.asyncio
    async def test_slow_write_is_skipped(self):
        capturer = AutoCapturer(SlowKnowledge(), timeout=0.05)
        result = await capturer.maybe_capture(
            "We should revisit our enterprise pricing next quarter", 101, 555
        )
        assert result is None

    @pytest.mark.asyncio
    async def test_disabled_knowledge(self, disabled_knowledge):
        capturer = AutoCapturer(disabled_knowledge)
        assert await capturer.maybe_capture("We should revisit our enterprise pricing", 1, 2) is None
