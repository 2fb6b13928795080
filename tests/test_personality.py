import json

import pytest

from core.personality import (
    ANALYSIS_EVERY,
    MAX_SAMPLES,
    MIN_SAMPLES,
    MessageSample,
    PersonalityAnalyzer,
    measure_patterns,
)


async def feed(analyzer, username, count, text="sounds good, lets ship it"):
    for index in range(count):
        await analyzer.add_sample(username, MessageSample(text=f"{text} {index}"))


class TestAllowList:
    @pytest.mark.asyncio
    async def test_untracked_users_are_ignored(self):
        analyzer = PersonalityAnalyzer()
        await feed(analyzer, "mallory", MIN_SAMPLES)
        assert analyzer.sample_count("mallory") == 0
        assert analyzer.style_directive("mallory") is None

    def test_track_normalises_usernames(self):
        analyzer = PersonalityAnalyzer(tracked=["@Alice", "alice"])
        assert analyzer.tracked_users() == ["alice"]
        assert analyzer.is_tracked("ALICE")
        assert not analyzer.track("alice")
        assert analyzer.untrack("@alice")
        assert not analyzer.is_tracked("alice")


class TestTraits:
    @pytest.mark.asyncio
    async def test_no_summary_below_minimum(self):
        analyzer = PersonalityAnalyzer(tracked=["alice"])
        await feed(analyzer, "alice", MIN_SAMPLES - 1)
        assert analyzer.sample_count("alice") == MIN_SAMPLES - 1
        assert analyzer.traits("alice") is None
        assert analyzer.style_directive("alice") is None
        assert await analyzer.analyze("alice") is None

    @pytest.mark.asyncio
    async def test_heuristic_summary_at_minimum(self):
        analyzer = PersonalityAnalyzer(tracked=["alice"])
        await feed(analyzer, "alice", MIN_SAMPLES, text="lol yeah cool")
        traits = analyzer.traits("alice")
        assert traits is not None
        assert traits.sample_count == MIN_SAMPLES
        assert traits.casualness == "Very casual"
        directive = analyzer.style_directive("alice")
        assert directive.startswith("Communication style adaptation for @alice:")

    @pytest.mark.asyncio
    async def test_model_summary_used_when_available(self, completion):
        completion.reply = "Here you go: " + json.dumps(
            {
                "communicationStyle": "Punchy and direct",
                "technicalDepth": "Deep on APIs",
                "casualness": "Relaxed",
                "humor": "Dry",
                "responsePatterns": "One-liners",
                "commonPhrases": ["ship it"],
            }
        )
        analyzer = PersonalityAnalyzer(completion, tracked=["alice"])
        await feed(analyzer, "alice", MIN_SAMPLES)
        traits = analyzer.traits("alice")
        assert traits.communication_style == "Punchy and direct"
        assert traits.common_phrases == ["ship it"]
        assert "Common phrases: ship it" in analyzer.style_directive("alice")
        assert completion.calls[0]["is_command"] is True

    @pytest.mark.asyncio
    async def test_reanalysis_overwrites(self):
        analyzer = PersonalityAnalyzer(tracked=["alice"])
        await feed(analyzer, "alice", MIN_SAMPLES)
        first = analyzer.traits("alice")
        await feed(analyzer, "alice", 5)
        second = analyzer.traits("alice")
        assert second is not first
        assert second.sample_count == MIN_SAMPLES + 5

    @pytest.mark.asyncio
    async def test_sample_buffer_is_capped(self):
        analyzer = PersonalityAnalyzer(tracked=["alice"])
        await feed(analyzer, "alice", MAX_SAMPLES + 7)
        assert analyzer.sample_count("alice") == MAX_SAMPLES

    @pytest.mark.asyncio
    async def test_analysis_cadence_holds_past_the_cap(self, completion):
        analyzer = PersonalityAnalyzer(completion, tracked=["alice"])
        await feed(analyzer, "alice", MAX_SAMPLES)
        at_cap = len(completion.calls)
        assert at_cap == (MAX_SAMPLES - MIN_SAMPLES) // ANALYSIS_EVERY + 1
        await feed(analyzer, "alice", 10)
        assert len(completion.calls) - at_cap == 10 // ANALYSIS_EVERY
        assert analyzer.sample_count("alice") == MAX_SAMPLES
        assert analyzer.traits("alice").sample_count == MAX_SAMPLES

    @pytest.mark.asyncio
    async def test_clear_resets_cadence(self):
        analyzer = PersonalityAnalyzer(tracked=["alice"])
        await feed(analyzer, "alice", MIN_SAMPLES - 1)
        analyzer.clear("alice")
        analyzer.track("alice")
        await feed(analyzer, "alice", MIN_SAMPLES)
        assert analyzer.traits("alice").sample_count == MIN_SAMPLES


class TestClear:
    @pytest.mark.asyncio
    async def test_clear_drops_everything_and_untracks(self):
        analyzer = PersonalityAnalyzer(tracked=["alice"])
        await feed(analyzer, "alice", MIN_SAMPLES)
        assert analyzer.clear("alice")
        assert analyzer.sample_count("alice") == 0
        assert analyzer.traits("alice") is None
        assert "alice" not in analyzer.tracked_users()
        await feed(analyzer, "alice", 1)
        assert analyzer.sample_count("alice") == 0

    def test_clear_unknown_user(self):
        assert not PersonalityAnalyzer().clear("nobody")


class TestPatterns:
    def test_brief_style(self):
        samples = [MessageSample(text="ok") for _ in range(10)]
        assert measure_patterns(samples).response_style == "brief"

    def test_detailed_style_and_links(self):
        samples = [MessageSample(text="see https://example.com " + "x" * 250) for _ in range(4)]
        pattern = measure_patterns(samples)
        assert pattern.response_style == "detailed"
        assert pattern.link_frequency == 1.0
