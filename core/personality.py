"""Per-user communication style learning for allow-listed usernames."""

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from .knowledge import extract_json_object
from .timeouts import bounded

log = logging.getLogger(__name__)

MIN_SAMPLES = 10
ANALYSIS_EVERY = 5
MAX_SAMPLES = 100
RECENT_FOR_ANALYSIS = 20

TECH_KEYWORDS = (
    "blockchain", "crypto", "defi", "smart contract", "protocol", "ai", "ml",
    "algorithm", "api", "backend", "frontend",
)
CASUAL_KEYWORDS = ("lol", "haha", "yeah", "nah", "cool", "nice", "damn")

_EMOJI = re.compile("[\U0001F300-\U0001FAFF☀-➿]")
_LINK = re.compile(r"https?://\S+", re.IGNORECASE)

ANALYSIS_PROMPT = """Analyze the communication style and personality from these message samples. Focus on actionable insights for mimicking this person's style.

COMMUNICATION PATTERNS:
- Average message length: {avg_length:.0f} characters
- Emoji usage: {emoji:.1%}
- Technical language frequency: {technical:.1%}
- Casualness level: {casual:.1%}
- Response style: {style}
- Question asking frequency: {questions:.1%}

RECENT MESSAGES:
{messages}

Reply with JSON only:
{{
  "communicationStyle": "overall communication approach",
  "technicalDepth": "level of technical knowledge and how it is expressed",
  "casualness": "formality vs casual tone",
  "humor": "type and frequency of humor",
  "responsePatterns": "how they structure responses",
  "vocabularyPreferences": ["word1", "word2"],
  "commonPhrases": ["phrase1", "phrase2"],
  "topicPreferences": ["topic1", "topic2"]
}}"""


@dataclass
class MessageSample:
    text: str
    chat_type: str = "private"
    reply_to_bot: bool = False
    timestamp: float = field(default_factory=time.time)

    @property
    def length(self) -> int:
        return len(self.text)

    @property
    def has_emojis(self) -> bool:
        return bool(_EMOJI.search(self.text))

    @property
    def has_links(self) -> bool:
        return bool(_LINK.search(self.text))


@dataclass
class CommunicationPattern:
    avg_length: float
    emoji_usage: float
    link_frequency: float
    response_style: str
    technical: float
    casualness: float
    questions: float


@dataclass
class PersonalityTraits:
    communication_style: str
    technical_depth: str
    casualness: str
    humor: str
    response_patterns: str
    vocabulary_preferences: List[str] = field(default_factory=list)
    common_phrases: List[str] = field(default_factory=list)
    topic_preferences: List[str] = field(default_factory=list)
    sample_count: int = 0
    last_updated: float = field(default_factory=time.time)


def _share(samples: List[MessageSample], predicate) -> float:
    return sum(1 for sample in samples if predicate(sample)) / len(samples)


def _contains_any(text: str, keywords: Iterable[str]) -> bool:
    lowered = text.lower()
    return any(re.search(rf"\b{re.escape(keyword)}\b", lowered) for keyword in keywords)


def measure_patterns(samples: List[MessageSample]) -> CommunicationPattern:
    brief = _share(samples, lambda s: s.length < 50)
    detailed = _share(samples, lambda s: s.length > 200)
    if brief > 0.6:
        style = "brief"
    elif detailed > 0.3:
        style = "detailed"
    else:
        style = "conversational"
    return CommunicationPattern(
        avg_length=sum(sample.length for sample in samples) / len(samples),
        emoji_usage=_share(samples, lambda s: s.has_emojis),
        link_frequency=_share(samples, lambda s: s.has_links),
        response_style=style,
        technical=_share(samples, lambda s: _contains_any(s.text, TECH_KEYWORDS)),
        casualness=_share(samples, lambda s: _contains_any(s.text, CASUAL_KEYWORDS)),
        questions=_share(samples, lambda s: "?" in s.text),
    )


def heuristic_traits(pattern: CommunicationPattern) -> PersonalityTraits:
    technical = "high" if pattern.technical > 0.3 else "moderate"
    if pattern.casualness > 0.3:
        casualness = "Very casual"
    elif pattern.casualness > 0.1:
        casualness = "Moderately casual"
    else:
        casualness = "Formal"
    return PersonalityTraits(
        communication_style=f"{pattern.response_style} communicator with {technical} technical depth",
        technical_depth=f"{technical.capitalize()} technical knowledge",
        casualness=casualness,
        humor="Frequent casual humor" if pattern.casualness > 0.2 else "Occasional humor",
        response_patterns=(
            f"Typically {pattern.response_style} responses averaging "
            f"{round(pattern.avg_length)} characters"
        ),
    )


def _string_list(value) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if str(item).strip()][:8]


class PersonalityAnalyzer:
    """Collect samples for tracked usernames and derive a style directive.

    Traits are (re)derived once a user has ``MIN_SAMPLES`` samples and then on
    every ``ANALYSIS_EVERY``-th sample. When the completion client is missing,
    slow or returns garbage the heuristic summary is used instead.
    """

    def __init__(
        self,
        completion=None,
        *,
        tracked: Iterable[str] = (),
        timeout: float = 20.0,
    ) -> None:
        self.completion = completion
        self.timeout = timeout
        self._tracked: List[str] = []
        self._samples: Dict[str, List[MessageSample]] = {}
        self._traits: Dict[str, PersonalityTraits] = {}
        self._received: Dict[str, int] = {}
        for username in tracked:
            self.track(username)

    @staticmethod
    def _key(username: Optional[str]) -> str:
        return (username or "").lstrip("@").lower()

    def is_tracked(self, username: Optional[str]) -> bool:
        return bool(username) and self._key(username) in self._tracked

    def track(self, username: str) -> bool:
        key = self._key(username)
        if not key or key in self._tracked:
            return False
        self._tracked.append(key)
        log.info("personality learning enabled for @%s", key)
        return True

    def untrack(self, username: str) -> bool:
        key = self._key(username)
        if key not in self._tracked:
            return False
        self._tracked.remove(key)
        log.info("personality learning disabled for @%s", key)
        return True

    def tracked_users(self) -> List[str]:
        return list(self._tracked)

    def sample_count(self, username: str) -> int:
        return len(self._samples.get(self._key(username), []))

    def traits(self, username: str) -> Optional[PersonalityTraits]:
        return self._traits.get(self._key(username))

    async def add_sample(self, username: str, sample: MessageSample) -> None:
        key = self._key(username)
        if key not in self._tracked:
            return
        samples = self._samples.setdefault(key, [])
        samples.append(sample)
        received = self._received.get(key, 0) + 1
        self._received[key] = received
        if len(samples) > MAX_SAMPLES:
            del samples[: len(samples) - MAX_SAMPLES]
        log.debug("personality sample %d recorded for @%s", len(samples), key)
        # counted on received samples; the buffer stops growing at MAX_SAMPLES
        if received >= MIN_SAMPLES and received % ANALYSIS_EVERY == 0:
            await self.analyze(key)

    async def analyze(self, username: str) -> Optional[PersonalityTraits]:
        key = self._key(username)
        samples = list(self._samples.get(key, []))
        if len(samples) < MIN_SAMPLES:
            return None
        pattern = measure_patterns(samples)
        traits = await self._model_traits(samples, pattern)
        if traits is None:
            traits = heuristic_traits(pattern)
        traits.sample_count = len(samples)
        traits.last_updated = time.time()
        self._traits[key] = traits
        log.info(
            "personality analysis for @%s complete (%d samples, %s)",
            key,
            traits.sample_count,
            traits.communication_style,
        )
        return traits

    async def _model_traits(
        self, samples: List[MessageSample], pattern: CommunicationPattern
    ) -> Optional[PersonalityTraits]:
        if self.completion is None:
            return None
        prompt = ANALYSIS_PROMPT.format(
            avg_length=pattern.avg_length,
            emoji=pattern.emoji_usage,
            technical=pattern.technical,
            casual=pattern.casualness,
            style=pattern.response_style,
            questions=pattern.questions,
            messages="\n\n".join(sample.text for sample in samples[-RECENT_FOR_ANALYSIS:]),
        )
        try:
            response = await bounded(
                self.completion.complete(prompt, [], is_command=True),
                self.timeout,
                label="personality analysis",
            )
        except Exception as exc:
            log.warning("personality analysis via model failed: %s", exc)
            return None
        payload = extract_json_object(response.text)
        if payload is None:
            return None
        return PersonalityTraits(
            communication_style=str(payload.get("communicationStyle") or "Conversational"),
            technical_depth=str(payload.get("technicalDepth") or "Moderate"),
            casualness=str(payload.get("casualness") or "Balanced"),
            humor=str(payload.get("humor") or "Occasional"),
            response_patterns=str(payload.get("responsePatterns") or "Direct"),
            vocabulary_preferences=_string_list(payload.get("vocabularyPreferences")),
            common_phrases=_string_list(payload.get("commonPhrases")),
            topic_preferences=_string_list(payload.get("topicPreferences")),
        )

    def style_directive(self, username: Optional[str]) -> Optional[str]:
        if not self.is_tracked(username):
            return None
        key = self._key(username)
        traits = self._traits.get(key)
        if traits is None:
            return None
        lines = [
            f"Communication style adaptation for @{key}:",
            traits.communication_style,
            f"Technical depth: {traits.technical_depth}",
            f"Casualness: {traits.casualness}",
            f"Humor style: {traits.humor}",
            f"Response patterns: {traits.response_patterns}",
        ]
        if traits.vocabulary_preferences:
            lines.append(f"Preferred vocabulary: {', '.join(traits.vocabulary_preferences)}")
        if traits.common_phrases:
            lines.append(f"Common phrases: {', '.join(traits.common_phrases)}")
        if traits.topic_preferences:
            lines.append(f"Preferred topics: {', '.join(traits.topic_preferences)}")
        lines.append(
            "Adapt your replies to match this style naturally while keeping your own voice."
        )
        return "\n".join(lines)

    def summary(self, username: str) -> str:
        key = self._key(username)
        traits = self._traits.get(key)
        count = self.sample_count(key)
        if traits is None:
            return f"@{key}: {count}/{MIN_SAMPLES} samples collected, no profile yet."
        updated = datetime.fromtimestamp(traits.last_updated).strftime("%Y-%m-%d %H:%M")
        return (
            f"@{key} ({traits.sample_count} samples, updated {updated})\n"
            f"Style: {traits.communication_style}\n"
            f"Technical depth: {traits.technical_depth}\n"
            f"Casualness: {traits.casualness}\n"
            f"Humor: {traits.humor}\n"
            f"Patterns: {traits.response_patterns}"
        )

    def clear(self, username: str) -> bool:
        key = self._key(username)
        had_data = key in self._samples or key in self._traits or key in self._tracked
        self._samples.pop(key, None)
        self._traits.pop(key, None)
        self._received.pop(key, None)
        if key in self._tracked:
            self._tracked.remove(key)
        log.info("cleared personality data for @%s", key)
        return had_data
