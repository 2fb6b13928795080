"""Heuristic auto-capture of strategic chat messages as ideas.

A single keyword hit is not enough: a message must mention something
strategic and either name a business context or be substantial on its own.
"""

import logging
import re
from typing import Optional

from .knowledge import DEFAULT_CATEGORY, DEFAULT_PRIORITY, Idea
from .timeouts import bounded

log = logging.getLogger(__name__)

MIN_CAPTURE_LENGTH = 20
SUBSTANTIAL_LENGTH = 50
SUBSTANTIAL_WORDS = 8
AUTO_CAPTURE_TAG = "auto-captured"

STRATEGIC_KEYWORDS = (
    "strategy", "strategic", "plan", "roadmap", "goal", "vision", "priority",
    "launch", "pricing", "price", "revenue", "growth", "market", "customer",
    "competitor", "partnership", "partner", "product", "feature", "hire",
    "hiring", "funding", "investor", "expand", "expansion", "pivot", "opportunity",
    "idea", "should", "initiative", "kpi", "okr", "metric",
)

BUSINESS_CONTEXT_KEYWORDS = (
    "business", "company", "startup", "enterprise", "team", "sales", "deal",
    "client", "quarter", "q1", "q2", "q3", "q4", "budget", "users", "b2b",
    "b2c", "saas", "contract", "churn", "margin", "profit", "cost", "board",
)


def _keyword_pattern(words) -> "re.Pattern":
    return re.compile(r"\b(?:" + "|".join(re.escape(word) for word in words) + r")\b", re.IGNORECASE)


_STRATEGIC = _keyword_pattern(STRATEGIC_KEYWORDS)
_BUSINESS = _keyword_pattern(BUSINESS_CONTEXT_KEYWORDS)


def is_strategic(text: str) -> bool:
    return bool(_STRATEGIC.search(text or ""))


def has_business_context(text: str) -> bool:
    return bool(_BUSINESS.search(text or ""))


def is_substantial(text: str) -> bool:
    text = text or ""
    return len(text) > SUBSTANTIAL_LENGTH and len(text.split()) > SUBSTANTIAL_WORDS


def should_auto_capture(text: str) -> bool:
    text = (text or "").strip()
    if len(text) < MIN_CAPTURE_LENGTH:
        return False
    if not is_strategic(text):
        return False
    return has_business_context(text) or is_substantial(text)


class AutoCapturer:
    def __init__(self, knowledge, *, timeout: float = 5.0) -> None:
        self.knowledge = knowledge
        self.timeout = timeout

    async def maybe_capture(self, text: str, user_id, chat_id: int) -> Optional[Idea]:
        if not self.knowledge.enabled or not should_auto_capture(text):
            return None
        try:
            idea = await bounded(
                self.knowledge.capture_idea(
                    text,
                    str(user_id),
                    chat_id,
                    category=DEFAULT_CATEGORY,
                    priority=DEFAULT_PRIORITY,
                    tags=[AUTO_CAPTURE_TAG],
                    enhance=False,
                ),
                self.timeout,
                label="auto-capture",
            )
        except TimeoutError:
            log.warning("auto-capture timed out for user %s in chat %s", user_id, chat_id)
            return None
        except Exception as exc:
            log.warning("auto-capture failed for user %s in chat %s: %s", user_id, chat_id, exc)
            return None
        if idea is not None:
            log.info("auto-captured idea %s from chat %s", idea.id, chat_id)
        return idea
