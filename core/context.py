"""Latency-bounded lookup of relevant ideas for the chat path."""

import logging
from typing import Optional, Sequence

from .knowledge import IdeaSearchResult
from .timeouts import bounded

log = logging.getLogger(__name__)

DEFAULT_LIMIT = 3
DEFAULT_TIMEOUT = 5.0
DEFAULT_MAX_CHARS = 500
CONTENT_PREFIX_CHARS = 200
ELLIPSIS = "..."


def _shrink(value: str, limit: int) -> str:
    value = value or ""
    return value if len(value) <= limit else value[:limit] + ELLIPSIS


def format_result(index: int, result: IdeaSearchResult) -> str:
    idea = result.idea
    return (
        f"{index}. [{idea.category.upper()}] {idea.title} (Priority: {idea.priority})\n"
        f"   {_shrink(idea.content, CONTENT_PREFIX_CHARS)}"
    )


def build_context(results: Sequence[IdeaSearchResult], max_chars: int = DEFAULT_MAX_CHARS) -> str:
    """Render ranked results into one block no longer than ``max_chars``."""
    if not results:
        return ""
    block = "\n\n".join(format_result(index, result) for index, result in enumerate(results, 1))
    if len(block) <= max_chars:
        return block
    if max_chars <= len(ELLIPSIS):
        return ELLIPSIS[:max_chars]
    return block[: max_chars - len(ELLIPSIS)] + ELLIPSIS


class ContextRetriever:
    def __init__(self, knowledge, *, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.knowledge = knowledge
        self.timeout = timeout

    async def retrieve(
        self,
        query: str,
        user_id,
        *,
        limit: int = DEFAULT_LIMIT,
        max_chars: int = DEFAULT_MAX_CHARS,
        timeout: Optional[float] = None,
    ) -> str:
        if not self.knowledge.enabled or not query.strip():
            return ""
        budget = self.timeout if timeout is None else timeout
        try:
            results = await bounded(
                self.knowledge.search(query, str(user_id), limit),
                budget,
                label="context retrieval",
            )
        except TimeoutError:
            log.warning("context retrieval timed out after %.1fs for user %s", budget, user_id)
            return ""
        except Exception as exc:
            log.warning("context retrieval failed for user %s: %s", user_id, exc)
            return ""
        context = build_context(results[:limit], max_chars)
        log.debug("context for user %s: %d results, %d chars", user_id, len(results), len(context))
        return context
