"""Per-chat conversation state with lazy creation and time-based eviction.

The store is owned by the event loop thread; nothing here locks. Moving to a
multi-threaded dispatcher needs per-chat locking or sharding by chat id first.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

log = logging.getLogger(__name__)

RETENTION_SECONDS = 3600
SWEEP_INTERVAL_SECONDS = 3600


@dataclass
class HistoryEntry:
    role: str
    content: str


@dataclass
class ConversationState:
    chat_id: int
    message_history: List[HistoryEntry] = field(default_factory=list)
    last_activity: float = field(default_factory=time.time)
    user_id: Optional[int] = None
    user_name: Optional[str] = None

    def history_payload(self) -> List[dict]:
        return [{"role": entry.role, "content": entry.content} for entry in self.message_history]


class ConversationStore:
    def __init__(
        self,
        *,
        retention_seconds: float = RETENTION_SECONDS,
        history_limit: Optional[int] = None,
    ) -> None:
        self.retention_seconds = retention_seconds
        self.history_limit = history_limit
        self._states: Dict[int, ConversationState] = {}

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, chat_id: int) -> bool:
        return chat_id in self._states

    def get(self, chat_id: int) -> Optional[ConversationState]:
        return self._states.get(chat_id)

    def get_or_create(
        self,
        chat_id: int,
        user_id: Optional[int] = None,
        user_name: Optional[str] = None,
        *,
        now: Optional[float] = None,
    ) -> ConversationState:
        state = self._states.get(chat_id)
        if state is None:
            log.info("creating conversation for chat %s", chat_id)
            state = ConversationState(chat_id=chat_id)
            self._states[chat_id] = state
        state.last_activity = time.time() if now is None else now
        if state.user_id is None and user_id is not None:
            state.user_id = user_id
        if state.user_name is None and user_name:
            state.user_name = user_name
        return state

    def append_exchange(self, state: ConversationState, user_text: str, reply: str) -> None:
        state.message_history.append(HistoryEntry("user", user_text))
        state.message_history.append(HistoryEntry("assistant", reply))
        if self.history_limit and len(state.message_history) > self.history_limit:
            del state.message_history[: len(state.message_history) - self.history_limit]

    def clear(self, chat_id: int) -> bool:
        removed = self._states.pop(chat_id, None) is not None
        if removed:
            log.info("cleared conversation for chat %s", chat_id)
        return removed

    def sweep(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        cutoff = now - self.retention_seconds
        stale = [chat_id for chat_id, state in self._states.items() if state.last_activity < cutoff]
        for chat_id in stale:
            del self._states[chat_id]
        if stale:
            log.info("cleaned up %d idle conversations", len(stale))
        return len(stale)

    async def run_sweeper(
        self, stop_event: asyncio.Event, interval: float = SWEEP_INTERVAL_SECONDS
    ) -> None:
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                self.sweep()
