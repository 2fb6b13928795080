import logging
from collections import OrderedDict
from typing import List, Optional, Set, Tuple

log = logging.getLogger(__name__)

TRACKER_LIMIT = 1000
TRACKER_KEEP = 100
MAX_MESSAGE_LENGTH = 4000


class BotMessageTracker:
    """Ids of messages the bot sent, keyed by chat.

    Once more than ``limit`` ids are tracked only the newest ``keep`` survive.
    """

    def __init__(self, *, limit: int = TRACKER_LIMIT, keep: int = TRACKER_KEEP) -> None:
        self.limit = limit
        self.keep = keep
        self._ids: "OrderedDict[Tuple[int, int], None]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, chat_id: int, message_id: int) -> None:
        key = (chat_id, message_id)
        self._ids[key] = None
        self._ids.move_to_end(key)
        if len(self._ids) > self.limit:
            while len(self._ids) > self.keep:
                self._ids.popitem(last=False)
            log.debug("bot message tracker trimmed to %d ids", len(self._ids))

    def contains(self, chat_id: int, message_id: int) -> bool:
        return (chat_id, message_id) in self._ids

    def ids_for(self, chat_id: int) -> Set[int]:
        return {message_id for chat, message_id in self._ids if chat == chat_id}


def split_text(text: str, limit: int = MAX_MESSAGE_LENGTH) -> List[str]:
    """Split on paragraph or line boundaries where possible."""
    text = text or ""
    if len(text) <= limit:
        return [text] if text else []
    chunks: List[str] = []
    remaining = text
    while len(remaining) > limit:
        cut = remaining.rfind("\n\n", 0, limit)
        if cut <= 0:
            cut = remaining.rfind("\n", 0, limit)
        if cut <= 0:
            cut = remaining.rfind(" ", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(remaining[:cut].rstrip())
        remaining = remaining[cut:].lstrip()
    if remaining:
        chunks.append(remaining)
    return [chunk for chunk in chunks if chunk]


class ResponseDispatcher:
    """Best-effort delivery through a transport sender.

    The sender exposes ``send_text(chat_id, text) -> message id`` and
    ``send_typing(chat_id)``. Failures are logged and swallowed.
    """

    def __init__(self, sender=None, *, tracker: Optional[BotMessageTracker] = None) -> None:
        self.sender = sender
        self.tracker = tracker or BotMessageTracker()

    def attach(self, sender) -> None:
        self.sender = sender

    async def send(self, chat_id: int, text: str) -> List[int]:
        if self.sender is None:
            log.warning("no transport attached; dropping reply to chat %s", chat_id)
            return []
        sent: List[int] = []
        for chunk in split_text(text):
            try:
                message_id = await self.sender.send_text(chat_id, chunk)
            except Exception as exc:
                log.error("failed to send message to chat %s: %s", chat_id, exc)
                break
            if message_id is not None:
                self.tracker.add(chat_id, message_id)
                sent.append(message_id)
        return sent

    async def send_typing(self, chat_id: int) -> None:
        if self.sender is None:
            return
        try:
            await self.sender.send_typing(chat_id)
        except Exception as exc:
            log.debug("typing indicator failed for chat %s: %s", chat_id, exc)

    def is_bot_message(self, chat_id: int, message_id: Optional[int]) -> bool:
        return message_id is not None and self.tracker.contains(chat_id, message_id)
