"""Shared fakes and fixtures. Nothing here touches the network."""

import asyncio
import re
from itertools import count

import pytest

from core.addressing import BotIdentity
from core.assistant import Assistant
from core.capture import AutoCapturer
from core.commands import CommandRouter
from core.context import ContextRetriever
from core.conversations import ConversationStore
from core.dispatcher import ResponseDispatcher
from core.knowledge import KnowledgeService, KnowledgeStore
from core.llm import Completion
from core.messages import InboundMessage
from core.personality import PersonalityAnalyzer

BOT_USERNAME = "strategy_bot"
BOT_USER_ID = 4242


class FakeEmbedder:
    """Bag-of-words vectors over a vocabulary that grows as words are seen."""

    dimensions = 512

    def __init__(self):
        self.vocabulary = {}
        self.calls = 0

    async def embed(self, text):
        self.calls += 1
        vector = [0.0] * self.dimensions
        for word in re.findall(r"[a-z0-9]+", text.lower()):
            index = self.vocabulary.setdefault(word, len(self.vocabulary) % self.dimensions)
            vector[index] += 1.0
        return vector


class FakeCompletion:
    def __init__(self, reply="Sounds like a plan.", *, delay=0.0, tool_calls=(), tools=()):
        self.reply = reply
        self.delay = delay
        self.tool_calls = list(tool_calls)
        self.tools = list(tools)
        self.error = None
        self.calls = []

    async def complete(self, message, history=(), **kwargs):
        self.calls.append({"message": message, "history": list(history), **kwargs})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return Completion(text=self.reply, tool_calls=list(self.tool_calls))

    def list_tools(self):
        return list(self.tools)


class FakeSender:
    def __init__(self):
        self.sent = []
        self.typing = []
        self.fail = False
        self._ids = count(1000)

    async def send_text(self, chat_id, text):
        if self.fail:
            raise RuntimeError("network down")
        message_id = next(self._ids)
        self.sent.append((chat_id, text, message_id))
        return message_id

    async def send_typing(self, chat_id):
        if self.fail:
            raise RuntimeError("network down")
        self.typing.append(chat_id)

    def texts(self, chat_id=None):
        return [text for chat, text, _ in self.sent if chat_id is None or chat == chat_id]


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def completion():
    return FakeCompletion()


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def knowledge(tmp_path, embedder):
    service = KnowledgeService(KnowledgeStore(tmp_path / "knowledge.db", embedder))
    assert service.initialize()
    yield service
    service.close()


@pytest.fixture
def disabled_knowledge():
    return KnowledgeService(None)


@pytest.fixture
def bot():
    return BotIdentity(BOT_USERNAME, user_id=BOT_USER_ID)


@pytest.fixture
def make_event():
    ids = count(1)

    def _make(text=None, **overrides):
        values = {
            "chat_id": 555,
            "message_id": next(ids),
            "chat_type": "private",
            "text": text,
            "sender_id": 101,
            "sender_username": "alice",
            "sender_first_name": "Alice",
        }
        values.update(overrides)
        return InboundMessage(**values)

    return _make


@pytest.fixture
def build_assistant(sender, completion, bot):
    def _build(knowledge, *, context_timeout=5.0, capture_timeout=5.0, llm_timeout=5.0, tracked=()):
        conversations = ConversationStore()
        dispatcher = ResponseDispatcher(sender)
        personality = PersonalityAnalyzer(tracked=tracked)
        router = CommandRouter(
            conversations=conversations,
            knowledge=knowledge,
            personality=personality,
            dispatcher=dispatcher,
            completion=completion,
            dashboard_url="http://127.0.0.1:3000",
        )
        assistant = Assistant(
            conversations=conversations,
            dispatcher=dispatcher,
            knowledge=knowledge,
            completion=completion,
            personality=personality,
            context=ContextRetriever(knowledge, timeout=context_timeout),
            capturer=AutoCapturer(knowledge, timeout=capture_timeout),
            router=router,
            llm_timeout=llm_timeout,
        )
        assistant.set_identity(bot)
        return assistant

    return _build
