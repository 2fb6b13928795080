import asyncio
import logging
from pathlib import Path
from typing import List, Optional

from openai import AsyncOpenAI

from .addressing import BotIdentity, evaluate_addressing
from .capture import AutoCapturer
from .commands import CommandRouter
from .config import Settings
from .context import DEFAULT_MAX_CHARS, ContextRetriever
from .conversations import SWEEP_INTERVAL_SECONDS, ConversationState, ConversationStore
from .dispatcher import ResponseDispatcher
from .knowledge import KnowledgeService, KnowledgeStore, OpenAIEmbedder
from .llm import CompletionClient, ToolExecutor
from .messages import InboundMessage, MessageKind, ProcessedMessage, normalize_message
from .persona import PersonaConfig
from .personality import MessageSample, PersonalityAnalyzer
from .timeouts import bounded

log = logging.getLogger(__name__)

PRIVATE_CONTEXT_CHARS = 1000
REMINDER_INTERVAL_SECONDS = 60

GENERIC_ERROR = "Sorry, an error occurred processing your message"
TIMEOUT_REPLY = "Sorry, that took too long to answer. Please try again."
EMPTY_REPLY = "I don't have an answer for that right now."
TEXT_PROMPT = "Please send your message as text."


class Assistant:
    """Routes one inbound chat event through the reply pipeline."""

    def __init__(
        self,
        *,
        conversations: ConversationStore,
        dispatcher: ResponseDispatcher,
        knowledge: KnowledgeService,
        completion,
        personality: PersonalityAnalyzer,
        context: ContextRetriever,
        capturer: AutoCapturer,
        router: CommandRouter,
        llm_timeout: float = 45.0,
    ) -> None:
        self.conversations = conversations
        self.dispatcher = dispatcher
        self.knowledge = knowledge
        self.completion = completion
        self.personality = personality
        self.context = context
        self.capturer = capturer
        self.router = router
        self.llm_timeout = llm_timeout
        self.bot: Optional[BotIdentity] = None
        self._stop_event = asyncio.Event()
        self._tasks: List[asyncio.Task] = []

    @classmethod
    def from_settings(cls, settings: Settings) -> "Assistant":
        client = AsyncOpenAI(api_key=settings.openai_api_key)
        persona = PersonaConfig(
            default_path=Path(__file__).with_name("persona_config.yaml"),
            override_path=settings.persona_override_path,
        )
        completion = CompletionClient(client, model=settings.model, persona=persona)
        store = None
        if settings.knowledge_enabled:
            store = KnowledgeStore(
                settings.knowledge_db_path, OpenAIEmbedder(client, settings.embedding_model)
            )
        knowledge = KnowledgeService(store, completion)
        if knowledge.initialize():
            completion.tool_executor = ToolExecutor(knowledge)
        conversations = ConversationStore(history_limit=settings.history_limit)
        dispatcher = ResponseDispatcher()
        personality = PersonalityAnalyzer(completion, tracked=settings.personality_users)
        router = CommandRouter(
            conversations=conversations,
            knowledge=knowledge,
            personality=personality,
            dispatcher=dispatcher,
            completion=completion,
            dashboard_url=settings.dashboard_url,
        )
        return cls(
            conversations=conversations,
            dispatcher=dispatcher,
            knowledge=knowledge,
            completion=completion,
            personality=personality,
            context=ContextRetriever(knowledge, timeout=settings.context_timeout),
            capturer=AutoCapturer(knowledge, timeout=settings.capture_timeout),
            router=router,
            llm_timeout=settings.llm_timeout,
        )

    def set_identity(self, bot: BotIdentity) -> None:
        self.bot = bot
        self.router.bot = bot
        log.info("bot identity set to @%s (id %s)", bot.username, bot.user_id)

    def start_background(self) -> None:
        self._stop_event.clear()
        self._tasks = [
            asyncio.create_task(
                self.conversations.run_sweeper(self._stop_event, SWEEP_INTERVAL_SECONDS)
            ),
            asyncio.create_task(self.run_reminders(self._stop_event, REMINDER_INTERVAL_SECONDS)),
        ]

    async def close(self) -> None:
        self._stop_event.set()
        for task in self._tasks:
            try:
                await task
            except Exception as exc:
                log.warning("background task ended with error: %s", exc)
        self._tasks = []
        self.knowledge.close()

    async def handle_message(self, event: InboundMessage) -> None:
        try:
            await self._handle(event)
        except Exception as exc:
            log.exception(
                "error handling message %s in chat %s (%r): %s",
                event.message_id,
                event.chat_id,
                (event.text or "")[:100],
                exc,
            )
            await self.dispatcher.send(event.chat_id, GENERIC_ERROR)

    def _addressed_elsewhere(self, message: ProcessedMessage) -> bool:
        target = message.command.target if message.command else None
        return bool(target) and self.bot is not None and target != self.bot.username

    async def _handle(self, event: InboundMessage) -> None:
        message = normalize_message(event)
        log.debug(
            "message %s in chat %s kind=%s valid=%s command=%s",
            message.message_id,
            message.chat_id,
            message.kind.value,
            message.is_valid,
            message.command.name if message.command else None,
        )
        if self._addressed_elsewhere(message):
            log.debug("ignoring /%s meant for @%s", message.command.name, message.command.target)
            return
        if message.is_group_chat and message.command is None:
            if self.bot is None:
                return
            verdict = evaluate_addressing(
                event, self.bot, self.dispatcher.tracker.ids_for(message.chat_id)
            )
            if not verdict.addressed:
                log.debug("group message %s in chat %s not addressed to bot", message.message_id, message.chat_id)
                return
            message.is_reply_to_bot = verdict.reply_to_bot
            message.mentions_bot = verdict.mention or verdict.username_variant or verdict.direct_address
        else:
            message.is_reply_to_bot = self.dispatcher.is_bot_message(message.chat_id, event.reply_to_message_id)
        if not message.is_valid:
            if message.kind is MessageKind.TEXT:
                await self.dispatcher.send(message.chat_id, TEXT_PROMPT)
            return
        state = self.conversations.get_or_create(message.chat_id, message.user_id, message.user_name)
        if message.command is not None:
            reply = await self.router.route(message)
            await self.dispatcher.send(message.chat_id, reply)
            return
        await self._chat(message, state)

    async def _chat(self, message: ProcessedMessage, state: ConversationState) -> None:
        chat_id = message.chat_id
        user_id = message.user_id
        log.info(
            "chat message from %s in chat %s (%d chars, %d history)",
            message.user_name,
            chat_id,
            len(message.text),
            len(state.message_history),
        )
        await self.dispatcher.send_typing(chat_id)
        context = ""
        if user_id is not None:
            max_chars = DEFAULT_MAX_CHARS if message.is_group_chat else PRIVATE_CONTEXT_CHARS
            context = await self.context.retrieve(message.text, user_id, max_chars=max_chars)
        if self.personality.is_tracked(message.username):
            await self.personality.add_sample(
                message.username,
                MessageSample(
                    text=message.text,
                    chat_type=message.chat_type,
                    reply_to_bot=message.is_reply_to_bot,
                ),
            )
        directive = self.personality.style_directive(message.username)
        try:
            completion = await bounded(
                self.completion.complete(
                    message.text,
                    state.history_payload(),
                    user_id=str(user_id) if user_id is not None else None,
                    chat_id=chat_id,
                    allow_tools=self.knowledge.enabled,
                    style_directive=directive,
                    context=context or None,
                ),
                self.llm_timeout,
                label="completion",
            )
        except TimeoutError:
            log.warning("completion timed out after %.0fs for chat %s user %s", self.llm_timeout, chat_id, user_id)
            await self.dispatcher.send(chat_id, TIMEOUT_REPLY)
            return
        reply = completion.text or EMPTY_REPLY
        self.conversations.append_exchange(state, message.text, reply)
        if user_id is not None:
            await self.capturer.maybe_capture(message.text, user_id, chat_id)
        await self.dispatcher.send(chat_id, reply)
        if completion.tool_calls:
            tools = "\n".join(f"- {name}" for name in completion.tool_calls)
            await self.dispatcher.send(chat_id, f"Tools used:\n{tools}")

    async def deliver_due_reminders(self, now: Optional[float] = None) -> int:
        delivered = 0
        for reminder in self.knowledge.get_due_reminders(now):
            try:
                idea = self.knowledge.get(reminder.idea_id)
                if idea is None or idea.chat_id is None:
                    log.info("dropping reminder %s without a deliverable idea", reminder.id)
                    self.knowledge.mark_reminder_sent(reminder.id)
                    continue
                sent = await self.dispatcher.send(idea.chat_id, f"Reminder: {reminder.message or idea.title}")
                if sent:
                    self.knowledge.mark_reminder_sent(reminder.id)
                    delivered += 1
            except Exception as exc:
                log.exception("failed to deliver reminder %s: %s", reminder.id, exc)
        return delivered

    async def run_reminders(self, stop_event: asyncio.Event, interval: float = REMINDER_INTERVAL_SECONDS) -> None:
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                delivered = await self.deliver_due_reminders()
                if delivered:
                    log.info("delivered %d reminders", delivered)
