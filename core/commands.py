"""Slash command handlers.

Every handler returns the reply text; there is no silent outcome.
"""

import logging
from typing import Awaitable, Callable, Dict, Optional

from .addressing import BotIdentity, evaluate_addressing, username_variants
from .conversations import ConversationStore
from .dispatcher import ResponseDispatcher
from .knowledge import KnowledgeService
from .messages import Command, InboundMessage, ProcessedMessage
from .personality import PersonalityAnalyzer

log = logging.getLogger(__name__)

DEFAULT_IDEAS_LIMIT = 10
MAX_IDEAS_LIMIT = 30
SEARCH_RESULTS = 5

NOT_ENABLED = "Idea capture is not enabled."

WELCOME_TEXT = """Strategic Assistant

Hi! I keep track of the ideas that come up while we talk and bring them back when they matter.

You can:
- chat with me naturally
- capture ideas with /capture <text>
- find them again with /search <query>

Use /help to see every command."""

HELP_TEXT = """Available commands

/start - welcome message
/help - this help
/clear - clear our conversation history
/tools - list the tools I can use
/ui - link to the ideas dashboard (also /web, /dashboard)
/ideas [N] - your latest ideas (default 10)
/capture <text> - save an idea
/search <query> - search your ideas
/forget <id> - delete one of your ideas
/learn add|remove <username> - toggle style learning for a user
/personality [<username>] - show a learned communication style
/forget_personality <username> - drop learned style data
/debug [mention <text>] - diagnostics

In groups, mention me or reply to one of my messages."""

Handler = Callable[[ProcessedMessage, Command], Awaitable[str]]


class CommandRouter:
    def __init__(
        self,
        *,
        conversations: ConversationStore,
        knowledge: KnowledgeService,
        personality: PersonalityAnalyzer,
        dispatcher: ResponseDispatcher,
        completion=None,
        dashboard_url: Optional[str] = None,
    ) -> None:
        self.conversations = conversations
        self.knowledge = knowledge
        self.personality = personality
        self.dispatcher = dispatcher
        self.completion = completion
        self.dashboard_url = dashboard_url
        self.bot: Optional[BotIdentity] = None
        self.handlers: Dict[str, Handler] = {
            "start": self._start,
            "help": self._help,
            "clear": self._clear,
            "tools": self._tools,
            "ui": self._dashboard,
            "web": self._dashboard,
            "dashboard": self._dashboard,
            "ideas": self._ideas,
            "capture": self._capture,
            "forget": self._forget,
            "search": self._search,
            "learn": self._learn,
            "personality": self._personality,
            "forget_personality": self._forget_personality,
            "debug": self._debug,
        }

    async def route(self, message: ProcessedMessage) -> str:
        command = message.command
        if command is None:
            raise ValueError("route() needs a parsed command")
        handler = self.handlers.get(command.name)
        if handler is None:
            log.warning("unknown command /%s in chat %s", command.name, message.chat_id)
            return f"Unknown command: /{command.name}. Use /help to see available commands."
        log.info("command /%s from user %s in chat %s", command.name, message.user_id, message.chat_id)
        return await handler(message, command)

    async def _start(self, message: ProcessedMessage, command: Command) -> str:
        return WELCOME_TEXT

    async def _help(self, message: ProcessedMessage, command: Command) -> str:
        return HELP_TEXT

    async def _clear(self, message: ProcessedMessage, command: Command) -> str:
        self.conversations.clear(message.chat_id)
        return "Conversation cleared!"

    async def _tools(self, message: ProcessedMessage, command: Command) -> str:
        tools = self.completion.list_tools() if self.completion is not None else []
        if not tools:
            return "No tools are currently available."
        return "Available tools:\n\n" + "\n".join(f"- {name}" for name in tools)

    async def _dashboard(self, message: ProcessedMessage, command: Command) -> str:
        if not self.dashboard_url:
            return "The web dashboard is not enabled."
        return f"Ideas dashboard: {self.dashboard_url}"

    async def _ideas(self, message: ProcessedMessage, command: Command) -> str:
        if not self.knowledge.enabled:
            return NOT_ENABLED
        if len(command.args) > 1 or (command.args and not command.args[0].isdigit()):
            return "Usage: /ideas [N]"
        limit = int(command.args[0]) if command.args else DEFAULT_IDEAS_LIMIT
        limit = max(1, min(MAX_IDEAS_LIMIT, limit))
        ideas = self.knowledge.list_user_ideas(str(message.user_id), limit)
        if not ideas:
            return "You have no ideas yet. Capture one with /capture <text>."
        lines = [
            f"{index}. [{idea.category.upper()}] {idea.title} ({idea.priority})\n   id: {idea.id}"
            for index, idea in enumerate(ideas, 1)
        ]
        return f"Your latest {len(ideas)} ideas:\n\n" + "\n".join(lines)

    async def _capture(self, message: ProcessedMessage, command: Command) -> str:
        if not command.args:
            return "Usage: /capture <text>"
        if not self.knowledge.enabled:
            return NOT_ENABLED
        idea = await self.knowledge.capture_idea(command.text, str(message.user_id), message.chat_id)
        if idea is None:
            return "Failed to capture that idea. Please try again."
        return (
            "Idea captured!\n\n"
            f"Title: {idea.title}\n"
            f"Category: {idea.category}\n"
            f"Priority: {idea.priority}\n"
            f"ID: {idea.id}"
        )

    async def _forget(self, message: ProcessedMessage, command: Command) -> str:
        if len(command.args) != 1:
            return "Usage: /forget <id>"
        if not self.knowledge.enabled:
            return NOT_ENABLED
        idea_id = command.args[0]
        if self.knowledge.delete(idea_id, str(message.user_id)):
            return f"Idea {idea_id} deleted."
        return "Could not delete that idea. Check the id and try again."

    async def _search(self, message: ProcessedMessage, command: Command) -> str:
        if not command.args:
            return "Usage: /search <query>"
        if not self.knowledge.enabled:
            return NOT_ENABLED
        results = await self.knowledge.safe_search(command.text, str(message.user_id), SEARCH_RESULTS)
        if not results:
            return f'No ideas found for "{command.text}".'
        lines = [
            f"{index}. [{result.idea.category.upper()}] {result.idea.title} "
            f"({result.score:.0%} match)\n   id: {result.idea.id}"
            for index, result in enumerate(results, 1)
        ]
        return f'Found {len(results)} ideas for "{command.text}":\n\n' + "\n".join(lines)

    async def _learn(self, message: ProcessedMessage, command: Command) -> str:
        if len(command.args) != 2 or command.args[0].lower() not in ("add", "remove"):
            return "Usage: /learn add|remove <username>"
        action = command.args[0].lower()
        username = command.args[1].lstrip("@").lower()
        if not username:
            return "Usage: /learn add|remove <username>"
        if action == "add":
            if self.personality.track(username):
                return f"Now learning the communication style of @{username}."
            return f"@{username} is already being tracked."
        if self.personality.untrack(username):
            return f"Stopped learning from @{username}. Collected samples are kept until /forget_personality."
        return f"@{username} is not being tracked."

    async def _personality(self, message: ProcessedMessage, command: Command) -> str:
        if len(command.args) > 1:
            return "Usage: /personality [<username>]"
        username = command.args[0].lstrip("@").lower() if command.args else message.username
        if not username:
            return "Set a Telegram username or pass one: /personality <username>"
        if not self.personality.is_tracked(username) and self.personality.traits(username) is None:
            count = self.personality.sample_count(username)
            if not count:
                return f"@{username} is not tracked. Use /learn add {username} to start."
        return self.personality.summary(username)

    async def _forget_personality(self, message: ProcessedMessage, command: Command) -> str:
        if len(command.args) != 1:
            return "Usage: /forget_personality <username>"
        username = command.args[0].lstrip("@").lower()
        if self.personality.clear(username):
            return f"Personality data for @{username} cleared and learning disabled."
        return f"No personality data stored for @{username}."

    async def _debug(self, message: ProcessedMessage, command: Command) -> str:
        if command.args and command.args[0].lower() == "mention":
            return self._debug_mention(message, " ".join(command.args[1:]))
        if command.args:
            return "Usage: /debug [mention <text>]"
        bot = self.bot
        tracked = self.personality.tracked_users()
        return "\n".join(
            [
                "Debug info",
                f"Bot: @{bot.username} (id {bot.user_id})" if bot else "Bot: identity unknown",
                f"Username variants: {', '.join(username_variants(bot.username)) if bot else '-'}",
                f"Chat: {message.chat_id} ({message.chat_type})",
                f"Active conversations: {len(self.conversations)}",
                f"Tracked bot messages: {len(self.dispatcher.tracker)}",
                f"Ideas enabled: {'yes' if self.knowledge.enabled else 'no'}",
                f"Personality users: {', '.join('@' + name for name in tracked) if tracked else 'none'}",
            ]
        )

    def _debug_mention(self, message: ProcessedMessage, text: str) -> str:
        if not text.strip():
            return "Usage: /debug mention <text>"
        if self.bot is None:
            return "Bot identity is not known yet."
        probe = InboundMessage(chat_id=message.chat_id, message_id=0, chat_type="group", text=text)
        verdict = evaluate_addressing(probe, self.bot)
        marks = {True: "yes", False: "no"}
        return "\n".join(
            [
                f'Mention check for "{text}"',
                f"@mention: {marks[verdict.mention]}",
                f"username variant: {marks[verdict.username_variant]}",
                f"direct address: {marks[verdict.direct_address]}",
                f"would reply: {marks[verdict.addressed]}",
            ]
        )
