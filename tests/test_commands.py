import pytest

from core.commands import HELP_TEXT, NOT_ENABLED, CommandRouter
from core.conversations import ConversationStore
from core.dispatcher import ResponseDispatcher
from core.messages import normalize_message
from core.personality import MIN_SAMPLES, MessageSample, PersonalityAnalyzer


@pytest.fixture
def make_router(completion, bot):
    def _make(knowledge, *, tracked=(), dashboard_url=None):
        router = CommandRouter(
            conversations=ConversationStore(),
            knowledge=knowledge,
            personality=PersonalityAnalyzer(tracked=tracked),
            dispatcher=ResponseDispatcher(),
            completion=completion,
            dashboard_url=dashboard_url,
        )
        router.bot = bot
        return router

    return _make


@pytest.fixture
def run(make_event):
    async def _run(router, text, **overrides):
        return await router.route(normalize_message(make_event(text, **overrides)))

    return _run


class TestBasics:
    @pytest.mark.asyncio
    async def test_help_and_start(self, make_router, run, knowledge):
        router = make_router(knowledge)
        assert await run(router, "/help") == HELP_TEXT
        assert "/help" in await run(router, "/start")

    @pytest.mark.asyncio
    async def test_unknown_command_points_to_help(self, make_router, run, knowledge):
        reply = await run(make_router(knowledge), "/teleport now")
        assert reply == "Unknown command: /teleport. Use /help to see available commands."

    @pytest.mark.asyncio
    async def test_clear_drops_conversation(self, make_router, run, knowledge):
        router = make_router(knowledge)
        router.conversations.get_or_create(555)
        assert await run(router, "/clear") == "Conversation cleared!"
        assert 555 not in router.conversations

    @pytest.mark.asyncio
    async def test_tools(self, make_router, run, knowledge, completion):
        router = make_router(knowledge)
        assert await run(router, "/tools") == "No tools are currently available."
        completion.tools = ["create_idea", "search_ideas"]
        assert await run(router, "/tools") == "Available tools:\n\n- create_idea\n- search_ideas"

    @pytest.mark.asyncio
    async def test_dashboard_aliases(self, make_router, run, knowledge):
        assert await run(make_router(knowledge), "/ui") == "The web dashboard is not enabled."
        router = make_router(knowledge, dashboard_url="http://127.0.0.1:3000")
        for name in ("ui", "web", "dashboard"):
            assert await run(router, f"/{name}") == "Ideas dashboard: http://127.0.0.1:3000"


class TestIdeas:
    @pytest.mark.asyncio
    async def test_capture_confirms_with_id(self, make_router, run, knowledge):
        reply = await run(make_router(knowledge), "/capture We should raise enterprise pricing 20% next quarter")
        idea = knowledge.list_user_ideas("101")[0]
        assert idea.category == "sales"
        assert reply.startswith("Idea captured!")
        assert f"ID: {idea.id}" in reply

    @pytest.mark.asyncio
    async def test_argument_validation(self, make_router, run, knowledge):
        router = make_router(knowledge)
        assert await run(router, "/capture") == "Usage: /capture <text>"
        assert await run(router, "/search") == "Usage: /search <query>"
        assert await run(router, "/forget") == "Usage: /forget <id>"
        assert await run(router, "/forget a b") == "Usage: /forget <id>"
        assert await run(router, "/ideas many") == "Usage: /ideas [N]"

    @pytest.mark.asyncio
    async def test_disabled_feature(self, make_router, run, disabled_knowledge):
        router = make_router(disabled_knowledge)
        for text in ("/capture an idea", "/search pricing", "/forget abc", "/ideas"):
            assert await run(router, text) == NOT_ENABLED

    @pytest.mark.asyncio
    async def test_search_and_list(self, make_router, run, knowledge):
        router = make_router(knowledge)
        assert await run(router, "/ideas") == "You have no ideas yet. Capture one with /capture <text>."
        await run(router, "/capture raise enterprise pricing")
        await run(router, "/capture hire a head of sales")
        listing = await run(router, "/ideas 1")
        assert listing.startswith("Your latest 1 ideas:")
        found = await run(router, "/search enterprise pricing")
        assert found.startswith('Found 1 ideas for "enterprise pricing"')
        assert "match" in found
        assert await run(router, "/search quantum teleportation") == 'No ideas found for "quantum teleportation".'

    @pytest.mark.asyncio
    async def test_forget_respects_ownership(self, make_router, run, knowledge):
        router = make_router(knowledge)
        await run(router, "/capture expand into the german market")
        idea = knowledge.list_user_ideas("101")[0]
        denied = await run(router, f"/forget {idea.id}", sender_id=202)
        assert denied == "Could not delete that idea. Check the id and try again."
        assert await run(router, "/forget does-not-exist") == denied
        assert await run(router, f"/forget {idea.id}") == f"Idea {idea.id} deleted."


class TestPersonalityCommands:
    @pytest.mark.asyncio
    async def test_learn_add_and_remove(self, make_router, run, knowledge):
        router = make_router(knowledge)
        assert await run(router, "/learn add @Bob") == "Now learning the communication style of @bob."
        assert await run(router, "/learn add bob") == "@bob is already being tracked."
        assert router.personality.is_tracked("bob")
        assert (await run(router, "/learn remove bob")).startswith("Stopped learning from @bob.")
        assert await run(router, "/learn remove bob") == "@bob is not being tracked."
        assert await run(router, "/learn toggle bob") == "Usage: /learn add|remove <username>"

    @pytest.mark.asyncio
    async def test_personality_progress_and_profile(self, make_router, run, knowledge):
        router = make_router(knowledge, tracked=["alice"])
        assert await run(router, "/personality") == f"@alice: 0/{MIN_SAMPLES} samples collected, no profile yet."
        assert "not tracked" in await run(router, "/personality carol")
        for index in range(MIN_SAMPLES):
            await router.personality.add_sample("alice", MessageSample(text=f"quick note {index}"))
        assert (await run(router, "/personality alice")).startswith(f"@alice ({MIN_SAMPLES} samples")

    @pytest.mark.asyncio
    async def test_forget_personality_untracks(self, make_router, run, knowledge):
        router = make_router(knowledge, tracked=["alice"])
        reply = await run(router, "/forget_personality alice")
        assert reply == "Personality data for @alice cleared and learning disabled."
        assert not router.personality.is_tracked("alice")
        assert await run(router, "/forget_personality alice") == "No personality data stored for @alice."
        assert await run(router, "/forget_personality") == "Usage: /forget_personality <username>"


class TestDebug:
    @pytest.mark.asyncio
    async def test_debug_summary(self, make_router, run, knowledge):
        reply = await run(make_router(knowledge, tracked=["alice"]), "/debug")
        assert "Bot: @strategy_bot (id 4242)" in reply
        assert "Username variants: strategy_bot, strategybot, strategy" in reply
        assert "Ideas enabled: yes" in reply
        assert "Personality users: @alice" in reply

    @pytest.mark.asyncio
    async def test_debug_mention(self, make_router, run, knowledge):
        router = make_router(knowledge)
        reply = await run(router, "/debug mention hey @strategy_bot you there")
        assert "@mention: yes" in reply
        assert "would reply: yes" in reply
        quiet = await run(router, "/debug mention lunch anyone")
        assert "would reply: no" in quiet
        assert await run(router, "/debug mention") == "Usage: /debug mention <text>"
