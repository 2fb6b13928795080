from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from telegram import Chat, Message, MessageEntity, Update, User
from telegram.ext import MessageHandler

from transports.telegram_bot import INBOUND_FILTER, TelegramTransport, to_inbound

ALICE = User(id=101, first_name="Alice", is_bot=False, username="alice")
OTHER_BOT = User(id=77, first_name="Other", is_bot=True, username="other_bot")
GROUP = Chat(id=-100, type="supergroup")


def telegram_message(text="hey @strategy_bot", *, user=ALICE, message_id=10, **kwargs):
    return Message(
        message_id=message_id,
        date=datetime(2030, 1, 1, tzinfo=timezone.utc),
        chat=GROUP,
        from_user=user,
        text=text,
        **kwargs,
    )


async def _noop(update, context):
    return None


class TestUpdateFilter:
    def test_new_messages_are_handled(self):
        handler = MessageHandler(INBOUND_FILTER, _noop)
        assert handler.check_update(Update(update_id=1, message=telegram_message()))
        assert handler.check_update(Update(update_id=2, channel_post=telegram_message(user=None)))

    def test_edits_are_not_handled(self):
        handler = MessageHandler(INBOUND_FILTER, _noop)
        assert not handler.check_update(Update(update_id=3, edited_message=telegram_message()))
        assert not handler.check_update(Update(update_id=4, edited_channel_post=telegram_message(user=None)))


class TestConversion:
    def test_to_inbound_carries_reply_and_entities(self):
        bot_reply = telegram_message("earlier answer", user=User(id=4242, first_name="Bot", is_bot=True), message_id=9)
        message = telegram_message(
            "hey @strategy_bot",
            reply_to_message=bot_reply,
            entities=[MessageEntity(type="mention", offset=4, length=13)],
        )
        event = to_inbound(message)
        assert (event.chat_id, event.message_id, event.chat_type) == (-100, 10, "supergroup")
        assert (event.sender_id, event.sender_username, event.sender_first_name) == (101, "alice", "Alice")
        assert (event.reply_to_message_id, event.reply_to_user_id) == (9, 4242)
        assert [(entity.type, entity.offset, entity.length) for entity in event.entities] == [("mention", 4, 13)]
        assert event.media == ()


class TestHandleUpdate:
    @pytest.mark.asyncio
    async def test_human_messages_reach_the_assistant(self):
        assistant = SimpleNamespace(handle_message=AsyncMock())
        transport = TelegramTransport(assistant, "123456:TEST-TOKEN")
        await transport.handle_update(Update(update_id=1, message=telegram_message()), None)
        event = assistant.handle_message.await_args.args[0]
        assert event.text == "hey @strategy_bot"

    @pytest.mark.asyncio
    async def test_bot_senders_are_skipped(self):
        assistant = SimpleNamespace(handle_message=AsyncMock())
        transport = TelegramTransport(assistant, "123456:TEST-TOKEN")
        await transport.handle_update(Update(update_id=1, message=telegram_message(user=OTHER_BOT)), None)
        assistant.handle_message.assert_not_awaited()
