import asyncio
import logging
from typing import Optional

from telegram import LinkPreviewOptions, Message, Update
from telegram.constants import ChatAction
from telegram.ext import Application, ContextTypes, MessageHandler, filters

from core.addressing import BotIdentity
from core.messages import MEDIA_KINDS, InboundMessage, MessageEntity

log = logging.getLogger(__name__)

# new messages and channel posts; edited updates are not handled
INBOUND_FILTER = filters.UpdateType.MESSAGES


def to_inbound(message: Message) -> InboundMessage:
    """Flatten a Telegram message into the platform-neutral record."""
    user = message.from_user
    reply = message.reply_to_message
    entities = [
        MessageEntity(
            type=str(entity.type),
            offset=entity.offset,
            length=entity.length,
            user_id=entity.user.id if entity.user else None,
        )
        for entity in (message.entities or ())
    ]
    media = tuple(kind for kind in MEDIA_KINDS if getattr(message, kind, None))
    return InboundMessage(
        chat_id=message.chat_id,
        message_id=message.message_id,
        chat_type=str(message.chat.type),
        text=message.text,
        sender_id=user.id if user else None,
        sender_username=user.username if user else None,
        sender_first_name=user.first_name if user else None,
        reply_to_message_id=reply.message_id if reply else None,
        reply_to_user_id=reply.from_user.id if reply and reply.from_user else None,
        entities=entities,
        media=media,
    )


class TelegramTransport:
    def __init__(self, assistant, token: str):
        self.assistant = assistant
        self.application = Application.builder().token(token).concurrent_updates(True).build()
        self.application.add_handler(MessageHandler(INBOUND_FILTER, self.handle_update))
        self._stop_event = asyncio.Event()

    async def handle_update(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        message = update.effective_message
        if message is None or update.effective_chat is None:
            return
        if message.from_user and message.from_user.is_bot:
            return
        await self.assistant.handle_message(to_inbound(message))

    async def send_text(self, chat_id: int, text: str) -> Optional[int]:
        sent = await self.application.bot.send_message(
            chat_id=chat_id,
            text=text,
            link_preview_options=LinkPreviewOptions(is_disabled=True),
        )
        return sent.message_id

    async def send_typing(self, chat_id: int) -> None:
        await self.application.bot.send_chat_action(chat_id=chat_id, action=ChatAction.TYPING)

    async def start(self):
        await self.application.initialize()
        me = await self.application.bot.get_me()
        self.assistant.set_identity(BotIdentity(username=me.username or "", user_id=me.id))
        self.assistant.dispatcher.attach(self)
        await self.application.start()
        await self.application.updater.start_polling()
        log.info("telegram polling started as @%s", me.username)
        try:
            await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.application.updater.stop()
            await self.application.stop()
            await self.application.shutdown()

    async def stop(self):
        self._stop_event.set()
