"""Decide whether a group message is aimed at the bot."""

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .messages import InboundMessage

MIN_VARIANT_LENGTH = 3
GENERIC_ADDRESS_WORDS = ("bot", "ai", "assistant")

_GREETING = re.compile(r"^\s*(?:hey|hi|hello|yo|sup|what'?s up|how are you)\b", re.IGNORECASE)
_GENERIC_ADDRESS = re.compile(r"\b(?:bot|ai|assistant)\b", re.IGNORECASE)


@dataclass
class BotIdentity:
    username: str
    user_id: Optional[int] = None

    def __post_init__(self) -> None:
        self.username = self.username.lstrip("@").lower()


@dataclass
class AddressingVerdict:
    reply_to_bot: bool = False
    mention: bool = False
    username_variant: bool = False
    direct_address: bool = False

    @property
    def addressed(self) -> bool:
        return self.reply_to_bot or self.mention or self.username_variant or self.direct_address


def username_variants(username: str) -> List[str]:
    """Spellings of the bot username people use without the @ handle.

    Generic addressing words are dropped from the segment list, otherwise
    any message containing "bot" would summon a ``*_bot`` account.
    """
    base = username.lstrip("@").lower()
    if not base:
        return []
    stripped = base.replace("_", "")
    unsuffixed = base[: -len("_bot")] if base.endswith("_bot") else base
    stripped_unsuffixed = stripped[: -len("bot")] if stripped.endswith("bot") else stripped
    candidates = [base, stripped, unsuffixed, stripped_unsuffixed]
    candidates.extend(segment for segment in base.split("_") if segment not in GENERIC_ADDRESS_WORDS)
    variants: List[str] = []
    for candidate in candidates:
        if len(candidate) >= MIN_VARIANT_LENGTH and candidate not in variants:
            variants.append(candidate)
    return variants


def is_reply_to_bot(event: InboundMessage, bot: BotIdentity, bot_message_ids: Iterable[int]) -> bool:
    if event.reply_to_message_id is None:
        return False
    if event.reply_to_message_id in set(bot_message_ids):
        return True
    return bot.user_id is not None and event.reply_to_user_id == bot.user_id


def mentions_username(event: InboundMessage, bot: BotIdentity) -> bool:
    text = event.text or ""
    handle = f"@{bot.username}"
    if handle in text.lower():
        return True
    # "mention" entities are spans of the text, so only text_mention needs the entity list
    for entity in event.entities:
        if entity.type == "text_mention" and bot.user_id is not None and entity.user_id == bot.user_id:
            return True
    return False


def matches_username_variant(text: str, bot: BotIdentity) -> bool:
    lowered = (text or "").lower()
    return any(variant in lowered for variant in username_variants(bot.username))


def is_direct_address(text: str, bot: BotIdentity) -> bool:
    if not _GREETING.match(text or ""):
        return False
    if _GENERIC_ADDRESS.search(text):
        return True
    return matches_username_variant(text, bot)


def evaluate_addressing(
    event: InboundMessage, bot: BotIdentity, bot_message_ids: Iterable[int] = ()
) -> AddressingVerdict:
    text = event.text or ""
    return AddressingVerdict(
        reply_to_bot=is_reply_to_bot(event, bot, bot_message_ids),
        mention=mentions_username(event, bot),
        username_variant=matches_username_variant(text, bot),
        direct_address=is_direct_address(text, bot),
    )

