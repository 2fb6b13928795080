"""Platform-neutral inbound message records and their normalisation."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

GROUP_CHAT_TYPES = {"group", "supergroup", "channel"}

# Order matters: the first present payload decides the kind for non-text messages.
MEDIA_KINDS = ("photo", "document", "sticker", "voice", "video", "audio", "location", "contact")

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_UNSAFE_SCHEMES = re.compile(r"(javascript|data):", re.IGNORECASE)


class MessageKind(str, Enum):
    TEXT = "text"
    PHOTO = "photo"
    DOCUMENT = "document"
    STICKER = "sticker"
    VOICE = "voice"
    VIDEO = "video"
    AUDIO = "audio"
    LOCATION = "location"
    CONTACT = "contact"
    OTHER = "other"


@dataclass
class MessageEntity:
    type: str
    offset: int
    length: int
    user_id: Optional[int] = None


@dataclass
class InboundMessage:
    """A raw chat event as delivered by a transport."""

    chat_id: int
    message_id: int
    chat_type: str = "private"
    text: Optional[str] = None
    sender_id: Optional[int] = None
    sender_username: Optional[str] = None
    sender_first_name: Optional[str] = None
    reply_to_message_id: Optional[int] = None
    reply_to_user_id: Optional[int] = None
    entities: List[MessageEntity] = field(default_factory=list)
    media: Tuple[str, ...] = ()


@dataclass
class Command:
    name: str
    args: List[str] = field(default_factory=list)
    target: Optional[str] = None

    @property
    def text(self) -> str:
        return " ".join(self.args)


@dataclass
class ProcessedMessage:
    chat_id: int
    message_id: int
    text: str
    command: Optional[Command]
    is_valid: bool
    kind: MessageKind
    is_group_chat: bool
    user_id: Optional[int]
    user_name: str
    username: Optional[str]
    chat_type: str
    is_reply_to_bot: bool = False
    mentions_bot: bool = False


def sanitize_input(text: str) -> str:
    cleaned = _CONTROL_CHARS.sub("", text or "")
    cleaned = cleaned.replace("<", "").replace(">", "")
    cleaned = _UNSAFE_SCHEMES.sub("", cleaned)
    return cleaned.strip()


def parse_command(text: str) -> Optional[Command]:
    trimmed = (text or "").strip()
    if not trimmed.startswith("/"):
        return None
    parts = trimmed[1:].split()
    if not parts:
        return None
    name, _, target = parts[0].partition("@")
    if not name:
        return None
    return Command(name=name.lower(), args=parts[1:], target=target.lower() or None)


def classify_kind(event: InboundMessage) -> MessageKind:
    if event.text is not None and event.text.strip():
        return MessageKind.TEXT
    present = set(event.media)
    for kind in MEDIA_KINDS:
        if kind in present:
            return MessageKind(kind)
    if event.text is not None:
        return MessageKind.TEXT
    return MessageKind.OTHER


def normalize_message(event: InboundMessage) -> ProcessedMessage:
    kind = classify_kind(event)
    text = sanitize_input(event.text or "") if kind is MessageKind.TEXT else ""
    command = parse_command(text) if text else None
    return ProcessedMessage(
        chat_id=event.chat_id,
        message_id=event.message_id,
        text=text,
        command=command,
        is_valid=kind is MessageKind.TEXT and bool(text),
        kind=kind,
        is_group_chat=event.chat_type in GROUP_CHAT_TYPES,
        user_id=event.sender_id,
        user_name=event.sender_username or event.sender_first_name or "User",
        username=event.sender_username.lower() if event.sender_username else None,
        chat_type=event.chat_type,
    )
