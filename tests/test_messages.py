from core.messages import (
    MessageKind,
    classify_kind,
    normalize_message,
    parse_command,
    sanitize_input,
)


class TestSanitize:
    def test_strips_angle_brackets_and_schemes(self):
        assert sanitize_input("  <b>hi</b> javascript:alert(1) DATA:x ") == "bhi/b alert(1) x"

    def test_removes_control_characters(self):
        assert sanitize_input("he\x00llo\x07 there\n") == "hello there"

    def test_none_becomes_empty(self):
        assert sanitize_input(None) == ""


class TestParseCommand:
    def test_plain_text_has_no_command(self):
        assert parse_command("hello there") is None

    def test_lowercases_name_and_splits_args(self):
        command = parse_command("/Search  Enterprise  pricing")
        assert command.name == "search"
        assert command.args == ["Enterprise", "pricing"]
        assert command.text == "Enterprise pricing"
        assert command.target is None

    def test_bot_suffix_is_split_off(self):
        command = parse_command("/start@Strategy_Bot")
        assert command.name == "start"
        assert command.target == "strategy_bot"

    def test_lone_slash_is_not_a_command(self):
        assert parse_command("/") is None
        assert parse_command("/@bot") is None


class TestClassify:
    def test_text_wins_when_present(self, make_event):
        assert classify_kind(make_event("look at this", media=("photo",))) is MessageKind.TEXT

    def test_media_order_decides(self, make_event):
        event = make_event(None, media=("voice", "document"))
        assert classify_kind(event) is MessageKind.DOCUMENT

    def test_blank_text_with_media_is_media(self, make_event):
        assert classify_kind(make_event("   ", media=("sticker",))) is MessageKind.STICKER

    def test_empty_text_field_is_text(self, make_event):
        assert classify_kind(make_event("")) is MessageKind.TEXT

    def test_nothing_is_other(self, make_event):
        assert classify_kind(make_event(None)) is MessageKind.OTHER


class TestNormalize:
    def test_text_message(self, make_event):
        processed = normalize_message(make_event("/capture big idea", sender_username="Alice"))
        assert processed.is_valid
        assert processed.command.name == "capture"
        assert processed.user_name == "Alice"
        assert processed.username == "alice"
        assert not processed.is_group_chat

    def test_sanitized_to_empty_is_invalid_text(self, make_event):
        processed = normalize_message(make_event("<>"))
        assert processed.kind is MessageKind.TEXT
        assert processed.text == ""
        assert not processed.is_valid

    def test_media_is_never_valid(self, make_event):
        processed = normalize_message(make_event(None, media=("photo",)))
        assert processed.kind is MessageKind.PHOTO
        assert not processed.is_valid
        assert processed.command is None

    def test_group_flag_and_name_fallbacks(self, make_event):
        for chat_type in ("group", "supergroup", "channel"):
            processed = normalize_message(make_event("hi", chat_type=chat_type))
            assert processed.is_group_chat
        anonymous = normalize_message(make_event("hi", sender_username=None, sender_first_name=None))
        assert anonymous.user_name == "User"
        first_name = normalize_message(make_event("hi", sender_username=None))
        assert first_name.user_name == "Alice"
