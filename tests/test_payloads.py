import pytest

from slack_archive.slack.payloads import (
    BotMessage,
    FileShareMessage,
    PayloadError,
    SystemEvent,
    ThreadBroadcast,
    UnrecognizedMessage,
    UserMessage,
    classify_message,
    parse_message,
    parse_user,
)


@pytest.mark.parametrize("payload, variant", [
    ({"type": "message", "user": "U1", "ts": "1.0"}, UserMessage),
    ({"type": "message", "subtype": "bot_message", "bot_id": "B1", "ts": "1.0"}, BotMessage),
    ({"type": "message", "bot_id": "B1", "ts": "1.0"}, BotMessage),
    ({"type": "message", "subtype": "file_share", "user": "U1", "ts": "1.0"}, FileShareMessage),
    ({"type": "message", "subtype": "thread_broadcast", "user": "U1", "ts": "1.0"}, ThreadBroadcast),
    ({"type": "message", "subtype": "channel_join", "user": "U1", "ts": "1.0"}, SystemEvent),
    ({"type": "message", "subtype": "channel_purpose", "ts": "1.0"}, SystemEvent),
    ({"type": "reaction_added", "ts": "1.0"}, SystemEvent),
    ({"type": "message", "subtype": "huddle_thread", "user": "U1", "ts": "1.0"}, UnrecognizedMessage),
])
def test_classifies_variants(payload, variant):
    message = parse_message(payload)

    assert type(message) is variant
    assert classify_message(payload) == variant.kind


def test_only_system_events_are_excluded():
    assert SystemEvent.is_content is False
    assert all(variant.is_content for variant in (UserMessage, BotMessage, UnrecognizedMessage))


def test_unknown_fields_are_kept():
    message = parse_message({"ts": "1.0", "user": "U1", "client_msg_id": "abc"})

    assert message.model_extra["client_msg_id"] == "abc"


def test_numeric_ts_is_coerced():
    message = parse_message({"ts": 1609459200.5, "thread_ts": 1609459200.5, "user": "U1"})

    assert message.ts == "1609459200.5"
    assert message.thread_ts == "1609459200.5"


def test_author_falls_back_to_bot_id():
    assert parse_message({"ts": "1.0", "user": "U1", "bot_id": "B1"}).author_id == "U1"
    assert parse_message({"ts": "1.0", "bot_id": "B1"}).author_id == "B1"
    assert parse_message({"ts": "1.0"}).author_id is None


@pytest.mark.parametrize("payload, expected", [
    ({"ts": "1.0", "thread_ts": "1.0", "subtype": "tombstone"}, True),
    ({"ts": "1.0", "reply_count": 3, "user": "U1"}, True),
    ({"ts": "2.0", "thread_ts": "1.0", "user": "U1"}, False),
    ({"ts": "1.0", "user": "U1"}, False),
])
def test_starts_thread(payload, expected):
    assert parse_message(payload).starts_thread is expected


@pytest.mark.parametrize("payload", [
    {"type": "message", "user": "U1"},
    {"type": "message", "ts": "1.0", "reactions": [{"count": 1}]},
    ["not", "a", "message"],
])
def test_invalid_messages(payload):
    with pytest.raises(PayloadError):
        parse_message(payload)


def test_parse_user_defaults():
    user = parse_user({"id": "U1"})

    assert user.is_bot is False
    assert user.is_admin is None
    assert user.profile.display_name is None


def test_parse_user_requires_id():
    with pytest.raises(PayloadError):
        parse_user({"name": "nobody"})
