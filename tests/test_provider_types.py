"""Tests for the provider value objects."""

from bingbot.providers.base import ChatMessage, ConversationHandle, FragmentBuffer, Location


def test_handle_requires_all_three_fields():
    full = {"conversationId": "c", "clientId": "u", "conversationSignature": "s"}

    assert ConversationHandle.from_payload(full) == ConversationHandle("c", "u", "s")
    assert ConversationHandle.from_payload({**full, "conversationSignature": None}) is None
    assert ConversationHandle.from_payload({}) is None


def test_message_type_marks_status_fragments():
    searching = ChatMessage.from_dict({"messageId": "1", "messageType": "InternalSearchQuery", "text": "x"})
    answer = ChatMessage.from_dict({"messageId": "2", "author": "bot", "text": "y"})

    assert searching.is_status is True
    assert answer.is_status is False
    assert answer.detail["messageId"] == "2"


def test_buffer_replaces_in_place_and_appends_new_ids():
    buffer = FragmentBuffer()
    buffer.merge(ChatMessage("a", "bot", "1"))
    buffer.merge(ChatMessage("b", "bot", "2"))
    buffer.merge(ChatMessage("a", "bot", "3"))
    buffer.merge(ChatMessage(None, "bot", "4"))
    buffer.merge(ChatMessage(None, "bot", "5"))

    assert [(m.message_id, m.text) for m in buffer.snapshot()] == [
        ("a", "3"),
        ("b", "2"),
        (None, "4"),
        (None, "5"),
    ]
    assert len(buffer) == 4


def test_snapshot_is_a_copy():
    buffer = FragmentBuffer()
    buffer.merge(ChatMessage("a", "bot", "1"))

    snapshot = buffer.snapshot()
    buffer.merge(ChatMessage("b", "bot", "2"))

    assert len(snapshot) == 1


def test_location_wire_format():
    assert Location(47.639557, -122.128159).to_wire() == "lat:47.639557;long:-122.128159;re=1000m;"
    assert Location(1.0, 2.0, "5km").to_wire() == "lat:1.0;long:2.0;re=5km;"
