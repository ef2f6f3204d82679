"""Tests for inbound event decoding and outbound event shapes."""
import json

import pytest

from duochat.chat.errors import NotActiveMember, ProtocolViolation
from duochat.chat.events import (
    MAX_ENTITY_ID,
    JoinRoomEvent,
    QueryStatusEvent,
    ReadEvent,
    SendChatEvent,
    error_event,
    online_users_event,
    parse_inbound,
)

MAX_BYTES = 4096


def parse(payload):
    return parse_inbound(json.dumps(payload), max_bytes=MAX_BYTES)


class TestParseInbound:

    def test_each_inbound_type(self):
        assert isinstance(parse({"type": "join_room", "chat_room_id": 7}), JoinRoomEvent)
        assert isinstance(parse({"type": "read", "message_id": 101}), ReadEvent)
        assert isinstance(parse({"type": "query_status", "user_id": 3}), QueryStatusEvent)

        chat = parse({"type": "chat", "chat_room_id": 7, "content": "hi"})
        assert isinstance(chat, SendChatEvent)
        assert chat.client_ref is None

    def test_bytes_frame(self):
        event = parse_inbound(b'{"type": "leave_room", "chat_room_id": 2}', max_bytes=MAX_BYTES)
        assert event.chat_room_id == 2

    def test_unknown_type(self):
        with pytest.raises(ProtocolViolation) as exc_info:
            parse({"type": "typing"})
        assert exc_info.value.code == "UNKNOWN_TYPE"
        assert "typing" in exc_info.value.detail

    @pytest.mark.parametrize("raw", [
        "not json",
        "[]",
        '{"chat_room_id": 7}',
        '{"type": "join_room"}',
        '{"type": "read", "message_id": "abc"}',
    ])
    def test_malformed(self, raw):
        with pytest.raises(ProtocolViolation) as exc_info:
            parse_inbound(raw, max_bytes=MAX_BYTES)
        assert exc_info.value.code == "BAD_EVENT"

    def test_oversized_frame(self):
        raw = json.dumps({"type": "chat", "chat_room_id": 1, "content": "x" * 200})
        with pytest.raises(ProtocolViolation, match="exceeds"):
            parse_inbound(raw, max_bytes=64)

    def test_client_ref_length_limited(self):
        with pytest.raises(ProtocolViolation):
            parse({"type": "chat", "chat_room_id": 1, "content": "hi", "client_ref": "r" * 65})

    @pytest.mark.parametrize("payload", [
        {"type": "join_room", "chat_room_id": 0},
        {"type": "leave_room", "chat_room_id": -3},
        {"type": "chat", "chat_room_id": 2**63, "content": "hi"},
        {"type": "read", "message_id": 2**200},
        {"type": "query_status", "user_id": 2**64},
    ])
    def test_ids_outside_bigint_range(self, payload):
        with pytest.raises(ProtocolViolation) as exc_info:
            parse(payload)
        assert exc_info.value.code == "BAD_EVENT"

    def test_largest_id_accepted(self):
        assert parse({"type": "read", "message_id": MAX_ENTITY_ID}).message_id == MAX_ENTITY_ID


class TestOutbound:

    def test_online_users_sorted(self):
        assert online_users_event({5, 1, 3}) == {"type": "online_users_list", "user_ids": [1, 3, 5]}

    def test_error_event_carries_reference(self):
        event = error_event(NotActiveMember("Join first", client_ref="c1"), ref_type="chat")
        assert event == {
            "type": "error",
            "code": "NOT_ACTIVE_MEMBER",
            "error": "Join first",
            "ref_type": "chat",
            "client_ref": "c1",
        }

    def test_error_event_minimal(self):
        assert error_event(ProtocolViolation("bad")) == {
            "type": "error", "code": "BAD_EVENT", "error": "bad"
        }
