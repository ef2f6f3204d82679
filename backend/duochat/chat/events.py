"""Wire events exchanged over the chat WebSocket.

Every frame is a JSON object whose ``type`` field selects the event.
Inbound frames are decoded through a discriminated pydantic union; outbound
frames are plain dicts built by the helpers at the bottom of this module.

Inbound (client -> server):
    - join_room:    {chat_room_id}
    - leave_room:   {chat_room_id}
    - chat:         {chat_room_id, content, client_ref?}
    - read:         {message_id}
    - query_status: {user_id}

Outbound (server -> client):
    - chat, read_receipt, user_status, online_users_list,
      room_joined, room_left, error
"""
from typing import Annotated, Iterable, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from duochat.storage.schemas import Message

from .errors import ChatError, ProtocolViolation

# Maximum length of the client-generated reference echoed on chat events
MAX_CLIENT_REF_LENGTH = 64

# Ids are stored as BIGINT
MAX_ENTITY_ID = 2**63 - 1

EntityId = Annotated[int, Field(gt=0, le=MAX_ENTITY_ID)]


# =============================================================================
# Inbound events
# =============================================================================


class JoinRoomEvent(BaseModel):
    """Activate membership of a room (the room is now being viewed)."""
    type: Literal["join_room"]
    chat_room_id: EntityId


class LeaveRoomEvent(BaseModel):
    """Deactivate membership of a room."""
    type: Literal["leave_room"]
    chat_room_id: EntityId


class SendChatEvent(BaseModel):
    """Send a chat message to a joined room.

    Attributes:
        client_ref: Opaque id chosen by the client for its pending copy of
            the message; echoed back on the delivered ``chat`` event and on
            any ``error`` caused by this send.
    """
    type: Literal["chat"]
    chat_room_id: EntityId
    content: str
    client_ref: Optional[str] = Field(default=None, max_length=MAX_CLIENT_REF_LENGTH)


class ReadEvent(BaseModel):
    """Acknowledge that a message has been read."""
    type: Literal["read"]
    message_id: EntityId


class QueryStatusEvent(BaseModel):
    """Ask for a participant's presence and subscribe to its changes."""
    type: Literal["query_status"]
    user_id: EntityId


InboundEvent = Annotated[
    Union[JoinRoomEvent, LeaveRoomEvent, SendChatEvent, ReadEvent, QueryStatusEvent],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter = TypeAdapter(InboundEvent)


def parse_inbound(raw: Union[str, bytes], *, max_bytes: int) -> InboundEvent:
    """Decode one inbound frame.

    Raises:
        ProtocolViolation: Frame too large, not JSON, missing/unknown type or
            fields of the wrong shape.
    """
    size = len(raw) if isinstance(raw, bytes) else len(raw.encode("utf-8"))
    if size > max_bytes:
        raise ProtocolViolation(f"Event exceeds {max_bytes} bytes")

    try:
        return _inbound_adapter.validate_json(raw)
    except ValidationError as exc:
        errors = exc.errors()
        for err in errors:
            if err["type"] == "union_tag_invalid":
                tag = err.get("ctx", {}).get("tag", "?")
                raise ProtocolViolation(
                    f"Unknown event type: {tag}", code="UNKNOWN_TYPE"
                ) from None
        first = errors[0] if errors else {"msg": "invalid event"}
        location = ".".join(str(part) for part in first.get("loc", ()))
        detail = f"{location}: {first['msg']}" if location else first["msg"]
        raise ProtocolViolation(f"Malformed event ({detail})") from None


# =============================================================================
# Outbound events
# =============================================================================


def chat_event(message: Message, client_ref: Optional[str] = None) -> dict:
    event = {
        "type": "chat",
        "chat_room_id": message.chat_room_id,
        "message": message.model_dump(mode="json"),
    }
    if client_ref is not None:
        event["client_ref"] = client_ref
    return event


def read_receipt_event(message: Message, read_by: int) -> dict:
    return {
        "type": "read_receipt",
        "message_id": message.id,
        "chat_room_id": message.chat_room_id,
        "read_by": read_by,
    }


def user_status_event(user_id: int, is_online: bool) -> dict:
    return {"type": "user_status", "user_id": user_id, "is_online": is_online}


def online_users_event(user_ids: Iterable[int]) -> dict:
    return {"type": "online_users_list", "user_ids": sorted(user_ids)}


def room_joined_event(room_id: int) -> dict:
    return {"type": "room_joined", "chat_room_id": room_id}


def room_left_event(room_id: int) -> dict:
    return {"type": "room_left", "chat_room_id": room_id}


def error_event(error: ChatError, ref_type: Optional[str] = None) -> dict:
    event = {"type": "error", "code": error.code, "error": error.detail}
    if ref_type is not None:
        event["ref_type"] = ref_type
    if error.client_ref is not None:
        event["client_ref"] = error.client_ref
    return event
