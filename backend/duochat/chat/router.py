"""Chat router providing WebSocket and HTTP endpoints.

This module provides:
    - WebSocket /ws?token=...:                 Real-time chat session
    - POST /chat/private:                      Start (or reopen) a private chat
    - GET  /chat/rooms:                        Conversation list
    - GET  /chat/rooms/{room_id}/messages:     Paginated message history
    - GET  /chat/rooms/{room_id}/status:       Who is online / viewing a room

The WebSocket protocol supports:
    - Presence snapshot on connect (``online_users_list``)
    - Room join/leave (view state)
    - Chat messages delivered to both members, sender included
    - Read receipts matched by message id
    - Status queries with live ``user_status`` updates
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from duochat.auth.dependencies import current_participant
from duochat.auth.service import TokenService
from duochat.storage.schemas import Room
from duochat.storage.service import ChatStore

from .errors import AuthInvalid
from .events import MAX_ENTITY_ID
from .manager import CLOSE_AUTH_FAILED, CLOSE_NORMAL, CLOSE_TRANSPORT_FAILURE, manager

logger = logging.getLogger(__name__)

router = APIRouter()

# Default page size for message history pagination
DEFAULT_PAGE_SIZE = 50

# Maximum page size to prevent abuse
MAX_PAGE_SIZE = 100


@router.websocket("/ws")
async def websocket_chat_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None, description="Access token"),
) -> None:
    """WebSocket endpoint for one participant's chat session.

    Protocol Flow:
        1. Client connects with ``?token=`` -> server validates it. A bad token
           closes the socket with code 4401 before it is accepted.
        2. Server sends: {type: "online_users_list", user_ids: [...]}
        3. Client sends: {type: "join_room", chat_room_id}
           -> Server sends: {type: "room_joined", chat_room_id}
        4. Client sends: {type: "chat", chat_room_id, content, client_ref?}
           -> Server sends to both members: {type: "chat", chat_room_id, message}
        5. Client sends: {type: "read", message_id}
           -> Server sends to sender: {type: "read_receipt", message_id, ...}
        6. On disconnect -> interested sessions get {type: "user_status", ...}
    """
    try:
        participant_id = TokenService.from_config().verify(token)
    except AuthInvalid as exc:
        logger.warning(f"[WS] Handshake rejected: {exc.detail}")
        await websocket.close(code=CLOSE_AUTH_FAILED, reason=exc.detail)
        return

    await websocket.accept()
    session = await manager.connect(websocket, participant_id)
    logger.info(f"[WS] Connection accepted for user {participant_id}")

    peer_gone = False
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            await manager.dispatch(session, raw)
    except WebSocketDisconnect as exc:
        peer_gone = True
        logger.info(f"[WS] User {participant_id} disconnected (code={exc.code})")
    except RuntimeError:
        # Raised by receive() once the server side has already closed the socket
        if not session.is_closed:
            raise
    finally:
        await manager.disconnect(
            session,
            code=CLOSE_NORMAL if peer_gone else CLOSE_TRANSPORT_FAILURE,
            reason="" if peer_gone else "Connection error",
            close_connection=not peer_gone,
        )


# =============================================================================
# HTTP endpoints
# =============================================================================


class InitPrivateChatRequest(BaseModel):
    """Request body for starting a private chat."""
    target_user_id: int = Field(gt=0, le=MAX_ENTITY_ID)


def _member_room(room_id: int, participant_id: int) -> Room:
    room = ChatStore.get_instance().get_room(room_id)
    if room is None:
        raise HTTPException(status_code=404, detail="Room not found")
    if not room.has_member(participant_id):
        raise HTTPException(status_code=403, detail="Not a member of this room")
    return room


@router.post("/chat/private")
async def init_private_chat(
    request: InitPrivateChatRequest,
    participant_id: int = Depends(current_participant),
) -> JSONResponse:
    """Return the private room shared with ``target_user_id``, creating it if needed.

    Returns:
        201 with {room_id, created: true} for a new room, otherwise 200.
    """
    store = ChatStore.get_instance()
    if request.target_user_id == participant_id:
        raise HTTPException(status_code=400, detail="Cannot chat with yourself")
    if store.get_participant(request.target_user_id) is None:
        raise HTTPException(status_code=404, detail="Target user not found")

    room, created = store.get_or_create_private_room(participant_id, request.target_user_id)
    return JSONResponse(
        status_code=201 if created else 200,
        content={"room_id": room.id, "created": created},
    )


@router.get("/chat/rooms")
async def list_rooms(participant_id: int = Depends(current_participant)) -> dict:
    """List the caller's conversations, most recent first."""
    summaries = ChatStore.get_instance().list_rooms(participant_id)
    return {"data": [s.model_dump(mode="json") for s in summaries]}


@router.get("/chat/rooms/{room_id}/messages")
async def get_room_messages(
    room_id: int = Path(..., gt=0, le=MAX_ENTITY_ID),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE, description="Page size"),
    before_id: Optional[int] = Query(
        None, gt=0, le=MAX_ENTITY_ID, description="Only messages older than this id"
    ),
    participant_id: int = Depends(current_participant),
) -> dict:
    """Paginated message history, oldest first within the page.

    Example:
        GET /chat/rooms/7/messages?limit=20&before_id=120
    """
    _member_room(room_id, participant_id)
    # Fetch one extra to learn whether an older page exists
    messages = ChatStore.get_instance().list_messages(room_id, limit + 1, before_id)
    has_more = len(messages) > limit
    if has_more:
        messages = messages[1:]
    return {
        "messages": [m.model_dump(mode="json") for m in messages],
        "has_more": has_more,
    }


@router.get("/chat/rooms/{room_id}/status")
async def get_room_status(
    room_id: int = Path(..., gt=0, le=MAX_ENTITY_ID),
    participant_id: int = Depends(current_participant),
) -> dict:
    """Online and in-room state of both members of a room."""
    room = _member_room(room_id, participant_id)
    viewing = manager.registry.participants_in(room_id)
    return {
        "room_id": room.id,
        "statuses": [
            {
                "user_id": member,
                "is_online": manager.presence.is_online(member),
                "in_room": member in viewing,
            }
            for member in room.members
        ],
    }
