"""Client-side conversation state.

Tracks what a connected participant sees: who is online, which rooms are
joined and each room's timeline. Outgoing messages start PENDING under a
client-generated reference and move to CONFIRMED when the server's ``chat``
echo carrying the same reference arrives, or to FAILED when an ``error``
for that reference does. A confirmed message carries its server id, which is
what read receipts refer to.
"""
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set

logger = logging.getLogger(__name__)


class MessageState(str, Enum):
    """Delivery state of a message in the local timeline.

    Attributes:
        PENDING: Sent, not yet echoed by the server.
        CONFIRMED: Persisted by the server (has an id).
        FAILED: Rejected by the server.
    """
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass
class LocalMessage:
    chat_room_id: int
    content: str
    sender_id: Optional[int] = None
    client_ref: Optional[str] = None
    message_id: Optional[int] = None
    state: MessageState = MessageState.PENDING
    is_read: bool = False
    error: Optional[str] = None
    created_at: float = field(default_factory=time.time)


class ConversationState:
    """Applies server events to the local view of all conversations."""

    def __init__(self) -> None:
        self.online: Set[int] = set()
        self.joined: Set[int] = set()
        self.errors: List[dict] = []

        # room_id -> timeline in arrival order
        self._timelines: Dict[int, List[LocalMessage]] = {}

        # client_ref -> message awaiting its echo
        self._pending: Dict[str, LocalMessage] = {}

        # server id -> message
        self._by_id: Dict[int, LocalMessage] = {}

    def add_pending(self, room_id: int, content: str) -> LocalMessage:
        """Record an outgoing message before it is sent."""
        message = LocalMessage(
            chat_room_id=room_id,
            content=content,
            client_ref=uuid.uuid4().hex,
        )
        self._pending[message.client_ref] = message
        self._timelines.setdefault(room_id, []).append(message)
        return message

    def timeline(self, room_id: int) -> List[LocalMessage]:
        return list(self._timelines.get(room_id, ()))

    def pending(self) -> List[LocalMessage]:
        return list(self._pending.values())

    def get(self, message_id: int) -> Optional[LocalMessage]:
        return self._by_id.get(message_id)

    def apply(self, event: dict) -> None:
        """Fold one server event into the state. Unknown types are ignored."""
        event_type = event.get("type")

        if event_type == "chat":
            self._apply_chat(event)
        elif event_type == "read_receipt":
            message = self._by_id.get(event["message_id"])
            if message is not None:
                message.is_read = True
        elif event_type == "user_status":
            if event["is_online"]:
                self.online.add(event["user_id"])
            else:
                self.online.discard(event["user_id"])
        elif event_type == "online_users_list":
            self.online = set(event["user_ids"])
        elif event_type == "room_joined":
            self.joined.add(event["chat_room_id"])
        elif event_type == "room_left":
            self.joined.discard(event["chat_room_id"])
        elif event_type == "error":
            self._apply_error(event)
        else:
            logger.debug("Ignoring event type %s", event_type)

    def _apply_chat(self, event: dict) -> None:
        data = event["message"]
        message_id = data["id"]
        if message_id in self._by_id:
            return

        message = self._pending.pop(event.get("client_ref") or "", None)
        if message is None:
            message = LocalMessage(
                chat_room_id=data["chat_room_id"],
                content=data["content"],
            )
            self._timelines.setdefault(message.chat_room_id, []).append(message)

        message.message_id = message_id
        message.sender_id = data["sender_id"]
        message.is_read = data.get("is_read", False)
        message.state = MessageState.CONFIRMED
        self._by_id[message_id] = message

    def _apply_error(self, event: dict) -> None:
        self.errors.append(event)
        message = self._pending.pop(event.get("client_ref") or "", None)
        if message is not None:
            message.state = MessageState.FAILED
            message.error = event.get("error")
            logger.info(f"Message {message.client_ref} failed: {message.error}")
