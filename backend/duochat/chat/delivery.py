"""Message router: accept, persist and deliver chat messages.

A message is persisted (which assigns its durable id) before anything is
delivered, and it is delivered to every session active on the room, the
sender's own session included. The sender's copy is what later lets a
``read_receipt`` be matched to the exact message it acknowledges.

Persistence and delivery for a room happen under the room's lock and
delivery only queues into per-session FIFO buffers, so every observer of a
room sees messages in acceptance (id) order and a slow recipient never
stalls the sender.
"""
import logging
from typing import Callable, Optional

from duochat.storage.schemas import Message
from duochat.storage.service import ChatStore

from .errors import NotActiveMember, ProtocolViolation
from .events import chat_event
from .membership import RoomMembershipRegistry
from .session import Session

logger = logging.getLogger(__name__)

# Default maximum message length (characters)
DEFAULT_MAX_CONTENT_LENGTH = 2000


class MessageRouter:
    """Accepts outbound chat messages and fans them out to a room."""

    def __init__(
        self,
        registry: RoomMembershipRegistry,
        store_provider: Callable[[], ChatStore] = ChatStore.get_instance,
        max_content_length: int = DEFAULT_MAX_CONTENT_LENGTH,
    ) -> None:
        self._registry = registry
        self._store_provider = store_provider
        self.max_content_length = max_content_length

    async def accept(
        self,
        session: Session,
        room_id: int,
        content: str,
        client_ref: Optional[str] = None,
    ) -> Message:
        """Persist a message from ``session`` and deliver it to the room.

        Args:
            session: The sending session.
            room_id: Target room; must be active for the session.
            content: Message text.
            client_ref: Optional client-side reference, echoed to the sender.

        Returns:
            The persisted message with its durable id.

        Raises:
            NotActiveMember: The session has not joined ``room_id``.
            ProtocolViolation: Empty or oversized content.
        """
        if not self._registry.is_active(session, room_id):
            raise NotActiveMember(
                f"Join room {room_id} before sending to it", client_ref=client_ref
            )
        if not content or not content.strip():
            raise ProtocolViolation("Message content is required", client_ref=client_ref)
        if len(content) > self.max_content_length:
            raise ProtocolViolation(
                f"Message content exceeds {self.max_content_length} characters",
                client_ref=client_ref,
            )

        async with self._registry.room_lock(room_id):
            if not self._registry.is_active(session, room_id):
                raise NotActiveMember(
                    f"Join room {room_id} before sending to it", client_ref=client_ref
                )

            message = self._store_provider().insert_message(
                room_id, session.participant_id, content
            )

            recipients = self._registry.sessions_in(room_id)
            for recipient in recipients:
                ref = client_ref if recipient is session else None
                recipient.send(chat_event(message, ref))

        logger.info(
            f"[Router] Message {message.id} from user {session.participant_id} "
            f"delivered to {len(recipients)} sessions in room {room_id}"
        )
        return message
