"""Read receipt correlation.

A reader acknowledges a message by its durable id. Because every message was
echoed to its sender with that same id, the ``read_receipt`` sent back can be
matched to the exact message on the sender's side.

Offline or elsewhere-viewing senders:
    A receipt is only delivered to a sender session that is active on the
    message's room. Otherwise it stays pending in storage and is delivered the
    next time the sender joins that room. Storage hands each receipt out at
    most once (``claim_receipt``), so a receipt is never duplicated.
"""
import logging
from typing import Callable

from duochat.storage.schemas import Message
from duochat.storage.service import ChatStore

from .errors import NotAMember, UnknownMessage
from .events import read_receipt_event
from .locks import KeyedLocks
from .membership import RoomMembershipRegistry
from .presence import PresenceTracker
from .session import Session

logger = logging.getLogger(__name__)


class ReceiptCorrelator:
    """Marks messages read and routes receipts to their senders."""

    def __init__(
        self,
        registry: RoomMembershipRegistry,
        presence: PresenceTracker,
        store_provider: Callable[[], ChatStore] = ChatStore.get_instance,
    ) -> None:
        self._registry = registry
        self._presence = presence
        self._store_provider = store_provider
        self._locks = KeyedLocks()

    async def mark_read(self, session: Session, message_id: int) -> bool:
        """Mark ``message_id`` read on behalf of ``session``'s participant.

        Returns:
            True if the message changed from unread to read. False for the
            sender's own message and for messages already read.

        Raises:
            UnknownMessage: No such message.
            NotAMember: The reader does not belong to the message's room.
        """
        store = self._store_provider()
        message = store.get_message(message_id)
        if message is None:
            raise UnknownMessage(f"Message {message_id} not found")

        reader_id = session.participant_id
        if message.sender_id == reader_id:
            logger.debug(f"[Receipts] User {reader_id} ignored: own message {message_id}")
            return False

        room = self._registry.get_room(message.chat_room_id)
        if room is None or not room.has_member(reader_id):
            raise NotAMember(
                f"Participant {reader_id} is not a member of room {message.chat_room_id}"
            )

        async with self._locks.lock(message_id):
            changed = store.mark_read(message_id)
        if not changed:
            return False

        delivered = await self._deliver(message, reader_id)
        logger.info(
            f"[Receipts] Message {message_id} read by user {reader_id} "
            f"({'delivered' if delivered else 'pending'})"
        )
        return True

    async def flush_pending(self, session: Session, room_id: int) -> int:
        """Deliver receipts that accumulated while the sender was away.

        Called right after ``session`` joins ``room_id``.

        Returns:
            Number of receipts sent.
        """
        room = self._registry.get_room(room_id)
        if room is None:
            return 0
        reader_id = room.other_member(session.participant_id)
        store = self._store_provider()

        sent = 0
        async with self._registry.room_lock(room_id):
            for message in store.pending_receipts(session.participant_id, room_id):
                if not self._registry.is_active(session, room_id):
                    break
                if store.claim_receipt(message.id):
                    session.send(read_receipt_event(message, reader_id))
                    sent += 1
        if sent:
            logger.info(
                f"[Receipts] Flushed {sent} pending receipts to user "
                f"{session.participant_id} in room {room_id}"
            )
        return sent

    async def _deliver(self, message: Message, reader_id: int) -> bool:
        async with self._registry.room_lock(message.chat_room_id):
            sender_session = self._presence.session_for(message.sender_id)
            if sender_session is None or not self._registry.is_active(
                sender_session, message.chat_room_id
            ):
                return False
            if not self._store_provider().claim_receipt(message.id):
                return False
            return sender_session.send(read_receipt_event(message, reader_id))
