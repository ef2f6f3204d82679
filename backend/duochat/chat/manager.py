"""WebSocket connection manager for one-to-one chat.

This module wires the chat components together behind one process-wide
instance shared by every WebSocket handler:

    - Session:                 per-connection outbound buffer and lifecycle
    - RoomMembershipRegistry:  which sessions are viewing which rooms
    - PresenceTracker:         online/offline state and status fan-out
    - MessageRouter:           persist-then-deliver, self-delivery included
    - ReceiptCorrelator:       read marking and receipt routing

Connection lifecycle:
    1. Handler validates the token and accepts the socket.
    2. ``connect()`` creates the Session, supersedes any older session of the
       same participant, announces presence and queues the online snapshot.
    3. ``dispatch()`` handles one inbound frame at a time.
    4. ``disconnect()`` closes the session, drops its memberships and, if it
       was still the participant's live session, announces it offline.

Thread Safety:
    Designed for a single event loop. Per-room, per-participant and
    per-message locks order concurrent coroutines; nothing here is safe to
    call from other threads.
"""
import asyncio
import logging
from typing import Callable, Optional, Set

from duochat.config import SessionSettings, get_config
from duochat.storage.service import ChatStore

from .delivery import MessageRouter
from .errors import ChatError, ProtocolViolation, TransportFailure
from .events import (
    InboundEvent,
    error_event,
    parse_inbound,
    room_joined_event,
    room_left_event,
)
from .membership import RoomMembershipRegistry
from .presence import PresenceTracker
from .receipts import ReceiptCorrelator
from .session import Connection, Session

logger = logging.getLogger(__name__)

# =============================================================================
# Close codes
# =============================================================================

# Normal closure
CLOSE_NORMAL = 1000

# Unexpected server-side condition (write failure, slow consumer)
CLOSE_TRANSPORT_FAILURE = 1011

# Handshake token missing, invalid or expired
CLOSE_AUTH_FAILED = 4401

# A newer connection of the same participant replaced this one
CLOSE_SUPERSEDED = 4409


class ConnectionManager:
    """Owns every live session and routes inbound events to the components.

    Note:
        This is a singleton-style global instance (``manager`` below). Tests
        call ``reset()`` between cases.
    """

    def __init__(
        self,
        store_provider: Callable[[], ChatStore] = ChatStore.get_instance,
        settings: Optional[SessionSettings] = None,
    ) -> None:
        self._settings = settings
        self.registry = RoomMembershipRegistry(store_provider)
        self.presence = PresenceTracker(self.registry)
        self.router = MessageRouter(self.registry, store_provider)
        self.receipts = ReceiptCorrelator(self.registry, self.presence, store_provider)

        # Teardowns scheduled from transport failures (kept so they are not GC'd)
        self._teardowns: Set[asyncio.Task] = set()

    @property
    def settings(self) -> SessionSettings:
        return self._settings or get_config().session

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(self, connection: Connection, participant_id: int) -> Session:
        """Bind an accepted connection to ``participant_id``.

        Returns:
            The new session, already READY.
        """
        settings = self.settings
        self.router.max_content_length = settings.max_content_length

        session = Session(
            connection,
            participant_id,
            buffer_size=settings.send_buffer_size,
            on_failure=self._on_transport_failure,
        )
        session.start()

        previous = await self.presence.connect(session)
        if previous is not None and previous is not session:
            logger.info(
                f"[Manager] {session!r} supersedes {previous!r} of user {participant_id}"
            )
            await self.disconnect(
                previous,
                code=CLOSE_SUPERSEDED,
                reason="Superseded by a newer connection",
            )

        session.mark_ready()
        logger.info(f"[Manager] {session!r} ready")
        return session

    async def disconnect(
        self,
        session: Session,
        *,
        code: int = CLOSE_NORMAL,
        reason: str = "",
        close_connection: bool = True,
    ) -> None:
        """Tear a session down. Safe to call more than once."""
        if session.is_closed:
            return

        dropped = await session.close(code, reason, close_connection=close_connection)
        released = await self.registry.release_all(session)
        went_offline = await self.presence.disconnect(session)

        logger.info(
            f"[Manager] {session!r} disconnected (code={code}, rooms={released}, "
            f"dropped={dropped}, offline={went_offline})"
        )

    async def shutdown(self) -> None:
        """Close every live session (application shutdown)."""
        for session in self.presence.live_sessions():
            await self.disconnect(session, code=1001, reason="Server shutting down")
        if self._teardowns:
            await asyncio.gather(*self._teardowns, return_exceptions=True)

    def reset(self) -> None:
        """Forget all state without touching connections (used by tests)."""
        self.registry.clear()
        self.presence.clear()
        self._teardowns.clear()

    def _on_transport_failure(self, session: Session, error: TransportFailure) -> None:
        logger.warning(f"[Manager] {session!r} transport failure: {error.detail}")
        task = asyncio.get_running_loop().create_task(
            self.disconnect(session, code=CLOSE_TRANSPORT_FAILURE, reason=error.detail)
        )
        self._teardowns.add(task)
        task.add_done_callback(self._teardowns.discard)

    # =========================================================================
    # Inbound events
    # =========================================================================

    async def dispatch(self, session: Session, raw) -> None:
        """Handle one inbound frame from ``session``.

        Rejections are reported to the session as ``error`` events and never
        end the connection.
        """
        try:
            event = parse_inbound(raw, max_bytes=self.settings.max_event_bytes)
        except ProtocolViolation as exc:
            logger.warning(f"[Manager] {session!r} sent a bad frame: {exc.detail}")
            session.send(error_event(exc))
            return

        logger.debug("[Manager] %r received: type=%s", session, event.type)

        try:
            await session.wait_ready()
            await self._handle(session, event)
        except ChatError as exc:
            logger.info(
                f"[Manager] Rejected {event.type} from user {session.participant_id}: "
                f"{exc.code} {exc.detail}"
            )
            session.send(error_event(exc, ref_type=event.type))

    async def _handle(self, session: Session, event: InboundEvent) -> None:
        message_type = event.type

        # --- JOIN_ROOM: activate, ack, then flush receipts held for us ---
        if message_type == "join_room":
            await self.registry.join(session, event.chat_room_id)
            session.send(room_joined_event(event.chat_room_id))
            await self.receipts.flush_pending(session, event.chat_room_id)
            return

        # --- LEAVE_ROOM ---
        if message_type == "leave_room":
            await self.registry.leave(session, event.chat_room_id)
            session.send(room_left_event(event.chat_room_id))
            return

        # --- CHAT ---
        if message_type == "chat":
            await self.router.accept(
                session, event.chat_room_id, event.content, event.client_ref
            )
            return

        # --- READ ---
        if message_type == "read":
            await self.receipts.mark_read(session, event.message_id)
            return

        # --- QUERY_STATUS ---
        if message_type == "query_status":
            await self.presence.query(session, event.user_id)
            return


manager = ConnectionManager()
