"""Transport session: one live chat connection bound to one participant.

A Session owns an ordered, bounded outbound buffer drained by a single writer
task, so ``send()`` never blocks the caller. A recipient that cannot keep up
overflows its buffer and is torn down instead of stalling the sender.

Lifecycle:
    CONNECTING -> READY -> CLOSED

    The manager creates the session in CONNECTING, registers it for presence
    and queues the initial presence snapshot, then calls ``mark_ready()``.
    Inbound actions wait for READY before they run. ``close()`` moves to
    CLOSED from any state and discards everything still buffered.
"""
import asyncio
import logging
import time
import uuid
from contextlib import suppress
from enum import Enum
from typing import Any, Callable, Optional, Protocol, Set

from .errors import TransportFailure

logger = logging.getLogger(__name__)

# Default bound on buffered outbound events per connection
DEFAULT_SEND_BUFFER_SIZE = 256


class Connection(Protocol):
    """The slice of a WebSocket the session needs."""

    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None: ...


class SessionState(str, Enum):
    """Lifecycle state of a session.

    Attributes:
        CONNECTING: Handshake accepted, presence not yet announced.
        READY: Actions may be processed.
        CLOSED: Torn down; nothing more is sent or received.
    """
    CONNECTING = "connecting"
    READY = "ready"
    CLOSED = "closed"


FailureCallback = Callable[["Session", TransportFailure], None]


class Session:
    """A participant's single live connection.

    Attributes:
        id: Random session identifier (for logs).
        participant_id: Validated identity bound at handshake.
        active_rooms: Rooms currently joined (being viewed).
        watched: Participants whose status this session explicitly queried.
    """

    def __init__(
        self,
        connection: Connection,
        participant_id: int,
        *,
        buffer_size: int = DEFAULT_SEND_BUFFER_SIZE,
        on_failure: Optional[FailureCallback] = None,
    ) -> None:
        self.id = str(uuid.uuid4())
        self.connection = connection
        self.participant_id = participant_id
        self.state = SessionState.CONNECTING
        self.connected_at = time.time()
        self.active_rooms: Set[int] = set()
        self.watched: Set[int] = set()
        self.failure: Optional[TransportFailure] = None

        self._outbox: asyncio.Queue = asyncio.Queue(maxsize=buffer_size)
        self._ready = asyncio.Event()
        self._writer: Optional[asyncio.Task] = None
        self._on_failure = on_failure

    def __repr__(self) -> str:
        return f"Session(participant={self.participant_id}, id={self.id[:8]}, state={self.state.value})"

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start the writer task. Must be called from the event loop."""
        if self._writer is None:
            self._writer = asyncio.create_task(
                self._drain(), name=f"session-writer-{self.id[:8]}"
            )

    def mark_ready(self) -> None:
        if self.state is SessionState.CONNECTING:
            self.state = SessionState.READY
            self._ready.set()

    async def wait_ready(self) -> None:
        """Block until the handshake finished.

        Raises:
            TransportFailure: If the session was closed instead.
        """
        await self._ready.wait()
        if self.state is SessionState.CLOSED:
            raise TransportFailure("Session is closed")

    @property
    def is_ready(self) -> bool:
        return self.state is SessionState.READY

    @property
    def is_closed(self) -> bool:
        return self.state is SessionState.CLOSED

    async def close(
        self,
        code: int = 1000,
        reason: str = "",
        *,
        close_connection: bool = True,
    ) -> int:
        """Tear down the transport side of the session.

        Buffered events are abandoned, never partially delivered.

        Args:
            code: WebSocket close code.
            reason: Close reason sent to the peer.
            close_connection: False when the peer is already gone.

        Returns:
            Number of buffered events that were discarded.
        """
        if self.state is SessionState.CLOSED:
            return 0
        self.state = SessionState.CLOSED
        self._ready.set()

        if self._writer is not None and self._writer is not asyncio.current_task():
            self._writer.cancel()
            with suppress(asyncio.CancelledError):
                await self._writer

        dropped = 0
        while not self._outbox.empty():
            self._outbox.get_nowait()
            dropped += 1
        if dropped:
            logger.debug("[Session] %r discarded %d buffered events", self, dropped)

        if close_connection:
            try:
                await self.connection.close(code=code, reason=reason)
            except Exception as e:
                logger.debug(f"Failed to close connection: {e}")
        return dropped

    # =========================================================================
    # Outbound
    # =========================================================================

    def send(self, event: dict) -> bool:
        """Queue an event for delivery without waiting.

        Returns:
            True if queued. False if the session is closed or its buffer
            overflowed (which fails the session).
        """
        if self.state is SessionState.CLOSED or self.failure is not None:
            return False
        try:
            self._outbox.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                "[Session] %r send buffer full (%d events), dropping connection",
                self, self._outbox.maxsize,
            )
            self._fail(TransportFailure("Send buffer overflow"))
            return False
        return True

    @property
    def pending(self) -> int:
        """Number of events queued but not yet written."""
        return self._outbox.qsize()

    async def _drain(self) -> None:
        """Writer loop: deliver queued events in order, one at a time."""
        while True:
            event = await self._outbox.get()
            try:
                await self.connection.send_json(event)
            except Exception as e:
                logger.debug(f"Failed to send to connection: {e}")
                self._fail(TransportFailure(f"Send failed: {e}"))
                return

    def _fail(self, error: TransportFailure) -> None:
        if self.failure is not None or self.state is SessionState.CLOSED:
            return
        self.failure = error
        if self._on_failure is not None:
            self._on_failure(self, error)
