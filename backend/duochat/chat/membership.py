"""Room membership registry.

Tracks which sessions are *actively* viewing which rooms. Active membership is
view state and is distinct from durable room membership (who belongs to the
conversation at all): a session may only activate a room whose stored members
include its participant, and only active sessions receive that room's events.

All mutations for a room run under that room's lock; the Message Router takes
the same lock while it delivers, so a join or leave never interleaves with a
delivery to the same room.
"""
import logging
from contextlib import AbstractAsyncContextManager
from typing import Callable, Dict, List, Optional, Set

from duochat.storage.schemas import Room
from duochat.storage.service import ChatStore

from .errors import NotAMember
from .locks import KeyedLocks
from .session import Session

logger = logging.getLogger(__name__)


class RoomMembershipRegistry:
    """Maps rooms to the sessions currently active on them."""

    def __init__(self, store_provider: Callable[[], ChatStore] = ChatStore.get_instance) -> None:
        self._store_provider = store_provider
        self._locks = KeyedLocks()

        # room_id -> Room (rooms are immutable once created)
        self._rooms: Dict[int, Room] = {}

        # room_id -> sessions active on it
        self._active: Dict[int, Set[Session]] = {}

    def room_lock(self, room_id: int) -> AbstractAsyncContextManager:
        """The per-room lock shared by membership changes and delivery."""
        return self._locks.lock(room_id)

    def get_room(self, room_id: int) -> Optional[Room]:
        room = self._rooms.get(room_id)
        if room is None:
            room = self._store_provider().get_room(room_id)
            if room is not None:
                self._rooms[room_id] = room
        return room

    async def join(self, session: Session, room_id: int) -> Room:
        """Activate ``room_id`` for ``session``. Joining twice is a no-op.

        Raises:
            NotAMember: The room does not exist or the session's participant
                is not one of its two members.
        """
        room = self.get_room(room_id)
        if room is None or not room.has_member(session.participant_id):
            raise NotAMember(
                f"Participant {session.participant_id} is not a member of room {room_id}"
            )
        async with self.room_lock(room_id):
            if session.is_closed:
                return room
            self._active.setdefault(room_id, set()).add(session)
            session.active_rooms.add(room_id)
        logger.info(f"[Membership] {session!r} joined room {room_id}")
        return room

    async def leave(self, session: Session, room_id: int) -> bool:
        """Deactivate ``room_id``. Returns False if it was not active."""
        async with self.room_lock(room_id):
            removed = self._deactivate(session, room_id)
        if removed:
            logger.info(f"[Membership] {session!r} left room {room_id}")
        return removed

    async def release_all(self, session: Session) -> List[int]:
        """Drop every active membership of a session (teardown)."""
        released = []
        for room_id in sorted(session.active_rooms):
            async with self.room_lock(room_id):
                if self._deactivate(session, room_id):
                    released.append(room_id)
        return released

    def is_active(self, session: Session, room_id: int) -> bool:
        return session in self._active.get(room_id, ())

    def sessions_in(self, room_id: int) -> List[Session]:
        return list(self._active.get(room_id, ()))

    def participants_in(self, room_id: int) -> Set[int]:
        return {s.participant_id for s in self._active.get(room_id, ())}

    def rooms_of(self, session: Session) -> List[Room]:
        """Room entities of everything the session has active."""
        rooms = []
        for room_id in session.active_rooms:
            room = self._rooms.get(room_id)
            if room is not None:
                rooms.append(room)
        return rooms

    def clear(self) -> None:
        """Forget all state (used by tests)."""
        self._rooms.clear()
        self._active.clear()

    def _deactivate(self, session: Session, room_id: int) -> bool:
        session.active_rooms.discard(room_id)
        sessions = self._active.get(room_id)
        if not sessions or session not in sessions:
            return False
        sessions.discard(session)
        if not sessions:
            del self._active[room_id]
        return True
