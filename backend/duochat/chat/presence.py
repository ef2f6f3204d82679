"""Presence tracking and fan-out.

One PresenceRecord per participant, changed only by session connect and
teardown. Each change is announced as a ``user_status`` event to the sessions
that are *interested* in the participant:

    - the observer has an active room whose other member is the participant, or
    - the observer explicitly queried the participant's status.

Changes for a participant are serialized by a per-participant lock and the
fan-out is queued while the lock is held, so every observer sees one
participant's transitions in the order they happened.
"""
import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from .events import online_users_event, user_status_event
from .locks import KeyedLocks
from .membership import RoomMembershipRegistry
from .session import Session

logger = logging.getLogger(__name__)


@dataclass
class PresenceRecord:
    participant_id: int
    online: bool
    session: Optional[Session]
    changed_at: float


class PresenceTracker:
    """Process-wide online/offline state with interest-based fan-out."""

    def __init__(self, registry: RoomMembershipRegistry) -> None:
        self._registry = registry
        self._locks = KeyedLocks()
        self._records: Dict[int, PresenceRecord] = {}

    # =========================================================================
    # Transitions
    # =========================================================================

    async def connect(self, session: Session) -> Optional[Session]:
        """Bind ``session`` as its participant's live session and go online.

        Interested sessions are told the participant is online, and the new
        session is sent the full online set.

        Returns:
            The participant's previous live session, which the caller must
            close, or None.
        """
        participant_id = session.participant_id
        async with self._locks.lock(participant_id):
            record = self._records.get(participant_id)
            previous = record.session if record is not None and record.online else None
            self._records[participant_id] = PresenceRecord(
                participant_id=participant_id,
                online=True,
                session=session,
                changed_at=time.time(),
            )
            notified = self._fan_out(participant_id, True)
            session.send(online_users_event(self.online_ids()))
        logger.info(
            f"[Presence] User {participant_id} online (notified {notified} sessions)"
        )
        return previous

    async def disconnect(self, session: Session) -> bool:
        """Mark the participant offline if ``session`` is still its live one.

        Returns:
            False when a newer session has superseded this one; no event is
            emitted in that case.
        """
        participant_id = session.participant_id
        async with self._locks.lock(participant_id):
            record = self._records.get(participant_id)
            if record is None or record.session is not session:
                return False
            self._records[participant_id] = PresenceRecord(
                participant_id=participant_id,
                online=False,
                session=None,
                changed_at=time.time(),
            )
            notified = self._fan_out(participant_id, False)
        logger.info(
            f"[Presence] User {participant_id} offline (notified {notified} sessions)"
        )
        return True

    async def query(self, session: Session, user_id: int) -> bool:
        """Register interest in ``user_id`` and reply with its current status."""
        async with self._locks.lock(user_id):
            session.watched.add(user_id)
            online = self.is_online(user_id)
            session.send(user_status_event(user_id, online))
        return online

    # =========================================================================
    # Queries
    # =========================================================================

    def is_online(self, participant_id: int) -> bool:
        record = self._records.get(participant_id)
        return record is not None and record.online

    def online_ids(self) -> List[int]:
        return sorted(pid for pid, record in self._records.items() if record.online)

    def session_for(self, participant_id: int) -> Optional[Session]:
        """The participant's live session, if connected."""
        record = self._records.get(participant_id)
        if record is None or not record.online:
            return None
        return record.session

    def live_sessions(self) -> List[Session]:
        return [
            record.session for record in self._records.values()
            if record.online and record.session is not None
        ]

    def is_interested(self, observer: Session, subject_id: int) -> bool:
        if observer.participant_id == subject_id:
            return False
        if subject_id in observer.watched:
            return True
        return any(
            room.other_member(observer.participant_id) == subject_id
            for room in self._registry.rooms_of(observer)
        )

    def clear(self) -> None:
        self._records.clear()

    def _fan_out(self, subject_id: int, online: bool) -> int:
        event = user_status_event(subject_id, online)
        notified = 0
        for observer in self.live_sessions():
            if observer.is_closed or not self.is_interested(observer, subject_id):
                continue
            if observer.send(event):
                notified += 1
        return notified
