"""Pydantic schemas for the entities owned by the storage collaborator.

These are the durable records: participants, two-party rooms and messages.
The chat core only ever holds copies of them.
"""
from datetime import datetime
from typing import Optional, Tuple

from pydantic import BaseModel, Field


class Participant(BaseModel):
    """A chat identity.

    Attributes:
        id: Stable integer identifier (also the JWT ``user_id`` claim).
        display_name: Human-readable name shown in clients.
    """
    id: int
    display_name: str = ""


class Room(BaseModel):
    """A private conversation between exactly two participants."""
    id: int
    members: Tuple[int, int]
    created_at: datetime = Field(default_factory=datetime.utcnow)

    def has_member(self, participant_id: int) -> bool:
        return participant_id in self.members

    def other_member(self, participant_id: int) -> Optional[int]:
        """Return the peer of ``participant_id``, or None if not a member."""
        first, second = self.members
        if participant_id == first:
            return second
        if participant_id == second:
            return first
        return None


class Message(BaseModel):
    """A persisted chat message.

    The id is assigned by storage at accept time and never changes.
    """
    id: int
    chat_room_id: int
    sender_id: int
    content: str
    is_read: bool = False
    created_at: datetime


class RoomSummary(BaseModel):
    """One row of a participant's conversation list."""
    room_id: int
    other_user_id: int
    other_display_name: str = ""
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    unread_count: int = 0
