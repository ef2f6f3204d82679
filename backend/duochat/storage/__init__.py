"""Chat persistence module.

Provides:
    - ChatStore: DuckDB-backed participants, private rooms and messages.
    - Participant, Room, Message, RoomSummary: Pydantic records.
"""
