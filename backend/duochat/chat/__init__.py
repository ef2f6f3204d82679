"""Real-time chat core.

Provides:
    - Session: One live connection with an ordered, bounded outbound buffer.
    - RoomMembershipRegistry: Which sessions are viewing which rooms.
    - PresenceTracker: Online/offline state and interest-based fan-out.
    - MessageRouter: Persist-then-deliver, sender included.
    - ReceiptCorrelator: Read marking and receipt routing by message id.
    - ConnectionManager: Wires the above behind the WebSocket endpoint.
"""
