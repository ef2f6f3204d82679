"""Chat client module.

Provides:
    - ChatClient: asyncio WebSocket client for the chat server.
    - ConversationState: Local timelines with pending/confirmed/failed messages.
"""
from .state import ConversationState, LocalMessage, MessageState
from .ws_client import ChatClient, ChatClientError

__all__ = [
    "ChatClient",
    "ChatClientError",
    "ConversationState",
    "LocalMessage",
    "MessageState",
]
