"""Asyncio WebSocket client for the chat server.

Usage:
    client = ChatClient("ws://localhost:8000/ws", token)
    await client.connect()          # returns once the presence snapshot arrived
    await client.join_room(7)
    pending = await client.send_message(7, "hi")
    event = await client.next_event("chat")
    assert pending.state is MessageState.CONFIRMED
    await client.close()
"""
import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from .state import ConversationState, LocalMessage

logger = logging.getLogger(__name__)

# Seconds to wait for the server's first event after the handshake
DEFAULT_CONNECT_TIMEOUT = 10.0


class ChatClientError(Exception):
    """The client could not connect or the connection is gone."""


Connector = Callable[[str], Awaitable[Any]]


class ChatClient:
    """One participant's connection to the chat server.

    Every received event is applied to ``state`` and then queued for
    ``next_event()``.
    """

    def __init__(
        self,
        url: str,
        token: str,
        *,
        connector: Connector = websockets.connect,
    ) -> None:
        self.url = url
        self.token = token
        self.state = ConversationState()
        self._connector = connector
        self._ws: Optional[Any] = None
        self._events: asyncio.Queue = asyncio.Queue()
        self._reader: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        return self._ws is not None and self._reader is not None and not self._reader.done()

    async def connect(self, timeout: float = DEFAULT_CONNECT_TIMEOUT) -> None:
        """Open the socket and wait for the ``online_users_list`` snapshot.

        Raises:
            ChatClientError: Handshake rejected (bad token) or no snapshot.
        """
        uri = f"{self.url}?{urlencode({'token': self.token})}"
        try:
            self._ws = await self._connector(uri)
            first = json.loads(await asyncio.wait_for(self._ws.recv(), timeout))
        except (InvalidHandshake, ConnectionClosed, asyncio.TimeoutError) as e:
            self._ws = None
            raise ChatClientError(f"Failed to connect: {e}") from e

        if first.get("type") != "online_users_list":
            await self._ws.close()
            self._ws = None
            raise ChatClientError(f"Unexpected first event: {first.get('type')}")

        self.state.apply(first)
        self._reader = asyncio.create_task(self._read_loop())
        logger.info(f"Connected to {self.url} ({len(self.state.online)} online)")

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
        if self._reader is not None:
            await asyncio.gather(self._reader, return_exceptions=True)
        self._ws = None

    # =========================================================================
    # Actions
    # =========================================================================

    async def join_room(self, room_id: int) -> None:
        await self._send({"type": "join_room", "chat_room_id": room_id})

    async def leave_room(self, room_id: int) -> None:
        await self._send({"type": "leave_room", "chat_room_id": room_id})

    async def send_message(self, room_id: int, content: str) -> LocalMessage:
        """Send a chat message and return its PENDING local copy."""
        message = self.state.add_pending(room_id, content)
        await self._send({
            "type": "chat",
            "chat_room_id": room_id,
            "content": content,
            "client_ref": message.client_ref,
        })
        return message

    async def mark_read(self, message_id: int) -> None:
        await self._send({"type": "read", "message_id": message_id})

    async def query_status(self, user_id: int) -> None:
        await self._send({"type": "query_status", "user_id": user_id})

    # =========================================================================
    # Events
    # =========================================================================

    async def next_event(self, event_type: Optional[str] = None, timeout: float = 5.0) -> dict:
        """Return the next received event, optionally skipping to ``event_type``.

        Raises:
            asyncio.TimeoutError: Nothing matching arrived in time.
            ChatClientError: The connection closed first.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise asyncio.TimeoutError(f"No {event_type or 'event'} within {timeout}s")
            event = await asyncio.wait_for(self._events.get(), remaining)
            if event is None:
                raise ChatClientError("Connection closed")
            if event_type is None or event.get("type") == event_type:
                return event

    async def _send(self, payload: dict) -> None:
        if self._ws is None:
            raise ChatClientError("Not connected")
        try:
            await self._ws.send(json.dumps(payload))
        except ConnectionClosed as e:
            raise ChatClientError(f"Connection closed: {e}") from e

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                try:
                    event = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Dropping undecodable frame")
                    continue
                self.state.apply(event)
                await self._events.put(event)
        except ConnectionClosed as e:
            logger.info(f"Connection closed: {e}")
        finally:
            # Wake anyone blocked in next_event()
            await self._events.put(None)
