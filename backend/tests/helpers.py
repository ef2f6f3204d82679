"""Fakes shared by the async component tests."""
import asyncio
from typing import Any, List, Optional, Tuple


class FakeConnection:
    """Records what a session writes; optionally blocks or fails on send."""

    def __init__(self, fail: bool = False, gate: Optional[asyncio.Event] = None) -> None:
        self.sent: List[dict] = []
        self.closed: Optional[Tuple[int, Any]] = None
        self.fail = fail
        self.gate = gate

    async def send_json(self, data: Any) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise RuntimeError("connection reset")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        self.closed = (code, reason)

    def of_type(self, event_type: str) -> List[dict]:
        return [event for event in self.sent if event["type"] == event_type]


async def settle(rounds: int = 10) -> None:
    """Let writer tasks drain their buffers."""
    for _ in range(rounds):
        await asyncio.sleep(0)
