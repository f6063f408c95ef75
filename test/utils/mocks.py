"""
Test doubles for the real-time layer

Provides mock implementations for:
- Server-side websockets (hub registry and hub routes)
- Client-side channel connections and connectors (reconnection controller)
- Push senders and a recording sleep
"""

import asyncio
from typing import Any

from fastapi import WebSocketDisconnect

from relay.exceptions import ConnectionLostError
from relay.services.push_providers import PushResult


class FakeWebSocket:
    """
    Server-side websocket double.

    Outgoing frames land in ``sent``; incoming text frames are fed with
    ``push_text`` and ``disconnect`` ends the receive loop.
    """

    def __init__(self, send_delay: float = 0.0, fail_sends: bool = False):
        self.sent: list[dict] = []
        self.accepted = False
        self.closed = False
        self.close_code: int | None = None
        self.close_reason: str | None = None
        self.send_delay = send_delay
        self.fail_sends = fail_sends
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def accept(self):
        self.accepted = True

    async def send_json(self, data: dict):
        if self.fail_sends:
            raise RuntimeError("socket is gone")
        if self.send_delay:
            await asyncio.sleep(self.send_delay)
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str | None = None):
        self.closed = True
        self.close_code = code
        self.close_reason = reason
        self._incoming.put_nowait(None)

    async def receive_text(self) -> str:
        item = await self._incoming.get()
        if item is None:
            raise WebSocketDisconnect(code=self.close_code or 1000)
        return item

    def push_text(self, text: str):
        self._incoming.put_nowait(text)

    def disconnect(self):
        self._incoming.put_nowait(None)

    def frames(self, frame_type: str) -> list[dict]:
        return [f for f in self.sent if f.get("type") == frame_type]


class FakeChannelConnection:
    """Client-side connection double fed by the test."""

    def __init__(self):
        self.sent: list[dict] = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def recv(self) -> dict:
        item = await self._incoming.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def send(self, frame: dict) -> None:
        if self.closed:
            raise ConnectionLostError(reason="closed")
        self.sent.append(frame)

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(ConnectionLostError(code=1000, reason="closed by client"))

    def deliver(self, frame_type: str, data: Any = None):
        self._incoming.put_nowait({"type": frame_type, "data": data, "timestamp": "2026-01-01T00:00:00+00:00"})

    def drop(self, code: int | None = 1006, reason: str = ""):
        self._incoming.put_nowait(ConnectionLostError(code=code, reason=reason))


class ScriptedConnector:
    """
    Connect factory whose outcomes follow a script.

    Each entry is either ``"ok"`` (returns a fresh FakeChannelConnection) or an
    exception to raise. Once the script is used up every attempt fails.
    """

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0
        self.connections: list[FakeChannelConnection] = []

    async def __call__(self) -> FakeChannelConnection:
        self.calls += 1
        outcome = self.outcomes.pop(0) if self.outcomes else ConnectionRefusedError("server unreachable")
        if isinstance(outcome, BaseException):
            raise outcome
        connection = FakeChannelConnection()
        self.connections.append(connection)
        return connection

    @property
    def last(self) -> FakeChannelConnection:
        return self.connections[-1]


class RecordingSleep:
    """Replacement for asyncio.sleep that records delays and returns at once."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float):
        self.delays.append(delay)
        await asyncio.sleep(0)


class FakePushSender:
    """Push sender returning a scripted result per endpoint (SUCCESS by default)."""

    def __init__(self, results: dict[str, PushResult] | None = None, error: Exception | None = None):
        self.results = results or {}
        self.error = error
        self.sent: list[tuple[str, Any]] = []

    async def send(self, subscription, message) -> PushResult:
        self.sent.append((subscription.endpoint, message))
        if self.error is not None:
            raise self.error
        return self.results.get(subscription.endpoint, PushResult.SUCCESS)


async def settle(rounds: int = 5):
    """Let pending tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_until(predicate, rounds: int = 500) -> bool:
    """Yield to the loop until ``predicate()`` holds or the rounds run out."""
    for _ in range(rounds):
        if predicate():
            return True
        await asyncio.sleep(0)
    return predicate()
