"""Channel reconnection state machine.

One controller owns one duplex connection (one logical channel). The chat and
notification channels each get their own controller, state and retry counter,
so a drop on one never touches the other.

State Machine:
    DISCONNECTED → CONNECTING → CONNECTED ⇄ RECONNECTING
         ↑             │            │            │
         └─────────────┴────────────┴────────────┘  (stop / retries exhausted)

Backoff:
    After ``k`` consecutive failed attempts the next attempt waits
    ``min(base * 2**k, max)``; an episode gives up after ``max_attempts``.
"""

import asyncio
import enum
import inspect
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

from relay.config import settings
from relay.exceptions import ChannelUnavailableError, ConnectionLostError, InvalidStateTransitionError

logger = logging.getLogger(__name__)


class ChannelState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


VALID_TRANSITIONS: dict[ChannelState, set[ChannelState]] = {
    ChannelState.DISCONNECTED: {ChannelState.CONNECTING},
    ChannelState.CONNECTING: {ChannelState.CONNECTED, ChannelState.DISCONNECTED},
    ChannelState.CONNECTED: {ChannelState.RECONNECTING, ChannelState.DISCONNECTED},
    ChannelState.RECONNECTING: {ChannelState.CONNECTED, ChannelState.DISCONNECTED},
}


def can_transition(from_state: ChannelState, to_state: ChannelState) -> bool:
    return to_state in VALID_TRANSITIONS.get(from_state, set())


class ChannelConnection(Protocol):
    """An open duplex connection as produced by a transport."""

    async def recv(self) -> dict: ...

    async def send(self, frame: dict) -> None: ...

    async def close(self) -> None: ...


ConnectFactory = Callable[[], Awaitable[ChannelConnection]]
FrameHandler = Callable[[Any], Any]


@dataclass(frozen=True)
class BackoffPolicy:
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    max_attempts: int = 5

    @classmethod
    def from_settings(cls) -> "BackoffPolicy":
        return cls(
            base_delay_ms=settings.reconnect_base_delay_ms,
            max_delay_ms=settings.reconnect_max_delay_ms,
            max_attempts=settings.reconnect_max_attempts,
        )

    def delay_for(self, failures: int) -> float:
        """Seconds to wait before the next attempt after ``failures`` consecutive failures."""
        return min(self.base_delay_ms * (2**failures), self.max_delay_ms) / 1000


class ReconnectionController:
    """
    Owns one channel's connection and drives it through ``ChannelState``.

    State changes only happen here, in response to connect outcomes and
    drops reported by the read loop. Callers use ``start``, ``stop``, ``send``
    and ``on``.
    """

    def __init__(
        self,
        name: str,
        connect: ConnectFactory,
        policy: BackoffPolicy | None = None,
        connect_timeout: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_state_change: Callable[[ChannelState, ChannelState], Any] | None = None,
        on_terminal: Callable[[str | None], Any] | None = None,
        terminal_close_codes: frozenset[int] = frozenset(),
        ping_frame: dict | None = None,
        ping_interval: float | None = None,
    ):
        self.name = name
        self._connect = connect
        self.policy = policy or BackoffPolicy.from_settings()
        self.connect_timeout = connect_timeout or settings.connect_timeout_seconds
        self._sleep = sleep
        self._on_state_change = on_state_change
        self._on_terminal = on_terminal
        self._terminal_close_codes = terminal_close_codes
        self._ping_frame = ping_frame
        self._ping_interval = ping_interval or settings.hub_ping_interval_seconds

        self._state = ChannelState.DISCONNECTED
        self._retries = 0
        self._connection: ChannelConnection | None = None
        self._handlers: dict[str, list[FrameHandler]] = defaultdict(list)
        self._reader: asyncio.Task | None = None
        self._start_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._pinger: asyncio.Task | None = None
        self._generation = 0
        self._handler_tasks: set[asyncio.Task] = set()
        self.last_connected_at: datetime | None = None
        self.last_error: str | None = None

    # ============== Public API ==============

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def retries(self) -> int:
        return self._retries

    @property
    def connected(self) -> bool:
        return self._state == ChannelState.CONNECTED

    def on(self, frame_type: str, handler: FrameHandler) -> None:
        """Call ``handler(data)`` for every incoming frame of ``frame_type``."""
        self._handlers[frame_type].append(handler)

    async def start(self) -> None:
        """
        Connect, retrying with backoff.

        Raises:
            InvalidStateTransitionError: if the channel is not disconnected
            ChannelUnavailableError: when every attempt failed
        """
        self._transition(ChannelState.CONNECTING)
        self._generation += 1
        generation = self._generation
        self._retries = 0

        # stop() cancels this task, which ends the caller's wait too
        task = asyncio.create_task(self._connect_with_retries(generation))
        self._start_task = task
        try:
            await task
        except asyncio.CancelledError:
            if generation != self._generation:
                return
            # The caller itself was cancelled
            await self.stop()
            raise
        finally:
            if self._start_task is task:
                self._start_task = None

    async def _connect_with_retries(self, generation: int) -> None:
        while self._retries < self.policy.max_attempts:
            if self._retries:
                await self._sleep(self.policy.delay_for(self._retries))
                if generation != self._generation:
                    return

            connection = await self._attempt(generation)
            if generation != self._generation:
                return
            if connection is not None:
                self._on_connected(connection, generation)
                return

        attempts = self._retries
        self._transition(ChannelState.DISCONNECTED)
        raise ChannelUnavailableError(self.name, attempts, self.last_error)

    async def stop(self) -> None:
        """Cancel any reconnect in flight, close the connection and go to DISCONNECTED."""
        self._generation += 1

        for task in (self._start_task, self._reconnect_task, self._reader, self._pinger):
            if task is not None and task is not asyncio.current_task() and not task.done():
                task.cancel()
        self._start_task = None
        self._reconnect_task = None
        self._reader = None
        self._pinger = None

        await self._close_connection()

        if self._state != ChannelState.DISCONNECTED:
            self._transition(ChannelState.DISCONNECTED)
            logger.info(f"Channel {self.name}: stopped")

    async def send(self, frame: dict) -> None:
        if self._state != ChannelState.CONNECTED or self._connection is None:
            raise ChannelUnavailableError(self.name, self._retries, "not connected")
        await self._connection.send(frame)

    # ============== Connection Lifecycle ==============

    async def _attempt(self, generation: int) -> ChannelConnection | None:
        try:
            connection = await asyncio.wait_for(self._connect(), timeout=self.connect_timeout)
        except asyncio.TimeoutError:
            self._record_failure(f"connect timed out after {self.connect_timeout}s")
            return None
        except Exception as e:
            self._record_failure(str(e) or e.__class__.__name__)
            return None

        if generation != self._generation:
            # Stopped while the attempt was in flight
            await _close_quietly(connection)
            return None
        return connection

    def _record_failure(self, error: str) -> None:
        self._retries += 1
        self.last_error = error
        logger.warning(f"Channel {self.name}: attempt {self._retries}/{self.policy.max_attempts} failed: {error}")

    def _on_connected(self, connection: ChannelConnection, generation: int) -> None:
        self._connection = connection
        self._transition(ChannelState.CONNECTED)
        self._retries = 0
        self.last_connected_at = datetime.now(timezone.utc)
        self._reader = asyncio.create_task(self._read_loop(connection, generation))
        if self._ping_frame is not None:
            self._pinger = asyncio.create_task(self._ping_loop(connection, generation))
        logger.info(f"Channel {self.name}: connected")

    async def _read_loop(self, connection: ChannelConnection, generation: int) -> None:
        try:
            while True:
                frame = await connection.recv()
                self._dispatch(frame)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if generation != self._generation:
                return
            self._on_drop(e, generation)

    def _on_drop(self, error: Exception, generation: int) -> None:
        self._connection = None
        self._stop_pinger()
        self.last_error = str(error) or error.__class__.__name__
        logger.warning(f"Channel {self.name}: connection dropped: {self.last_error}")

        if isinstance(error, ConnectionLostError) and error.code in self._terminal_close_codes:
            self._transition(ChannelState.DISCONNECTED)
            self._notify_terminal()
            return

        self._transition(ChannelState.RECONNECTING)
        self._retries = 0
        self._reconnect_task = asyncio.create_task(self._reconnect(generation))

    async def _reconnect(self, generation: int) -> None:
        while self._retries < self.policy.max_attempts:
            await self._sleep(self.policy.delay_for(self._retries))
            if generation != self._generation:
                return

            connection = await self._attempt(generation)
            if generation != self._generation:
                return
            if connection is not None:
                self._reconnect_task = None
                self._on_connected(connection, generation)
                return

        self._reconnect_task = None
        logger.error(f"Channel {self.name}: giving up after {self._retries} reconnect attempt(s)")
        self._transition(ChannelState.DISCONNECTED)
        self._notify_terminal()

    async def _ping_loop(self, connection: ChannelConnection, generation: int) -> None:
        """Keep the server from sweeping an idle connection as stale."""
        while True:
            await asyncio.sleep(self._ping_interval)
            if generation != self._generation or connection is not self._connection:
                return
            try:
                await connection.send(self._ping_frame)
            except Exception as e:
                # The read loop reports the drop
                logger.debug(f"Channel {self.name}: ping failed: {e}")
                return

    def _stop_pinger(self) -> None:
        pinger, self._pinger = self._pinger, None
        if pinger is not None and pinger is not asyncio.current_task() and not pinger.done():
            pinger.cancel()

    async def _close_connection(self) -> None:
        connection, self._connection = self._connection, None
        if connection is not None:
            await _close_quietly(connection)

    # ============== Private Methods ==============

    def _transition(self, target: ChannelState) -> None:
        if not can_transition(self._state, target):
            raise InvalidStateTransitionError(self._state.value, target.value, self.name)
        previous, self._state = self._state, target
        logger.debug(f"Channel {self.name}: {previous.value} -> {target.value}")
        if self._on_state_change is not None:
            try:
                self._on_state_change(previous, target)
            except Exception as e:
                logger.error(f"Channel {self.name}: state listener failed: {e}", exc_info=True)

    def _dispatch(self, frame: Any) -> None:
        if not isinstance(frame, dict):
            logger.debug(f"Channel {self.name}: ignoring non-object frame")
            return

        for handler in self._handlers.get(frame.get("type"), ()):
            try:
                result = handler(frame.get("data"))
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._handler_tasks.add(task)
                    task.add_done_callback(self._handler_tasks.discard)
            except Exception as e:
                logger.error(f"Channel {self.name}: handler for '{frame.get('type')}' failed: {e}", exc_info=True)

    def _notify_terminal(self) -> None:
        if self._on_terminal is None:
            return
        try:
            self._on_terminal(self.last_error)
        except Exception as e:
            logger.error(f"Channel {self.name}: terminal listener failed: {e}", exc_info=True)


async def _close_quietly(connection: ChannelConnection) -> None:
    try:
        await connection.close()
    except Exception as e:
        logger.debug(f"Ignoring error while closing connection: {e}")
