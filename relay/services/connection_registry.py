"""
Connection Registry

Tracks live hub connections, the user each one belongs to and the groups it
has joined. Every connection owns a bounded outbox drained by its own writer
task, so a slow socket never holds up delivery to the others and frames
reach one connection in the order they were enqueued.
"""

import asyncio
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from relay.config import settings
from relay.constants.hubs import CLOSE_STALE, CLOSE_TRY_AGAIN_LATER, HubName, chat_group, user_group
from relay.schemas.events import SystemFrame, create_envelope

logger = logging.getLogger(__name__)


@dataclass
class HubConnection:
    """Represents an active hub connection."""

    connection_id: str
    websocket: Any
    user_id: int | None
    outbox: asyncio.Queue
    groups: set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_heartbeat: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    writer: asyncio.Task | None = None


class ConnectionRegistry:
    """
    Live connections of one hub.

    Features:
    - User-scope group (``user:{id}``) joined on register when authenticated
    - Resource groups (``chat:{id}``) joined and left on client request
    - Snapshot reads under the same lock as membership writes
    - Per-connection outbox with a writer task
    - Heartbeat tracking and stale cleanup
    """

    def __init__(
        self,
        hub: HubName | str = "default",
        max_queue_size: int | None = None,
        send_timeout: float | None = None,
    ):
        self.hub = hub.value if isinstance(hub, HubName) else hub
        self._max_queue_size = max_queue_size or settings.hub_send_queue_size
        self._send_timeout = send_timeout or settings.hub_send_timeout_seconds

        self._connections: dict[str, HubConnection] = {}
        self._groups: dict[str, set[str]] = defaultdict(set)
        self._lock = asyncio.Lock()

    # ============== Membership ==============

    async def register(
        self,
        websocket: Any,
        user_id: int | None = None,
        connection_id: str | None = None,
    ) -> str:
        """
        Register an accepted connection.

        Args:
            websocket: Object exposing ``send_json`` and ``close`` coroutines
            user_id: Authenticated principal, or None for an ungrouped connection
            connection_id: Transport-assigned id, generated when omitted

        Returns:
            Connection ID
        """
        connection_id = connection_id or str(uuid.uuid4())

        connection = HubConnection(
            connection_id=connection_id,
            websocket=websocket,
            user_id=user_id,
            outbox=asyncio.Queue(maxsize=self._max_queue_size),
        )

        async with self._lock:
            self._connections[connection_id] = connection
            if user_id is not None:
                group = user_group(user_id)
                connection.groups.add(group)
                self._groups[group].add(connection_id)
            connection.writer = asyncio.create_task(self._run_writer(connection))

        logger.info(
            f"Hub {self.hub}: connected {connection_id} (user: {user_id})",
            extra={"hub": self.hub, "connection_id": connection_id},
        )

        self.enqueue(
            connection,
            create_envelope(SystemFrame.CONNECTED, {"connection_id": connection_id, "hub": self.hub}),
        )
        return connection_id

    async def unregister(self, connection_id: str) -> bool:
        """
        Remove a connection from every group it belongs to.

        Unknown or already removed ids are a no-op.

        Returns:
            True if the connection was registered
        """
        async with self._lock:
            connection = self._connections.pop(connection_id, None)
            if connection is None:
                return False

            for group in connection.groups:
                members = self._groups.get(group)
                if members is not None:
                    members.discard(connection_id)
                    if not members:
                        del self._groups[group]
            connection.groups.clear()

        self._stop_writer(connection)

        logger.info(
            f"Hub {self.hub}: disconnected {connection_id}",
            extra={"hub": self.hub, "connection_id": connection_id},
        )
        return True

    async def join_group(self, connection_id: str, chat_id: int) -> bool:
        """Add a connection to ``chat:{chat_id}``. Access is checked by the caller."""
        group = chat_group(chat_id)
        async with self._lock:
            connection = self._connections.get(connection_id)
            if not connection:
                return False
            connection.groups.add(group)
            self._groups[group].add(connection_id)

        logger.debug(f"Connection {connection_id} joined {group}")
        return True

    async def leave_group(self, connection_id: str, chat_id: int) -> bool:
        """Remove a connection from ``chat:{chat_id}``."""
        group = chat_group(chat_id)
        async with self._lock:
            connection = self._connections.get(connection_id)
            if not connection:
                return False
            connection.groups.discard(group)
            members = self._groups.get(group)
            if members is not None:
                members.discard(connection_id)
                if not members:
                    del self._groups[group]

        logger.debug(f"Connection {connection_id} left {group}")
        return True

    # ============== Lookup ==============

    async def connections_for_group(self, group: str) -> list[HubConnection]:
        """Snapshot of the connections currently in ``group``."""
        async with self._lock:
            return [self._connections[cid] for cid in self._groups.get(group, ()) if cid in self._connections]

    def has_user(self, user_id: int) -> bool:
        return bool(self._groups.get(user_group(user_id)))

    def user_connection_count(self, user_id: int) -> int:
        return len(self._groups.get(user_group(user_id), ()))

    def groups_of(self, connection_id: str) -> set[str]:
        connection = self._connections.get(connection_id)
        return set(connection.groups) if connection else set()

    def get_connection(self, connection_id: str) -> HubConnection | None:
        return self._connections.get(connection_id)

    def get_connection_info(self, connection_id: str) -> dict | None:
        """Get information about a connection."""
        connection = self._connections.get(connection_id)
        if not connection:
            return None

        return {
            "connection_id": connection_id,
            "hub": self.hub,
            "user_id": connection.user_id,
            "groups": sorted(connection.groups),
            "connected_at": connection.connected_at.isoformat(),
            "last_heartbeat": connection.last_heartbeat.isoformat(),
            "pending": connection.outbox.qsize(),
        }

    def get_online_user_ids(self) -> list[int]:
        """Sorted ids of users with at least one live connection."""
        return sorted({c.user_id for c in self._connections.values() if c.user_id is not None})

    def get_stats(self) -> dict:
        """Get registry statistics."""
        return {
            "hub": self.hub,
            "total_connections": len(self._connections),
            "unique_users": len(self.get_online_user_ids()),
            "groups": len(self._groups),
            "group_stats": {group: len(members) for group, members in self._groups.items()},
        }

    # ============== Delivery ==============

    def enqueue(self, connection: HubConnection, message: dict) -> bool:
        """
        Queue a frame for one connection without waiting.

        Returns:
            False when the connection is gone or its outbox is full
        """
        if connection.connection_id not in self._connections:
            return False
        try:
            connection.outbox.put_nowait(message)
            return True
        except asyncio.QueueFull:
            logger.warning(
                f"Hub {self.hub}: outbox full, dropping '{message.get('type')}' for {connection.connection_id}",
                extra={"hub": self.hub, "connection_id": connection.connection_id},
            )
            return False

    async def deliver(self, connection: HubConnection, message: dict) -> bool:
        """
        Queue a frame for one connection, waiting for outbox space if needed.

        A connection whose outbox stays full for the send timeout is a slow
        consumer: it is closed so the client reconnects and resyncs.

        Returns:
            True if the frame was queued
        """
        if connection.connection_id not in self._connections:
            return False
        try:
            connection.outbox.put_nowait(message)
            return True
        except asyncio.QueueFull:
            pass

        try:
            await asyncio.wait_for(connection.outbox.put(message), timeout=self._send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(
                f"Hub {self.hub}: slow consumer {connection.connection_id}, closing",
                extra={"hub": self.hub, "connection_id": connection.connection_id},
            )
            await self._close_connection(connection, CLOSE_TRY_AGAIN_LATER, "slow consumer")
            return False

    async def send_to_connection(self, connection_id: str, message: dict) -> bool:
        connection = self._connections.get(connection_id)
        if not connection:
            return False
        return await self.deliver(connection, message)

    async def send_to_group(self, group: str, message: dict) -> int:
        """
        Queue a frame for every connection in ``group`` at the moment of the call.

        Connections with a full outbox are waited on concurrently, so one
        stalled socket delays the call by at most the send timeout.

        Returns:
            Number of connections the frame was queued for
        """
        connections = await self.connections_for_group(group)

        delivered = 0
        backlogged = []
        for connection in connections:
            try:
                connection.outbox.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                backlogged.append(connection)

        if backlogged:
            results = await asyncio.gather(*(self.deliver(connection, message) for connection in backlogged))
            delivered += sum(results)
        return delivered

    async def flush(self, timeout: float = 1.0) -> None:
        """Wait until every outbox has been written out (or timeout)."""
        async with self._lock:
            connections = list(self._connections.values())
        for connection in connections:
            try:
                await asyncio.wait_for(connection.outbox.join(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Hub {self.hub}: flush timed out for {connection.connection_id}")

    # ============== Lifecycle ==============

    async def touch(self, connection_id: str) -> None:
        """Record a heartbeat."""
        async with self._lock:
            connection = self._connections.get(connection_id)
            if connection:
                connection.last_heartbeat = datetime.now(timezone.utc)

    async def disconnect_user(self, user_id: int, code: int, reason: str = "") -> int:
        """
        Close and unregister every connection of a user.

        Returns:
            Number of connections closed
        """
        connections = await self.connections_for_group(user_group(user_id))
        for connection in connections:
            await self._close_connection(connection, code, reason)
        if connections:
            logger.info(f"Hub {self.hub}: force-disconnected user {user_id} ({len(connections)} connection(s))")
        return len(connections)

    async def cleanup_stale_connections(self, timeout_seconds: int = 60) -> int:
        """
        Remove connections that haven't sent heartbeats.

        Args:
            timeout_seconds: Seconds without heartbeat before considered stale

        Returns:
            Number of connections cleaned up
        """
        now = datetime.now(timezone.utc)

        async with self._lock:
            stale = [
                connection
                for connection in self._connections.values()
                if (now - connection.last_heartbeat).total_seconds() > timeout_seconds
            ]

        for connection in stale:
            await self._close_connection(connection, CLOSE_STALE, "heartbeat timeout")

        if stale:
            logger.info(f"Hub {self.hub}: cleaned up {len(stale)} stale connections")

        return len(stale)

    async def close_all(self) -> None:
        async with self._lock:
            ids = list(self._connections)
        for connection_id in ids:
            await self.unregister(connection_id)

    # ============== Private Methods ==============

    async def _close_connection(self, connection: HubConnection, code: int, reason: str) -> None:
        await self.unregister(connection.connection_id)
        try:
            await connection.websocket.close(code=code, reason=reason)
        except Exception as e:
            logger.debug(f"Close failed for {connection.connection_id}: {e}")

    def _stop_writer(self, connection: HubConnection) -> None:
        writer = connection.writer
        if writer is not None and writer is not asyncio.current_task():
            writer.cancel()
        # Release anyone waiting in flush()
        while not connection.outbox.empty():
            connection.outbox.get_nowait()
            connection.outbox.task_done()

    async def _run_writer(self, connection: HubConnection) -> None:
        """Drain one connection's outbox in order."""
        while True:
            message = await connection.outbox.get()
            try:
                await asyncio.wait_for(connection.websocket.send_json(message), timeout=self._send_timeout)
            except asyncio.CancelledError:
                connection.outbox.task_done()
                raise
            except Exception as e:
                # Dead or stalled socket: treat as no connection
                connection.outbox.task_done()
                logger.warning(
                    f"Hub {self.hub}: send to {connection.connection_id} failed: {e!r}",
                    extra={"hub": self.hub, "connection_id": connection.connection_id},
                )
                await self.unregister(connection.connection_id)
                return
            connection.outbox.task_done()


class HubRegistry:
    """The registries of every hub, addressed by ``HubName``."""

    def __init__(self, registries: dict[HubName, ConnectionRegistry] | None = None):
        self._registries = registries or {hub: ConnectionRegistry(hub) for hub in HubName}

    def __getitem__(self, hub: HubName) -> ConnectionRegistry:
        return self._registries[hub]

    def __iter__(self):
        return iter(self._registries.values())

    @property
    def chat(self) -> ConnectionRegistry:
        return self._registries[HubName.CHAT]

    @property
    def notifications(self) -> ConnectionRegistry:
        return self._registries[HubName.NOTIFICATIONS]

    def is_user_online(self, user_id: int) -> bool:
        """True if the user has a live connection on any hub."""
        return any(registry.has_user(user_id) for registry in self._registries.values())

    def get_online_user_ids(self) -> list[int]:
        online: set[int] = set()
        for registry in self._registries.values():
            online.update(registry.get_online_user_ids())
        return sorted(online)

    def get_stats(self) -> dict:
        per_hub = {hub.value: registry.get_stats() for hub, registry in self._registries.items()}
        return {
            "total_connections": sum(s["total_connections"] for s in per_hub.values()),
            "unique_users": len(self.get_online_user_ids()),
            "hubs": per_hub,
        }

    async def disconnect_user(self, user_id: int, code: int, reason: str = "") -> int:
        total = 0
        for registry in self._registries.values():
            total += await registry.disconnect_user(user_id, code, reason)
        return total

    async def cleanup_stale_connections(self, timeout_seconds: int) -> int:
        total = 0
        for registry in self._registries.values():
            total += await registry.cleanup_stale_connections(timeout_seconds)
        return total

    async def flush(self, timeout: float = 1.0) -> None:
        for registry in self._registries.values():
            await registry.flush(timeout)

    async def close_all(self) -> None:
        for registry in self._registries.values():
            await registry.close_all()


# ============== Global Instance ==============

hub_registry = HubRegistry()


def get_hub_registry() -> HubRegistry:
    """Get the hub registry singleton."""
    return hub_registry
