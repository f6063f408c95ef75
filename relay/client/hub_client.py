"""
Hub Client

Wires the two hub channels to the client stores. Each channel has its own
ReconnectionController, so the chat and notification connections recover
(or give up) independently.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from relay.client.chat_store import ChatStore
from relay.client.notification_store import NotificationStore
from relay.client.reconnection import BackoffPolicy, ChannelState, ConnectFactory, ReconnectionController
from relay.client.transport import TokenProvider, WebSocketHubTransport
from relay.constants.hubs import CLOSE_BANNED, CLOSE_POLICY_VIOLATION, HubName
from relay.exceptions import ChannelUnavailableError, ConnectionLostError
from relay.schemas.events import ClientCommand, HubEvent

logger = logging.getLogger(__name__)

# Close codes after which reconnecting cannot succeed without user action
TERMINAL_CLOSE_CODES = frozenset({CLOSE_POLICY_VIOLATION, CLOSE_BANNED})

# Sent while connected so the server does not sweep an idle connection
PING_FRAME = {"type": ClientCommand.PING.value}


class HubClient:
    def __init__(
        self,
        base_url: str,
        token_provider: TokenProvider,
        chat_store: ChatStore | None = None,
        notification_store: NotificationStore | None = None,
        connect_factory: Callable[[HubName], ConnectFactory] | None = None,
        policy: BackoffPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_offline: Callable[[HubName, str | None], Any] | None = None,
        ping_interval: float | None = None,
    ):
        self.chat_store = chat_store or ChatStore()
        self.notification_store = notification_store or NotificationStore()
        self._on_offline = on_offline
        self.joined_chats: set[int] = set()
        self._rejoin_tasks: set[asyncio.Task] = set()

        if connect_factory is None:

            def connect_factory(hub: HubName) -> ConnectFactory:
                return WebSocketHubTransport(base_url, hub, token_provider).connect

        self.chat = ReconnectionController(
            HubName.CHAT.value,
            connect_factory(HubName.CHAT),
            policy=policy,
            sleep=sleep,
            on_state_change=self._on_chat_state_change,
            on_terminal=lambda error: self._offline(HubName.CHAT, error),
            terminal_close_codes=TERMINAL_CLOSE_CODES,
            ping_frame=PING_FRAME,
            ping_interval=ping_interval,
        )
        self.notifications = ReconnectionController(
            HubName.NOTIFICATIONS.value,
            connect_factory(HubName.NOTIFICATIONS),
            policy=policy,
            sleep=sleep,
            on_terminal=lambda error: self._offline(HubName.NOTIFICATIONS, error),
            terminal_close_codes=TERMINAL_CLOSE_CODES,
            ping_frame=PING_FRAME,
            ping_interval=ping_interval,
        )

        self.chat.on(HubEvent.RECEIVE_MESSAGE.value, self.chat_store.receive_message)
        self.chat.on(HubEvent.MESSAGE_DELETED.value, self._on_message_deleted)
        self.chat.on(HubEvent.CHAT_UPDATED.value, self.chat_store.mark_chat_updated)
        self.notifications.on(HubEvent.RECEIVE_NOTIFICATION.value, self.notification_store.receive_live)

    @property
    def states(self) -> dict[str, ChannelState]:
        return {self.chat.name: self.chat.state, self.notifications.name: self.notifications.state}

    async def start(self) -> dict[str, ChannelState]:
        """
        Start both channels. A channel that cannot connect is reported
        offline without affecting the other.
        """
        results = await asyncio.gather(self.chat.start(), self.notifications.start(), return_exceptions=True)

        for controller, result in zip((self.chat, self.notifications), results):
            if isinstance(result, ChannelUnavailableError):
                self._offline(HubName(controller.name), result.details.get("last_error"))
            elif isinstance(result, BaseException):
                logger.error(f"Channel {controller.name} failed to start: {result!r}")

        return self.states

    async def stop(self) -> None:
        for task in list(self._rejoin_tasks):
            task.cancel()
        await self.chat.stop()
        await self.notifications.stop()

    async def join_chat(self, chat_id: int) -> None:
        """Receive the chat's events; remembered across reconnects."""
        self.joined_chats.add(chat_id)
        await self.chat.send({"type": ClientCommand.JOIN_CHAT.value, "data": {"chatId": chat_id}})

    async def leave_chat(self, chat_id: int) -> None:
        self.joined_chats.discard(chat_id)
        if self.chat.connected:
            await self.chat.send({"type": ClientCommand.LEAVE_CHAT.value, "data": {"chatId": chat_id}})

    def receive_push(self, notification: dict) -> bool:
        """Hand a notification that arrived through the push channel to the store."""
        return self.notification_store.receive_push(notification)

    # ============== Private Methods ==============

    def _on_message_deleted(self, data: dict) -> None:
        self.chat_store.delete_message(data.get("chatId"), data.get("messageId"))

    def _on_chat_state_change(self, previous: ChannelState, current: ChannelState) -> None:
        # Group membership lives on the server connection; a new connection starts empty
        if previous == ChannelState.RECONNECTING and current == ChannelState.CONNECTED and self.joined_chats:
            task = asyncio.create_task(self._rejoin())
            self._rejoin_tasks.add(task)
            task.add_done_callback(self._rejoin_tasks.discard)

    async def _rejoin(self) -> None:
        for chat_id in sorted(self.joined_chats):
            try:
                await self.chat.send({"type": ClientCommand.JOIN_CHAT.value, "data": {"chatId": chat_id}})
            except (ChannelUnavailableError, ConnectionLostError):
                return

    def _offline(self, hub: HubName, error: str | None) -> None:
        logger.warning(f"Hub {hub.value} is offline: {error}")
        if self._on_offline is not None:
            self._on_offline(hub, error)
