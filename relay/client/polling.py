"""
REST Poller

Periodic fallback that refreshes the stores from the REST API. It runs
alongside the live channels; the stores make the overlap harmless.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from relay.client.api import RelayApiClient
from relay.client.chat_store import ChatStore
from relay.client.notification_store import NotificationStore
from relay.config import settings
from relay.exceptions import RelayException

logger = logging.getLogger(__name__)


class Poller:
    def __init__(
        self,
        api: RelayApiClient,
        chat_store: ChatStore | None = None,
        notification_store: NotificationStore | None = None,
        interval: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.api = api
        self.chat_store = chat_store
        self.notification_store = notification_store
        self.interval = interval or settings.poll_interval_seconds
        self._sleep = sleep
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def poll_once(self) -> None:
        """One refresh of every attached store. A failing endpoint does not stop the others."""
        if self.chat_store is not None:
            await self._guard("chats", self._poll_chats)
        if self.notification_store is not None:
            await self._guard("notifications", self._poll_notifications)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(f"Polling every {self.interval}s")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        # First poll happens immediately
        while True:
            await self.poll_once()
            await self._sleep(self.interval)

    async def _poll_chats(self) -> None:
        self.chat_store.apply_polled_chats(await self.api.get_chats())

        chat_id = self.chat_store.selected_chat_id
        if chat_id is not None:
            messages, marked_as_read_count = await self.api.get_messages(chat_id)
            self.chat_store.apply_polled_messages(chat_id, messages, marked_as_read_count)

    async def _poll_notifications(self) -> None:
        self.notification_store.apply_polled(await self.api.get_notifications())

    async def _guard(self, name: str, poll: Callable[[], Awaitable[None]]) -> None:
        try:
            await poll()
        except RelayException as e:
            logger.warning(f"Polling {name} failed: {e.message}")
        except Exception as e:
            logger.error(f"Polling {name} failed unexpectedly: {e!r}", exc_info=True)
