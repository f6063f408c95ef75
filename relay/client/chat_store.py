"""
Chat Store

Client-side chat state fed by three independent producers: live hub events,
REST polling and the client's own sends. Every write is idempotent by message
id so the same message arriving twice is stored once.

Messages and chats are kept as the wire dicts (camelCase keys).
"""

import logging
import time
from typing import Any

logger = logging.getLogger(__name__)


class ChatStore:
    def __init__(self):
        self.chats: list[dict] = []
        self.messages: dict[int, list[dict]] = {}
        self.selected_chat_id: int | None = None
        self.stale_chat_ids: set[int] = set()
        self.last_update: float | None = None

    # ============== Live Events ==============

    def receive_message(self, message: dict) -> bool:
        """
        Apply a ``ReceiveMessage`` event.

        Returns:
            True if the message was new
        """
        chat_id = message.get("chatId")
        if chat_id is None:
            logger.warning("Dropping message without chatId")
            return False

        added = self._append(chat_id, message)
        if added:
            increment = chat_id != self.selected_chat_id
            self._bump_chat(chat_id, message, increment_unread=increment)
        self._touch()
        return added

    def delete_message(self, chat_id: int, message_id: int) -> None:
        """Apply a ``MessageDeleted`` event or a local delete."""
        if chat_id in self.messages:
            self.messages[chat_id] = [m for m in self.messages[chat_id] if m.get("id") != message_id]
        self._touch()

    def mark_chat_updated(self, chat_id: Any) -> None:
        """Apply a ``ChatUpdated`` event: the chat list needs a refresh."""
        if chat_id is not None:
            self.stale_chat_ids.add(chat_id)
        self._touch()

    # ============== Local Actions ==============

    def select_chat(self, chat_id: int | None) -> None:
        self.selected_chat_id = chat_id

    def add_sent_message(self, chat_id: int, message: dict) -> bool:
        """Store the server's echo of a message this client sent."""
        added = self._append(chat_id, message)
        if added:
            self._bump_chat(chat_id, message, increment_unread=False)
        self._touch()
        return added

    # ============== Polling ==============

    def apply_polled_chats(self, chats: list[dict]) -> None:
        """Replace the chat list with the server's."""
        self.chats = list(chats)
        self.stale_chat_ids.clear()
        self._touch()

    def apply_polled_messages(self, chat_id: int, messages: list[dict], marked_as_read_count: int = 0) -> None:
        """
        Replace a chat's messages with the server's sequence.

        The server marks messages read when they are fetched; a positive
        ``marked_as_read_count`` clears the local unread badge.
        """
        self.messages[chat_id] = list(messages)

        if marked_as_read_count > 0:
            chat = self._find_chat(chat_id)
            if chat is not None:
                chat["unreadCount"] = 0
                if messages:
                    chat["lastMessage"] = messages[-1]
        self._touch()

    # ============== Queries ==============

    def messages_for(self, chat_id: int) -> list[dict]:
        return self.messages.get(chat_id, [])

    def unread_count(self, chat_id: int) -> int:
        chat = self._find_chat(chat_id)
        return chat.get("unreadCount", 0) if chat else 0

    @property
    def total_unread(self) -> int:
        return sum(chat.get("unreadCount") or 0 for chat in self.chats)

    # ============== Private Methods ==============

    def _append(self, chat_id: int, message: dict) -> bool:
        sequence = self.messages.setdefault(chat_id, [])
        if any(m.get("id") == message.get("id") for m in sequence):
            return False
        sequence.append(message)
        return True

    def _find_chat(self, chat_id: int) -> dict | None:
        return next((c for c in self.chats if c.get("id") == chat_id), None)

    def _bump_chat(self, chat_id: int, message: dict, increment_unread: bool) -> None:
        chat = self._find_chat(chat_id)
        if chat is None:
            # Unknown chat: the next chat poll brings it in
            self.stale_chat_ids.add(chat_id)
            return

        unread = chat.get("unreadCount") or 0
        updated = {**chat, "lastMessage": message, "unreadCount": unread + 1 if increment_unread else unread}
        self.chats.remove(chat)
        self.chats.insert(0, updated)

    def _touch(self) -> None:
        self.last_update = time.time()
