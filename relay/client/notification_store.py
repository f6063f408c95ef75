"""
Notification Store

Client-side notification list and unread badge. Live hub events, push
notifications and REST polls may all report the same notification; each id
is listed once and counted unread at most once.
"""

import logging

logger = logging.getLogger(__name__)


class NotificationStore:
    def __init__(self):
        self.notifications: list[dict] = []
        self.unread_count = 0
        # Ids already counted in unread_count
        self._counted: set = set()

    def receive_live(self, notification: dict) -> None:
        """Apply a ``ReceiveNotification`` event: newest first, one entry per id."""
        notification_id = notification.get("id")
        existing = self._find(notification_id)
        if existing is not None:
            self.notifications.remove(existing)

        self.notifications.insert(0, notification)
        self._count_if_unread(notification)

    def receive_push(self, notification: dict) -> bool:
        """
        Apply a notification delivered through the push channel.

        Returns:
            False if the id is already listed
        """
        if self._find(notification.get("id")) is not None:
            return False

        self.notifications.insert(0, notification)
        self._count_if_unread(notification)
        return True

    def apply_polled(self, notifications: list[dict]) -> None:
        """Replace the list with the server's; the badge follows the server."""
        self.notifications = list(notifications)
        unread_ids = {n.get("id") for n in self.notifications if not n.get("isRead")}
        self.unread_count = len(unread_ids)
        self._counted = unread_ids

    def mark_as_read(self, notification_id) -> bool:
        """Optimistically mark one notification read."""
        notification = self._find(notification_id)
        if notification is None or notification.get("isRead"):
            return False

        notification["isRead"] = True
        self.unread_count = max(0, self.unread_count - 1)
        return True

    def mark_all_as_read(self) -> None:
        for notification in self.notifications:
            notification["isRead"] = True
        self.unread_count = 0

    def _find(self, notification_id) -> dict | None:
        return next((n for n in self.notifications if n.get("id") == notification_id), None)

    def _count_if_unread(self, notification: dict) -> None:
        notification_id = notification.get("id")
        if notification.get("isRead") or notification_id in self._counted:
            return
        self._counted.add(notification_id)
        self.unread_count += 1
