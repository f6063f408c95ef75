"""
Hub Constants

Hub names, group key helpers and websocket close codes.
"""

from enum import Enum


class HubName(str, Enum):
    """Logical duplex channels exposed by the server."""

    CHAT = "chat"
    NOTIFICATIONS = "notifications"


USER_GROUP_PREFIX = "user"
CHAT_GROUP_PREFIX = "chat"

# Close codes
CLOSE_POLICY_VIOLATION = 1008
CLOSE_TRY_AGAIN_LATER = 1013
CLOSE_DISCONNECTED = 4000
CLOSE_BANNED = 4003
CLOSE_STALE = 4008


def user_group(user_id: int) -> str:
    return f"{USER_GROUP_PREFIX}:{user_id}"


def chat_group(chat_id: int) -> str:
    return f"{CHAT_GROUP_PREFIX}:{chat_id}"


def is_user_group(group: str) -> bool:
    return group.startswith(f"{USER_GROUP_PREFIX}:")
