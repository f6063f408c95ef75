"""
Hub Event Schemas

Domain events handed to the broadcaster by the write path, plus the names of
every frame that crosses a hub connection.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, model_validator

from relay.constants.hubs import HubName, chat_group, user_group


class HubEvent(str, Enum):
    """Server -> client events."""

    # Chat hub
    RECEIVE_MESSAGE = "ReceiveMessage"
    MESSAGE_DELETED = "MessageDeleted"
    CHAT_UPDATED = "ChatUpdated"

    # Notification hub
    RECEIVE_NOTIFICATION = "ReceiveNotification"


class SystemFrame(str, Enum):
    """Control frames sent by the server."""

    CONNECTED = "connected"
    PONG = "pong"
    JOINED = "joined"
    LEFT = "left"
    ERROR = "error"


class ClientCommand(str, Enum):
    """Client -> server frames."""

    JOIN_CHAT = "JoinChat"
    LEAVE_CHAT = "LeaveChat"
    PING = "ping"
    HEARTBEAT = "heartbeat"


EVENT_HUBS: dict[HubEvent, HubName] = {
    HubEvent.RECEIVE_MESSAGE: HubName.CHAT,
    HubEvent.MESSAGE_DELETED: HubName.CHAT,
    HubEvent.CHAT_UPDATED: HubName.CHAT,
    HubEvent.RECEIVE_NOTIFICATION: HubName.NOTIFICATIONS,
}

# Events that carry something worth showing on a device that is offline
PUSHABLE_EVENTS = frozenset({HubEvent.RECEIVE_MESSAGE, HubEvent.RECEIVE_NOTIFICATION})


class DomainEvent(BaseModel):
    """Something that happened on the write path and should reach clients."""

    kind: HubEvent
    target_user_id: int | None = None
    chat_id: int | None = None
    payload: Any = None

    @model_validator(mode="after")
    def _require_target(self) -> "DomainEvent":
        if self.target_user_id is None and self.chat_id is None:
            raise ValueError("DomainEvent needs a target_user_id or a chat_id")
        return self

    @property
    def hub(self) -> HubName:
        return EVENT_HUBS[self.kind]

    @property
    def group_key(self) -> str:
        # User scope wins when both are given
        if self.target_user_id is not None:
            return user_group(self.target_user_id)
        return chat_group(self.chat_id)

    @property
    def is_pushable(self) -> bool:
        return self.target_user_id is not None and self.kind in PUSHABLE_EVENTS


def create_envelope(message_type: str, data: Any = None, **extra: Any) -> dict:
    """Create a standardized frame envelope."""
    envelope = {
        "type": message_type.value if isinstance(message_type, Enum) else message_type,
        "data": data,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    envelope.update(extra)
    return envelope
