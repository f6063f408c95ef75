"""Client side of the real-time layer: hub channels, stores and REST polling."""

from .api import RelayApiClient
from .chat_store import ChatStore
from .hub_client import HubClient
from .notification_store import NotificationStore
from .polling import Poller
from .reconnection import BackoffPolicy, ChannelState, ReconnectionController

__all__ = [
    "BackoffPolicy",
    "ChannelState",
    "ChatStore",
    "HubClient",
    "NotificationStore",
    "Poller",
    "ReconnectionController",
    "RelayApiClient",
]
