from .push_subscription import PushSubscription, PushSubscriptionKind
from .user import User

__all__ = [
    "PushSubscription",
    "PushSubscriptionKind",
    "User",
]
