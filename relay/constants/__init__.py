"""Constants package for Social Relay."""

from .auth import ACCESS_TOKEN_EXPIRE_MINUTES, ACCESS_TOKEN_QUERY_PARAM, ALGORITHM, SECRET_KEY
from .hubs import (
    CLOSE_BANNED,
    CLOSE_POLICY_VIOLATION,
    CLOSE_STALE,
    HubName,
    chat_group,
    is_user_group,
    user_group,
)

__all__ = [
    # Auth constants
    "SECRET_KEY",
    "ALGORITHM",
    "ACCESS_TOKEN_EXPIRE_MINUTES",
    "ACCESS_TOKEN_QUERY_PARAM",
    # Hub constants
    "HubName",
    "CLOSE_BANNED",
    "CLOSE_POLICY_VIOLATION",
    "CLOSE_STALE",
    "chat_group",
    "user_group",
    "is_user_group",
]
