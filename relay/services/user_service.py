"""
User Moderation Service

Bans take effect on the live hubs immediately: the flag is stored and every
open connection of the user is closed.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from relay.constants.hubs import CLOSE_BANNED, CLOSE_DISCONNECTED
from relay.exceptions import UserNotFoundError
from relay.models.user import User
from relay.services.connection_registry import HubRegistry, get_hub_registry

logger = logging.getLogger(__name__)


async def get_user(db: AsyncSession, user_id: int) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise UserNotFoundError(user_id)
    return user


async def set_user_banned(
    db: AsyncSession,
    user_id: int,
    banned: bool,
    hubs: HubRegistry | None = None,
) -> dict:
    """
    Ban or unban a user.

    Returns:
        dict with the new flag and the number of live connections closed
    """
    user = await get_user(db, user_id)
    user.banned = banned
    await db.commit()

    disconnected = 0
    if banned:
        disconnected = await force_disconnect_user(user_id, reason="account suspended", code=CLOSE_BANNED, hubs=hubs)

    logger.info(f"User {user_id} banned={banned} ({disconnected} connection(s) closed)")
    return {"user_id": user_id, "banned": banned, "disconnected": disconnected}


async def force_disconnect_user(
    user_id: int,
    reason: str = "",
    code: int = CLOSE_DISCONNECTED,
    hubs: HubRegistry | None = None,
) -> int:
    """
    Close every live hub connection of a user.

    The default code lets clients reconnect; bans pass ``CLOSE_BANNED``.
    """
    hubs = hubs or get_hub_registry()
    return await hubs.disconnect_user(user_id, code=code, reason=reason)
