"""
Hub Routes

Duplex endpoints for the chat and notification hubs, plus the operational
REST surface over the live registries.
"""

import json
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession

from relay.auth import get_current_user, get_user_from_token, require_admin
from relay.constants.auth import ACCESS_TOKEN_QUERY_PARAM
from relay.constants.hubs import CLOSE_BANNED, CLOSE_POLICY_VIOLATION, HubName
from relay.database import get_db, get_db_context
from relay.models.user import User
from relay.schemas.events import ClientCommand, SystemFrame, create_envelope
from relay.services.connection_registry import ConnectionRegistry, HubRegistry, get_hub_registry
from relay.services.user_service import force_disconnect_user, set_user_banned

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Hubs"])
api_router = APIRouter(prefix="/api/hubs", tags=["Hubs"])


@router.websocket("/hubs/chat")
async def chat_hub(
    websocket: WebSocket,
    access_token: Annotated[str | None, Query(alias=ACCESS_TOKEN_QUERY_PARAM)] = None,
):
    """
    Chat hub.

    Message Types (Client -> Server):
    - JoinChat {chatId}: receive events addressed to the chat
    - LeaveChat {chatId}: stop receiving them
    - ping/heartbeat: keep the connection alive

    Message Types (Server -> Client):
    - ReceiveMessage, MessageDeleted, ChatUpdated
    - connected, pong, joined, left, error
    """
    await _serve_hub(websocket, HubName.CHAT, access_token)


@router.websocket("/hubs/notifications")
async def notification_hub(
    websocket: WebSocket,
    access_token: Annotated[str | None, Query(alias=ACCESS_TOKEN_QUERY_PARAM)] = None,
):
    """Notification hub. Pushes ReceiveNotification; accepts ping/heartbeat."""
    await _serve_hub(websocket, HubName.NOTIFICATIONS, access_token)


async def _serve_hub(websocket: WebSocket, hub: HubName, access_token: str | None) -> None:
    await websocket.accept()

    async with get_db_context() as db:
        user = await get_user_from_token(access_token, db)

    if user is None:
        logger.info(f"Hub {hub.value}: rejected handshake with invalid token")
        await websocket.close(code=CLOSE_POLICY_VIOLATION, reason="invalid token")
        return
    if user.banned:
        logger.info(f"Hub {hub.value}: rejected banned user {user.id}")
        await websocket.close(code=CLOSE_BANNED, reason="account suspended")
        return

    registry = get_hub_registry()[hub]
    connection_id = await registry.register(websocket, user.id)

    try:
        while True:
            data = await websocket.receive_text()
            # Any client frame counts as a heartbeat
            await registry.touch(connection_id)

            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                await registry.send_to_connection(
                    connection_id, create_envelope(SystemFrame.ERROR, {"message": "Invalid JSON"})
                )
                continue

            response = await handle_client_frame(registry, connection_id, message)
            if response:
                await registry.send_to_connection(connection_id, response)

    except WebSocketDisconnect:
        logger.info(f"Hub {hub.value}: websocket disconnected: {connection_id}")
    except Exception as e:
        logger.error(f"Hub {hub.value}: websocket error: {e}", extra={"connection_id": connection_id})
    finally:
        await registry.unregister(connection_id)


async def handle_client_frame(registry: ConnectionRegistry, connection_id: str, message: Any) -> dict | None:
    """
    Handle one client -> server frame.

    Returns:
        Reply frame, if any
    """
    if not isinstance(message, dict):
        return create_envelope(SystemFrame.ERROR, {"message": "Frame must be a JSON object"})

    msg_type = message.get("type")

    if msg_type in (ClientCommand.PING.value, ClientCommand.HEARTBEAT.value):
        await registry.touch(connection_id)
        return create_envelope(SystemFrame.PONG)

    if registry.hub == HubName.CHAT.value and msg_type in (
        ClientCommand.JOIN_CHAT.value,
        ClientCommand.LEAVE_CHAT.value,
    ):
        chat_id = _chat_id_of(message)
        if chat_id is None:
            return create_envelope(SystemFrame.ERROR, {"message": "chatId required"})

        if msg_type == ClientCommand.JOIN_CHAT.value:
            await registry.join_group(connection_id, chat_id)
            return create_envelope(SystemFrame.JOINED, {"chatId": chat_id})

        await registry.leave_group(connection_id, chat_id)
        return create_envelope(SystemFrame.LEFT, {"chatId": chat_id})

    return create_envelope(SystemFrame.ERROR, {"message": f"Unknown message type: {msg_type}"})


def _chat_id_of(message: dict) -> int | None:
    data = message.get("data")
    raw = data.get("chatId") if isinstance(data, dict) else data
    if raw is None:
        raw = message.get("chatId")
    if isinstance(raw, bool):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


# ============== REST ==============


@api_router.get("/stats")
async def get_hub_stats(
    _: User = Depends(require_admin),
    hubs: HubRegistry = Depends(get_hub_registry),
) -> dict:
    """
    Get hub connection statistics.

    Returns connection counts per hub and group.
    """
    return hubs.get_stats()


@api_router.get("/presence")
async def get_presence(
    user_ids: Annotated[list[int] | None, Query()] = None,
    _: User = Depends(get_current_user),
    hubs: HubRegistry = Depends(get_hub_registry),
) -> dict:
    """Which of ``user_ids`` have a live connection (all online users when omitted)."""
    if not user_ids:
        return {"online_user_ids": hubs.get_online_user_ids()}
    return {"online": {str(user_id): hubs.is_user_online(user_id) for user_id in user_ids}}


# ============== Admin Endpoints ==============


@api_router.post("/users/{user_id}/disconnect")
async def disconnect_user(
    user_id: int,
    reason: str = "disconnected by administrator",
    admin: User = Depends(require_admin),
    hubs: HubRegistry = Depends(get_hub_registry),
) -> dict:
    """Close every live hub connection of a user."""
    closed = await force_disconnect_user(user_id, reason=reason, hubs=hubs)
    logger.info(f"Admin {admin.id} disconnected user {user_id} ({closed} connection(s))")
    return {"user_id": user_id, "disconnected": closed}


@api_router.put("/users/{user_id}/ban")
async def ban_user(
    user_id: int,
    banned: bool = True,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    hubs: HubRegistry = Depends(get_hub_registry),
) -> dict:
    """Ban (or unban) a user; a ban closes their live connections at once."""
    result = await set_user_banned(db, user_id, banned, hubs=hubs)
    logger.info(f"Admin {admin.id} set banned={banned} for user {user_id}")
    return result
