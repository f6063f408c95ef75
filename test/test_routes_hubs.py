"""
Tests for the hub endpoints: handshake, client frames and the admin REST surface.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import WebSocketDisconnect

from relay.constants.hubs import CLOSE_BANNED, CLOSE_DISCONNECTED, CLOSE_POLICY_VIOLATION, HubName, chat_group, user_group
from relay.routes.hubs import _serve_hub, handle_client_frame
from relay.services.connection_registry import ConnectionRegistry
from utils.mocks import FakeWebSocket, wait_until


async def open_hub(hubs, hub: HubName, token: str | None, user_id: int | None = None):
    """Run the hub handler against a fake socket until it is registered (or closed)."""
    ws = FakeWebSocket()
    task = asyncio.create_task(_serve_hub(ws, hub, token))
    await wait_until(lambda: ws.closed or task.done() or (user_id is not None and hubs[hub].has_user(user_id)))
    return ws, task


class TestHandshake:
    @pytest.mark.asyncio
    async def test_valid_token_registers_user(self, hubs, test_user, make_token):
        ws, task = await open_hub(hubs, HubName.CHAT, make_token(test_user), test_user.id)

        assert ws.accepted
        assert hubs.chat.has_user(test_user.id)
        await hubs.flush()
        assert ws.frames("connected")[0]["data"]["hub"] == "chat"

        ws.disconnect()
        await task
        assert not hubs.chat.has_user(test_user.id)

    @pytest.mark.asyncio
    async def test_invalid_token_is_closed(self, hubs, setup_test_database):
        ws, task = await open_hub(hubs, HubName.NOTIFICATIONS, "not-a-jwt")
        await task

        assert ws.close_code == CLOSE_POLICY_VIOLATION
        assert hubs.get_stats()["total_connections"] == 0

    @pytest.mark.asyncio
    async def test_missing_token_is_closed(self, hubs, setup_test_database):
        ws, task = await open_hub(hubs, HubName.CHAT, None)
        await task

        assert ws.close_code == CLOSE_POLICY_VIOLATION

    @pytest.mark.asyncio
    async def test_banned_user_is_closed(self, hubs, banned_user, make_token):
        ws, task = await open_hub(hubs, HubName.CHAT, make_token(banned_user))
        await task

        assert ws.close_code == CLOSE_BANNED
        assert not hubs.is_user_online(banned_user.id)

    def test_rejected_over_real_websocket(self, client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/hubs/chat?access_token=garbage") as websocket:
                websocket.receive_json()

        assert exc_info.value.code == CLOSE_POLICY_VIOLATION


class TestClientFrames:
    @pytest.mark.asyncio
    async def test_join_chat_over_socket(self, hubs, test_user, make_token):
        ws, task = await open_hub(hubs, HubName.CHAT, make_token(test_user), test_user.id)

        ws.push_text(json.dumps({"type": "JoinChat", "data": {"chatId": 5}}))
        assert await wait_until(lambda: ws.frames("joined"))

        snapshot = await hubs.chat.connections_for_group(chat_group(5))
        assert len(snapshot) == 1
        assert ws.frames("joined")[0]["data"] == {"chatId": 5}

        ws.disconnect()
        await task

    @pytest.mark.asyncio
    async def test_invalid_json_keeps_connection(self, hubs, test_user, make_token):
        ws, task = await open_hub(hubs, HubName.NOTIFICATIONS, make_token(test_user), test_user.id)

        ws.push_text("{not json")
        ws.push_text(json.dumps({"type": "ping"}))
        assert await wait_until(lambda: ws.frames("pong"))

        assert ws.frames("error")[0]["data"]["message"] == "Invalid JSON"
        assert hubs.notifications.has_user(test_user.id)

        ws.disconnect()
        await task

    @pytest.mark.asyncio
    async def test_any_frame_refreshes_heartbeat(self, hubs, test_user, make_token):
        ws, task = await open_hub(hubs, HubName.CHAT, make_token(test_user), test_user.id)
        connection = (await hubs.chat.connections_for_group(user_group(test_user.id)))[0]
        long_ago = datetime.now(timezone.utc) - timedelta(hours=1)
        connection.last_heartbeat = long_ago

        ws.push_text(json.dumps({"type": "JoinChat", "data": {"chatId": 5}}))
        assert await wait_until(lambda: ws.frames("joined"))

        assert connection.last_heartbeat > long_ago
        assert await hubs.cleanup_stale_connections(timeout_seconds=60) == 0
        assert not ws.closed

        ws.disconnect()
        await task


class TestHandleClientFrame:
    @pytest.fixture
    async def chat(self):
        registry = ConnectionRegistry(HubName.CHAT)
        connection_id = await registry.register(FakeWebSocket(), user_id=1)
        yield registry, connection_id
        await registry.close_all()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "frame",
        [
            {"type": "JoinChat", "data": {"chatId": 3}},
            {"type": "JoinChat", "data": 3},
            {"type": "JoinChat", "chatId": "3"},
        ],
    )
    async def test_join_chat_shapes(self, chat, frame):
        registry, connection_id = chat

        reply = await handle_client_frame(registry, connection_id, frame)

        assert reply["type"] == "joined"
        assert reply["data"] == {"chatId": 3}
        assert chat_group(3) in registry.groups_of(connection_id)

    @pytest.mark.asyncio
    async def test_leave_chat(self, chat):
        registry, connection_id = chat
        await handle_client_frame(registry, connection_id, {"type": "JoinChat", "data": {"chatId": 3}})

        reply = await handle_client_frame(registry, connection_id, {"type": "LeaveChat", "data": {"chatId": 3}})

        assert reply["type"] == "left"
        assert chat_group(3) not in registry.groups_of(connection_id)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("data", [None, {}, {"chatId": "abc"}, {"chatId": True}])
    async def test_join_chat_requires_chat_id(self, chat, data):
        registry, connection_id = chat

        reply = await handle_client_frame(registry, connection_id, {"type": "JoinChat", "data": data})

        assert reply["type"] == "error"
        assert reply["data"]["message"] == "chatId required"

    @pytest.mark.asyncio
    async def test_heartbeat(self, chat):
        registry, connection_id = chat

        for frame_type in ("ping", "heartbeat"):
            reply = await handle_client_frame(registry, connection_id, {"type": frame_type})
            assert reply["type"] == "pong"

    @pytest.mark.asyncio
    async def test_unknown_and_malformed_frames(self, chat):
        registry, connection_id = chat

        unknown = await handle_client_frame(registry, connection_id, {"type": "SendMessage"})
        malformed = await handle_client_frame(registry, connection_id, ["JoinChat", 3])

        assert unknown["data"]["message"] == "Unknown message type: SendMessage"
        assert malformed["type"] == "error"

    @pytest.mark.asyncio
    async def test_notification_hub_has_no_chat_groups(self):
        registry = ConnectionRegistry(HubName.NOTIFICATIONS)
        connection_id = await registry.register(FakeWebSocket(), user_id=1)

        reply = await handle_client_frame(registry, connection_id, {"type": "JoinChat", "data": {"chatId": 3}})

        assert reply["type"] == "error"
        assert registry.groups_of(connection_id) == {"user:1"}
        await registry.close_all()


class TestHubAdminApi:
    @pytest.mark.asyncio
    async def test_stats_requires_admin(self, async_client, auth_headers, admin_auth_headers, hubs):
        await hubs.chat.register(FakeWebSocket(), user_id=1)

        forbidden = await async_client.get("/api/hubs/stats", headers=auth_headers)
        allowed = await async_client.get("/api/hubs/stats", headers=admin_auth_headers)

        assert forbidden.status_code == 403
        assert allowed.status_code == 200
        assert allowed.json()["total_connections"] == 1
        assert allowed.json()["hubs"]["chat"]["total_connections"] == 1

    @pytest.mark.asyncio
    async def test_presence(self, async_client, auth_headers, hubs, other_user):
        await hubs.notifications.register(FakeWebSocket(), user_id=other_user.id)

        everyone = await async_client.get("/api/hubs/presence", headers=auth_headers)
        some = await async_client.get(
            "/api/hubs/presence", params=[("user_ids", other_user.id), ("user_ids", 999)], headers=auth_headers
        )

        assert everyone.json() == {"online_user_ids": [other_user.id]}
        assert some.json() == {"online": {str(other_user.id): True, "999": False}}

    @pytest.mark.asyncio
    async def test_force_disconnect(self, async_client, admin_auth_headers, hubs, other_user):
        chat_ws, notification_ws = FakeWebSocket(), FakeWebSocket()
        await hubs.chat.register(chat_ws, user_id=other_user.id)
        await hubs.notifications.register(notification_ws, user_id=other_user.id)

        response = await async_client.post(
            f"/api/hubs/users/{other_user.id}/disconnect", params={"reason": "maintenance"}, headers=admin_auth_headers
        )

        assert response.json() == {"user_id": other_user.id, "disconnected": 2}
        assert chat_ws.close_code == CLOSE_DISCONNECTED
        assert notification_ws.close_code == CLOSE_DISCONNECTED
        assert chat_ws.close_reason == "maintenance"
        assert not hubs.is_user_online(other_user.id)

    @pytest.mark.asyncio
    async def test_ban_closes_live_connections(self, async_client, admin_auth_headers, hubs, other_user, make_token):
        ws = FakeWebSocket()
        await hubs.chat.register(ws, user_id=other_user.id)

        response = await async_client.put(f"/api/hubs/users/{other_user.id}/ban", headers=admin_auth_headers)

        assert response.status_code == 200
        assert response.json() == {"user_id": other_user.id, "banned": True, "disconnected": 1}
        assert ws.close_code == CLOSE_BANNED

        # The ban also blocks the REST surface and new handshakes
        refused = await async_client.get(
            "/api/hubs/presence", headers={"Authorization": f"Bearer {make_token(other_user)}"}
        )
        assert refused.status_code == 403
        retry, task = await open_hub(hubs, HubName.CHAT, make_token(other_user))
        await task
        assert retry.close_code == CLOSE_BANNED

    @pytest.mark.asyncio
    async def test_unban(self, async_client, admin_auth_headers, banned_user):
        response = await async_client.put(
            f"/api/hubs/users/{banned_user.id}/ban", params={"banned": "false"}, headers=admin_auth_headers
        )

        assert response.json()["banned"] is False

    @pytest.mark.asyncio
    async def test_ban_unknown_user(self, async_client, admin_auth_headers):
        response = await async_client.put("/api/hubs/users/999/ban", headers=admin_auth_headers)

        assert response.status_code == 404
        assert response.json()["error"]["error_code"] == "RESOURCE_USER_NOT_FOUND"
