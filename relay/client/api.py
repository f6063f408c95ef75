"""
Relay REST Client

Thin httpx client for the REST endpoints the real-time layer polls and the
push registration endpoints.
"""

import logging
from collections.abc import Callable
from typing import Any

import httpx

from relay.config import settings
from relay.exceptions import AuthenticationError, ServiceError

logger = logging.getLogger(__name__)


class RelayApiClient:
    """
    REST client bound to one user's credential.

    Example:
        api = RelayApiClient("https://social.example.com", lambda: token)
        chats = await api.get_chats()
    """

    def __init__(
        self,
        base_url: str,
        token_provider: Callable[[], str | None],
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._token_provider = token_provider
        self._client = httpx.AsyncClient(
            base_url=f"{self.base_url}/api",
            timeout=timeout or settings.connect_timeout_seconds,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "RelayApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ============== Chats ==============

    async def get_chats(self) -> list[dict]:
        return _expect(await self._request("GET", "/chats"), list, "GET /chats")

    async def get_messages(self, chat_id: int) -> tuple[list[dict], int]:
        """
        Fetch a chat's messages. The server marks them read as a side effect.

        Returns:
            (messages, marked_as_read_count)
        """
        path = f"/chats/{chat_id}/messages"
        data = _expect(await self._request("GET", path), dict, f"GET {path}")
        return _expect(data.get("messages") or [], list, f"GET {path}"), data.get("markedAsReadCount") or 0

    # ============== Notifications ==============

    async def get_notifications(self) -> list[dict]:
        return _expect(await self._request("GET", "/notifications"), list, "GET /notifications")

    async def mark_notification_read(self, notification_id: int) -> None:
        await self._request("PUT", f"/notifications/{notification_id}/read")

    async def mark_all_notifications_read(self) -> None:
        await self._request("PUT", "/notifications/read-all")

    # ============== Push ==============

    async def get_vapid_public_key(self) -> str:
        data = await self._request("GET", "/push/public-key")
        return data["publicKey"]

    async def subscribe_web_push(self, subscription: dict) -> int:
        """Register a browser ``PushSubscription.toJSON()`` payload."""
        data = await self._request("POST", "/push/subscribe", json=subscription)
        return data["id"]

    async def register_expo_token(self, token: str, device_type: str | None = None, device_name: str | None = None) -> int:
        data = await self._request(
            "POST",
            "/push/expo/register",
            json={"token": token, "deviceType": device_type, "deviceName": device_name},
        )
        return data["id"]

    async def unregister_all_push(self) -> None:
        """Drop every push endpoint of the user (logout)."""
        await self._request("DELETE", "/push/unsubscribe-all")
        await self._request("DELETE", "/push/expo/unregister-all")

    # ============== Private Methods ==============

    async def _request(self, method: str, path: str, json: Any = None) -> Any:
        headers = {"Accept": "application/json"}
        token = self._token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self._client.request(method, path, json=json, headers=headers)
        except httpx.TimeoutException:
            raise ServiceError(f"{method} {path} timed out", service="relay-api")
        except httpx.RequestError as e:
            raise ServiceError(f"{method} {path} failed: {e}", service="relay-api")

        if response.status_code == 401:
            raise AuthenticationError()
        if response.status_code >= 400:
            logger.warning(f"{method} {path} returned {response.status_code}")
            raise ServiceError(f"{method} {path} returned {response.status_code}", service="relay-api")

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            raise ServiceError(f"{method} {path} returned a non-JSON body", service="relay-api")


def _expect(data: Any, kind: type, what: str) -> Any:
    if not isinstance(data, kind):
        raise ServiceError(f"{what} returned an unexpected body", service="relay-api")
    return data
