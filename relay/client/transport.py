"""
Hub Transport

WebSocket connections to the relay hubs. The bearer token travels as the
``access_token`` query parameter because browsers and most mobile runtimes
cannot set headers on a websocket handshake.
"""

import json
import logging
from collections.abc import Callable
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed

from relay.constants.auth import ACCESS_TOKEN_QUERY_PARAM
from relay.constants.hubs import HubName
from relay.exceptions import ConnectionLostError

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], str | None]


def hub_url(base_url: str, hub: HubName | str, token: str | None = None) -> str:
    """Build the websocket URL of a hub from the API base URL."""
    hub_name = hub.value if isinstance(hub, HubName) else hub
    base = base_url.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://") :]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://") :]

    url = f"{base}/hubs/{hub_name}"
    if token:
        url = f"{url}?{urlencode({ACCESS_TOKEN_QUERY_PARAM: token})}"
    return url


class HubSocket:
    """One open hub connection speaking JSON frames."""

    def __init__(self, websocket):
        self._websocket = websocket

    async def recv(self) -> dict:
        try:
            raw = await self._websocket.recv()
        except ConnectionClosed as e:
            close = e.rcvd
            raise ConnectionLostError(
                code=close.code if close is not None else None,
                reason=close.reason if close is not None else "",
            ) from e

        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Discarding non-JSON hub frame")
            return {}

    async def send(self, frame: dict) -> None:
        try:
            await self._websocket.send(json.dumps(frame))
        except ConnectionClosed as e:
            raise ConnectionLostError(reason=str(e)) from e

    async def close(self) -> None:
        await self._websocket.close()


class WebSocketHubTransport:
    """Opens connections to one hub with the caller's current credential."""

    def __init__(
        self,
        base_url: str,
        hub: HubName,
        token_provider: TokenProvider,
        open_timeout: float | None = None,
    ):
        self.base_url = base_url
        self.hub = hub
        self._token_provider = token_provider
        self._open_timeout = open_timeout

    async def connect(self) -> HubSocket:
        url = hub_url(self.base_url, self.hub, self._token_provider())
        websocket = await websockets.connect(url, open_timeout=self._open_timeout)
        logger.debug(f"Opened websocket to hub {self.hub.value}")
        return HubSocket(websocket)
