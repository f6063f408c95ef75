"""
Push Providers

Senders for durable push endpoints. Each sender delivers one message to one
subscription and reports a ``PushResult``; only ``GONE`` makes the caller
deactivate the subscription.

Providers:
    WebPushSender: browser Web Push with VAPID (pywebpush)
    ExpoPushSender: mobile tokens through the Expo push HTTP API (httpx)
"""

import asyncio
import enum
import json
import logging
from typing import Protocol

import httpx
from pywebpush import WebPushException, webpush

from relay.config import settings
from relay.exceptions import PushConfigurationError
from relay.models.push_subscription import PushSubscription, PushSubscriptionKind
from relay.schemas.push import PushMessage

logger = logging.getLogger(__name__)

# Provider status codes meaning the endpoint no longer exists
GONE_STATUS_CODES = frozenset({404, 410})

# Expo ticket error meaning the token was unregistered on the device
EXPO_DEVICE_NOT_REGISTERED = "DeviceNotRegistered"


class PushResult(str, enum.Enum):
    """Outcome of a single provider send."""

    SUCCESS = "success"
    GONE = "gone"
    TRANSIENT_FAILURE = "transient_failure"


class PushSender(Protocol):
    async def send(self, subscription: PushSubscription, message: PushMessage) -> PushResult: ...


def _short(endpoint: str, length: int = 50) -> str:
    return endpoint if len(endpoint) <= length else f"{endpoint[:length]}..."


class WebPushSender:
    """Send Web Push notifications signed with the server's VAPID key."""

    def __init__(
        self,
        vapid_private_key: str | None = None,
        vapid_subject: str | None = None,
        ttl: int | None = None,
        timeout: float | None = None,
    ):
        self.vapid_private_key = vapid_private_key or settings.vapid_private_key
        self.vapid_subject = vapid_subject or settings.vapid_subject
        self.ttl = ttl if ttl is not None else settings.push_ttl_seconds
        self.timeout = timeout or settings.push_timeout_seconds

    @property
    def configured(self) -> bool:
        return bool(self.vapid_private_key)

    async def send(self, subscription: PushSubscription, message: PushMessage) -> PushResult:
        if not self.configured:
            raise PushConfigurationError()

        payload = json.dumps(message.to_web_payload(), default=str)

        try:
            # pywebpush is blocking (requests); keep it off the event loop
            await asyncio.to_thread(
                webpush,
                subscription_info=subscription.to_subscription_info(),
                data=payload,
                vapid_private_key=self.vapid_private_key,
                vapid_claims={"sub": self.vapid_subject},
                ttl=self.ttl,
                timeout=self.timeout,
            )
        except WebPushException as e:
            status_code = e.response.status_code if e.response is not None else None
            if status_code in GONE_STATUS_CODES:
                logger.warning(
                    f"Web push endpoint gone for user {subscription.user_id} "
                    f"({_short(subscription.endpoint)}), status {status_code}"
                )
                return PushResult.GONE
            logger.error(f"WebPushException for user {subscription.user_id}: {e}, status {status_code}")
            return PushResult.TRANSIENT_FAILURE

        logger.info(f"Web push sent to user {subscription.user_id} ({_short(subscription.endpoint)})")
        return PushResult.SUCCESS


class ExpoPushSender:
    """Send mobile notifications through the Expo push service."""

    def __init__(
        self,
        url: str | None = None,
        access_token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url or settings.expo_push_url
        self.access_token = access_token or settings.expo_access_token
        self.timeout = timeout or settings.push_timeout_seconds
        self._transport = transport

    def _headers(self) -> dict:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    async def send(self, subscription: PushSubscription, message: PushMessage) -> PushResult:
        body = [
            {
                "to": subscription.endpoint,
                "title": message.title,
                "body": message.body,
                "data": message.data,
                "sound": "default",
            }
        ]

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                response = await client.post(self.url, content=json.dumps(body, default=str), headers=self._headers())
        except httpx.TimeoutException:
            logger.error(f"Expo push timed out for user {subscription.user_id}")
            return PushResult.TRANSIENT_FAILURE
        except httpx.RequestError as e:
            logger.error(f"Expo push request error for user {subscription.user_id}: {e}")
            return PushResult.TRANSIENT_FAILURE

        if response.status_code >= 400:
            logger.error(f"Expo push HTTP {response.status_code} for user {subscription.user_id}")
            return PushResult.TRANSIENT_FAILURE

        try:
            parsed = response.json()
        except ValueError:
            logger.error(f"Expo push returned a non-JSON body for user {subscription.user_id}")
            return PushResult.TRANSIENT_FAILURE

        tickets = (parsed.get("data") if isinstance(parsed, dict) else None) or []
        ticket = tickets[0] if isinstance(tickets, list) and tickets else tickets
        if not isinstance(ticket, dict):
            return PushResult.TRANSIENT_FAILURE

        if ticket.get("status") == "ok":
            logger.info(f"Expo push sent to user {subscription.user_id}")
            return PushResult.SUCCESS

        error = (ticket.get("details") or {}).get("error")
        if error == EXPO_DEVICE_NOT_REGISTERED:
            logger.warning(f"Expo token unregistered for user {subscription.user_id}")
            return PushResult.GONE

        logger.error(f"Expo push error for user {subscription.user_id}: {ticket.get('message')} ({error})")
        return PushResult.TRANSIENT_FAILURE


def default_senders() -> dict[PushSubscriptionKind, PushSender]:
    return {
        PushSubscriptionKind.WEB: WebPushSender(),
        PushSubscriptionKind.EXPO: ExpoPushSender(),
    }
