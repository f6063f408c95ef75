"""
Tests for the Web Push and Expo push senders and push message building.
"""

import json
from types import SimpleNamespace

import httpx
import pytest
from pywebpush import WebPushException

import relay.services.push_providers as providers_module
from relay.exceptions import PushConfigurationError
from relay.models.push_subscription import PushSubscription, PushSubscriptionKind
from relay.schemas.events import DomainEvent, HubEvent
from relay.schemas.push import PushMessage
from relay.services.push_dispatcher import build_push_message
from relay.services.push_providers import ExpoPushSender, PushResult, WebPushSender


def web_subscription() -> PushSubscription:
    return PushSubscription(
        id=1,
        user_id=1,
        kind=PushSubscriptionKind.WEB,
        endpoint="https://push.example.com/abc",
        p256dh="p256dh-key",
        auth="auth-secret",
    )


def expo_subscription() -> PushSubscription:
    return PushSubscription(id=2, user_id=1, kind=PushSubscriptionKind.EXPO, endpoint="ExponentPushToken[xyz]")


MESSAGE = PushMessage(title="New follower", body="alice started following you", tag="notification-1")


def expo_sender(handler) -> ExpoPushSender:
    return ExpoPushSender(url="https://expo.test/push", transport=httpx.MockTransport(handler))


class TestWebPushSender:
    @pytest.mark.asyncio
    async def test_unconfigured_sender_refuses(self, monkeypatch):
        monkeypatch.setattr(providers_module.settings, "vapid_private_key", None)

        with pytest.raises(PushConfigurationError):
            await WebPushSender().send(web_subscription(), MESSAGE)

    @pytest.mark.asyncio
    async def test_success(self, monkeypatch):
        calls = []

        def fake_webpush(**kwargs):
            calls.append(kwargs)

        monkeypatch.setattr(providers_module, "webpush", fake_webpush)

        result = await WebPushSender(vapid_private_key="private", vapid_subject="mailto:ops@example.com").send(
            web_subscription(), MESSAGE
        )

        assert result == PushResult.SUCCESS
        assert calls[0]["subscription_info"]["endpoint"] == "https://push.example.com/abc"
        assert calls[0]["vapid_claims"] == {"sub": "mailto:ops@example.com"}
        payload = json.loads(calls[0]["data"])
        assert payload["title"] == "New follower"
        assert payload["tag"] == "notification-1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [404, 410])
    async def test_gone_endpoint(self, monkeypatch, status_code):
        def fake_webpush(**kwargs):
            raise WebPushException("Push failed", response=SimpleNamespace(status_code=status_code))

        monkeypatch.setattr(providers_module, "webpush", fake_webpush)

        result = await WebPushSender(vapid_private_key="private").send(web_subscription(), MESSAGE)

        assert result == PushResult.GONE

    @pytest.mark.asyncio
    async def test_other_provider_error_is_transient(self, monkeypatch):
        def fake_webpush(**kwargs):
            raise WebPushException("Push failed", response=SimpleNamespace(status_code=500))

        monkeypatch.setattr(providers_module, "webpush", fake_webpush)

        result = await WebPushSender(vapid_private_key="private").send(web_subscription(), MESSAGE)

        assert result == PushResult.TRANSIENT_FAILURE


class TestExpoPushSender:
    @pytest.mark.asyncio
    async def test_success(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"data": [{"status": "ok", "id": "ticket-1"}]})

        result = await expo_sender(handler).send(expo_subscription(), MESSAGE)

        assert result == PushResult.SUCCESS
        body = json.loads(requests[0].content)
        assert body[0]["to"] == "ExponentPushToken[xyz]"
        assert body[0]["title"] == "New follower"

    @pytest.mark.asyncio
    async def test_access_token_header(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["authorization"] = request.headers.get("authorization")
            return httpx.Response(200, json={"data": {"status": "ok"}})

        sender = ExpoPushSender(url="https://expo.test/push", access_token="expo-secret", transport=httpx.MockTransport(handler))
        result = await sender.send(expo_subscription(), MESSAGE)

        assert result == PushResult.SUCCESS
        assert seen["authorization"] == "Bearer expo-secret"

    @pytest.mark.asyncio
    async def test_device_not_registered_is_gone(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={"data": [{"status": "error", "message": "not registered", "details": {"error": "DeviceNotRegistered"}}]},
            )

        assert await expo_sender(handler).send(expo_subscription(), MESSAGE) == PushResult.GONE

    @pytest.mark.asyncio
    async def test_other_ticket_error_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={"data": [{"status": "error", "message": "too big", "details": {"error": "MessageTooBig"}}]},
            )

        assert await expo_sender(handler).send(expo_subscription(), MESSAGE) == PushResult.TRANSIENT_FAILURE

    @pytest.mark.asyncio
    async def test_http_error_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="upstream exploded")

        assert await expo_sender(handler).send(expo_subscription(), MESSAGE) == PushResult.TRANSIENT_FAILURE

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        assert await expo_sender(handler).send(expo_subscription(), MESSAGE) == PushResult.TRANSIENT_FAILURE

    @pytest.mark.asyncio
    async def test_non_json_body_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>")

        assert await expo_sender(handler).send(expo_subscription(), MESSAGE) == PushResult.TRANSIENT_FAILURE


class TestBuildPushMessage:
    def test_chat_message(self):
        event = DomainEvent(
            kind=HubEvent.RECEIVE_MESSAGE,
            target_user_id=2,
            payload={"id": 9, "chatId": 1, "content": "lunch?", "sender": {"username": "alice"}},
        )

        message = build_push_message(event)

        assert message.title == "New message from alice"
        assert message.body == "lunch?"
        assert message.tag == "message-9"
        assert message.data["type"] == "ReceiveMessage"
        assert message.data["chatId"] == 1

    def test_long_message_is_truncated(self):
        event = DomainEvent(
            kind=HubEvent.RECEIVE_MESSAGE,
            target_user_id=2,
            payload={"id": 9, "content": "x" * 500, "sender": {"username": "alice"}},
        )

        assert len(build_push_message(event).body) == 200

    def test_empty_message_body(self):
        event = DomainEvent(kind=HubEvent.RECEIVE_MESSAGE, target_user_id=2, payload={"id": 9})

        message = build_push_message(event)

        assert message.title == "New message from Someone"
        assert message.body == "Someone sent you a message"

    @pytest.mark.parametrize(
        "notification_type,title,body",
        [
            ("Like", "New reaction", "alice liked your post"),
            ("Follow", "New follower", "alice started following you"),
            ("Mention", "You were mentioned", "alice mentioned you"),
            ("Something", "New notification", "New notification from alice"),
        ],
    )
    def test_notification_copy(self, notification_type, title, body):
        event = DomainEvent(
            kind=HubEvent.RECEIVE_NOTIFICATION,
            target_user_id=2,
            payload={"id": 4, "type": notification_type, "actorUsername": "alice"},
        )

        message = build_push_message(event)

        assert message.title == title
        assert message.body == body
        assert message.tag == "notification-4"
