"""
Push Dispatcher

Durable-push fallback used by the broadcaster when a user has no live hub
connection. Sends one message to every active subscription of the user,
concurrently, isolating failures per subscription.
"""

import asyncio
import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from relay.config import settings
from relay.database import get_db_context
from relay.exceptions import PushConfigurationError
from relay.models.push_subscription import PushSubscription, PushSubscriptionKind
from relay.schemas.events import DomainEvent, HubEvent
from relay.schemas.push import PushMessage
from relay.services.push_providers import PushResult, PushSender, default_senders
from relay.services.push_subscription_service import PushSubscriptionStore

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


NOTIFICATION_TITLES = {
    "Like": "New reaction",
    "ReplyOnStatus": "New reply",
    "ReplyOnReply": "New reply",
    "Repost": "New repost",
    "Follow": "New follower",
    "Message": "New message",
    "Quote": "You were quoted",
    "Mention": "You were mentioned",
}

NOTIFICATION_BODIES = {
    "Like": "{actor} liked your post",
    "ReplyOnStatus": "{actor} replied to your post",
    "ReplyOnReply": "{actor} replied to your comment",
    "Repost": "{actor} reposted your post",
    "Follow": "{actor} started following you",
    "Message": "{actor} sent you a message",
    "Quote": "{actor} quoted your post",
    "Mention": "{actor} mentioned you",
}


def build_push_message(event: DomainEvent) -> PushMessage:
    """
    Turn a pushable event into provider-neutral notification content.

    Messages and message notifications share the ``message-{id}`` tag so a
    device that receives both shows one notification.
    """
    payload = event.payload if isinstance(event.payload, dict) else {}

    if event.kind == HubEvent.RECEIVE_MESSAGE:
        sender = payload.get("sender") or {}
        actor = sender.get("username") or payload.get("senderUsername") or "Someone"
        content = payload.get("content") or ""
        body = content if content else f"{actor} sent you a message"
        return PushMessage(
            title=f"New message from {actor}",
            body=body[:200],
            data={"type": event.kind.value, **payload},
            tag=f"message-{payload.get('id')}",
        )

    notification_type = str(payload.get("type") or "")
    actor = payload.get("actorUsername") or "Someone"
    tag = f"notification-{payload.get('id')}"
    if notification_type == "Message" and payload.get("messageId") is not None:
        tag = f"message-{payload['messageId']}"

    return PushMessage(
        title=NOTIFICATION_TITLES.get(notification_type, "New notification"),
        body=NOTIFICATION_BODIES.get(notification_type, "New notification from {actor}").format(actor=actor),
        data={"type": event.kind.value, **payload},
        tag=tag,
    )


@dataclass
class PushDispatchReport:
    """What happened to one fallback dispatch."""

    user_id: int
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    deactivated: list[int] = field(default_factory=list)


class PushDispatcher:
    """Deliver a push message to all active subscriptions of a user."""

    def __init__(
        self,
        senders: dict[PushSubscriptionKind, PushSender] | None = None,
        session_factory: SessionFactory | None = None,
        send_timeout: float | None = None,
    ):
        self._senders = senders if senders is not None else default_senders()
        self._session_factory = session_factory or get_db_context
        self._send_timeout = send_timeout or settings.push_timeout_seconds * 1.5

    async def dispatch(
        self,
        user_id: int,
        message: PushMessage,
        kind: PushSubscriptionKind | None = None,
    ) -> PushDispatchReport:
        """
        Send ``message`` once per active subscription of ``user_id``.

        Subscriptions reported gone are deactivated; any other failure is
        logged and left alone. Never raises for a provider failure.
        """
        report = PushDispatchReport(user_id=user_id)

        async with self._session_factory() as db:
            store = PushSubscriptionStore(db)
            subscriptions = await store.list_active(user_id, kind)

            if not subscriptions:
                logger.info(f"No active push subscriptions found for user {user_id}")
                return report

            logger.info(f"Sending push notification to user {user_id} ({len(subscriptions)} subscription(s))")

            results = await asyncio.gather(*(self._send_one(subscription, message) for subscription in subscriptions))

            delivered = []
            for subscription, result in zip(subscriptions, results):
                report.attempted += 1
                if result == PushResult.SUCCESS:
                    report.succeeded += 1
                    delivered.append(subscription.id)
                else:
                    report.failed += 1
                    if result == PushResult.GONE:
                        report.deactivated.append(subscription.id)

            for subscription_id in report.deactivated:
                await store.deactivate(subscription_id)
            await store.touch(delivered)

        return report

    async def _send_one(self, subscription: PushSubscription, message: PushMessage) -> PushResult:
        sender = self._senders.get(subscription.kind)
        if sender is None:
            logger.warning(f"No push sender for kind '{subscription.kind}' (subscription {subscription.id})")
            return PushResult.TRANSIENT_FAILURE

        try:
            return await asyncio.wait_for(sender.send(subscription, message), timeout=self._send_timeout)
        except asyncio.TimeoutError:
            logger.error(f"Push send timed out for subscription {subscription.id}")
        except PushConfigurationError as e:
            logger.warning(f"Push skipped for subscription {subscription.id}: {e.message}")
        except Exception as e:
            logger.error(f"Unexpected error sending push to user {subscription.user_id}: {e}", exc_info=True)
        return PushResult.TRANSIENT_FAILURE


# ============== Global Instance ==============

_push_dispatcher: PushDispatcher | None = None


def get_push_dispatcher() -> PushDispatcher:
    """Get the push dispatcher singleton."""
    global _push_dispatcher
    if _push_dispatcher is None:
        _push_dispatcher = PushDispatcher()
    return _push_dispatcher
