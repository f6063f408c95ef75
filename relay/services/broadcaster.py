"""
Event Broadcaster

Delivers domain events from the write path to live hub connections and
falls back to durable push when the target user has no live connection.
Delivery is best effort: nothing raised here reaches the caller.
"""

import logging
from dataclasses import dataclass
from typing import Any

from relay.schemas.events import DomainEvent, HubEvent, create_envelope
from relay.services.connection_registry import HubRegistry, get_hub_registry
from relay.services.push_dispatcher import (
    PushDispatcher,
    PushDispatchReport,
    build_push_message,
    get_push_dispatcher,
)

logger = logging.getLogger(__name__)


@dataclass
class BroadcastResult:
    """Informational outcome of one broadcast."""

    event: str
    group: str
    live_deliveries: int = 0
    push: PushDispatchReport | None = None
    error: str | None = None

    @property
    def fell_back_to_push(self) -> bool:
        return self.push is not None


class EventBroadcaster:
    """
    Fan-out of domain events.

    Events reach a connection in the order ``broadcast`` was called for it;
    nothing is promised across independent callers.
    """

    def __init__(
        self,
        hubs: HubRegistry | None = None,
        push_dispatcher: PushDispatcher | None = None,
    ):
        self._hubs = hubs
        self._push_dispatcher = push_dispatcher

    @property
    def hubs(self) -> HubRegistry:
        return self._hubs or get_hub_registry()

    @property
    def push_dispatcher(self) -> PushDispatcher:
        return self._push_dispatcher or get_push_dispatcher()

    async def broadcast(self, event: DomainEvent) -> BroadcastResult:
        """
        Deliver ``event`` to every live connection in its target group.

        If the target is a user with no live connection on any hub and the
        event is pushable, the user's active push subscriptions get it instead.
        """
        result = BroadcastResult(event=event.kind.value, group=event.group_key)

        try:
            registry = self.hubs[event.hub]
            envelope = create_envelope(event.kind, event.payload)
            result.live_deliveries = await registry.send_to_group(event.group_key, envelope)

            if event.is_pushable and not self.hubs.is_user_online(event.target_user_id):
                result.push = await self.push_dispatcher.dispatch(event.target_user_id, build_push_message(event))
            elif result.live_deliveries == 0:
                logger.debug(f"No live recipient for {event.kind.value} -> {event.group_key}")
        except Exception as e:
            result.error = str(e)
            logger.error(
                f"Broadcast of {event.kind.value} to {event.group_key} failed: {e}",
                exc_info=True,
                extra={"event": event.kind.value},
            )

        return result

    # ============== Write-path Helpers ==============

    async def notify_message_created(
        self,
        message: dict[str, Any],
        recipient_id: int,
        sender_id: int,
    ) -> list[BroadcastResult]:
        """New chat message: deliver to the recipient, refresh both chat lists."""
        chat_id = message.get("chatId")
        results = [
            await self.broadcast(
                DomainEvent(kind=HubEvent.RECEIVE_MESSAGE, target_user_id=recipient_id, chat_id=chat_id, payload=message)
            )
        ]
        results.extend(await self.notify_chat_updated(chat_id, [recipient_id, sender_id]))
        return results

    async def notify_message_deleted(
        self,
        chat_id: int,
        message_id: int,
        participant_ids: list[int],
    ) -> list[BroadcastResult]:
        """Message removed: tell every participant, then refresh their chat lists."""
        results = []
        for user_id in _unique(participant_ids):
            results.append(
                await self.broadcast(
                    DomainEvent(
                        kind=HubEvent.MESSAGE_DELETED,
                        target_user_id=user_id,
                        chat_id=chat_id,
                        payload={"chatId": chat_id, "messageId": message_id},
                    )
                )
            )
        results.extend(await self.notify_chat_updated(chat_id, participant_ids))
        return results

    async def notify_chat_updated(self, chat_id: int, participant_ids: list[int]) -> list[BroadcastResult]:
        results = []
        for user_id in _unique(participant_ids):
            results.append(
                await self.broadcast(
                    DomainEvent(kind=HubEvent.CHAT_UPDATED, target_user_id=user_id, chat_id=chat_id, payload=chat_id)
                )
            )
        return results

    async def notify_notification_created(self, notification: dict[str, Any], target_user_id: int) -> BroadcastResult:
        return await self.broadcast(
            DomainEvent(kind=HubEvent.RECEIVE_NOTIFICATION, target_user_id=target_user_id, payload=notification)
        )


def _unique(ids: list[int]) -> list[int]:
    return list(dict.fromkeys(ids))


# ============== Global Instance ==============

event_broadcaster = EventBroadcaster()


def get_event_broadcaster() -> EventBroadcaster:
    """Get the broadcaster singleton."""
    return event_broadcaster
