"""
Push Subscription Store

Durable registry of delivery endpoints per user. Rows are never hard-deleted
here; unsubscribing flips ``is_active`` so history stays available.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from relay.models.push_subscription import PushSubscription, PushSubscriptionKind
from relay.schemas.push import PushEndpoint

logger = logging.getLogger(__name__)


class PushSubscriptionStore:
    """Service for managing push subscriptions."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def subscribe(self, user_id: int, descriptor: PushEndpoint) -> PushSubscription:
        """
        Insert or reactivate the subscription for ``(user_id, endpoint)``.

        An endpoint currently registered to a different user is moved to
        ``user_id``: a browser or device hands out one endpoint, and it
        belongs to whoever signed in last.

        Returns:
            The active subscription row
        """
        result = await self.db.execute(
            select(PushSubscription).where(PushSubscription.endpoint == descriptor.endpoint)
        )
        existing = result.scalars().all()

        subscription = next((s for s in existing if s.user_id == user_id), None)

        for other in existing:
            if other is not subscription and other.is_active:
                other.is_active = False
                logger.info(f"Push endpoint moved from user {other.user_id} to user {user_id}")

        if subscription is None:
            subscription = PushSubscription(
                user_id=user_id,
                kind=descriptor.kind,
                endpoint=descriptor.endpoint,
            )
            self.db.add(subscription)
            action = "created"
        else:
            action = "reactivated" if not subscription.is_active else "refreshed"

        subscription.kind = descriptor.kind
        subscription.is_active = True
        if descriptor.kind == PushSubscriptionKind.WEB:
            subscription.p256dh = descriptor.p256dh
            subscription.auth = descriptor.auth
        else:
            subscription.device_type = descriptor.device_type
            subscription.device_name = descriptor.device_name
            subscription.last_used_at = datetime.now(timezone.utc)

        await self.db.commit()
        await self.db.refresh(subscription)

        logger.info(f"Push subscription {action} for user {user_id} (id: {subscription.id}, kind: {descriptor.kind.value})")
        return subscription

    async def unsubscribe(self, user_id: int, endpoint: str) -> bool:
        """
        Deactivate one subscription.

        Returns:
            False if the user has no subscription for ``endpoint``
        """
        result = await self.db.execute(
            select(PushSubscription).where(
                PushSubscription.user_id == user_id,
                PushSubscription.endpoint == endpoint,
            )
        )
        subscription = result.scalar_one_or_none()
        if subscription is None:
            return False

        subscription.is_active = False
        await self.db.commit()

        logger.info(f"Push subscription {subscription.id} deactivated for user {user_id}")
        return True

    async def unsubscribe_all(self, user_id: int, kind: PushSubscriptionKind | None = None) -> int:
        """
        Deactivate every active subscription of a user (logout / uninstall).

        Returns:
            Number of subscriptions deactivated
        """
        stmt = (
            update(PushSubscription)
            .where(PushSubscription.user_id == user_id, PushSubscription.is_active.is_(True))
            .values(is_active=False)
        )
        if kind is not None:
            stmt = stmt.where(PushSubscription.kind == kind)

        result = await self.db.execute(stmt)
        await self.db.commit()

        count = result.rowcount or 0
        logger.info(f"{count} push subscription(s) deactivated for user {user_id}")
        return count

    async def list_active(self, user_id: int, kind: PushSubscriptionKind | None = None) -> list[PushSubscription]:
        """Active subscriptions of a user, oldest first."""
        query = select(PushSubscription).where(
            PushSubscription.user_id == user_id,
            PushSubscription.is_active.is_(True),
        )
        if kind is not None:
            query = query.where(PushSubscription.kind == kind)

        result = await self.db.execute(query.order_by(PushSubscription.id))
        return list(result.scalars().all())

    async def list_all(self, user_id: int, kind: PushSubscriptionKind | None = None) -> list[PushSubscription]:
        """Every subscription of a user including inactive ones (diagnostics)."""
        query = select(PushSubscription).where(PushSubscription.user_id == user_id)
        if kind is not None:
            query = query.where(PushSubscription.kind == kind)

        result = await self.db.execute(query.order_by(PushSubscription.id))
        return list(result.scalars().all())

    async def has_active(self, user_id: int, kind: PushSubscriptionKind | None = None) -> bool:
        return bool(await self.list_active(user_id, kind))

    async def deactivate(self, subscription_id: int) -> None:
        """Mark a subscription inactive after its provider reported it gone."""
        await self.db.execute(
            update(PushSubscription).where(PushSubscription.id == subscription_id).values(is_active=False)
        )
        await self.db.commit()
        logger.warning(f"Push subscription {subscription_id} deactivated (endpoint gone)")

    async def touch(self, subscription_ids: list[int]) -> None:
        """Record a successful delivery."""
        if not subscription_ids:
            return
        await self.db.execute(
            update(PushSubscription)
            .where(PushSubscription.id.in_(subscription_ids))
            .values(last_used_at=datetime.now(timezone.utc))
        )
        await self.db.commit()
