"""
Push Subscription Routes

Registration of durable push endpoints: browser Web Push subscriptions and
mobile (Expo) push tokens. Both end up as rows in ``push_subscriptions``.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from relay.auth import get_current_user
from relay.config import settings
from relay.database import get_db
from relay.exceptions import PushConfigurationError, SubscriptionNotFoundError, ValidationError
from relay.models.push_subscription import PushSubscriptionKind
from relay.models.user import User
from relay.schemas.push import (
    ExpoTokenIn,
    PushMessage,
    PushSubscriptionOut,
    WebPushSubscriptionIn,
    WebPushUnsubscribeIn,
)
from relay.services.push_dispatcher import PushDispatcher, get_push_dispatcher
from relay.services.push_subscription_service import PushSubscriptionStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/push", tags=["Push"])


def get_subscription_store(db: AsyncSession = Depends(get_db)) -> PushSubscriptionStore:
    return PushSubscriptionStore(db)


# ============== Web Push ==============


@router.get("/public-key")
async def get_public_key() -> dict:
    """VAPID application server key for ``pushManager.subscribe``."""
    if not settings.vapid_public_key:
        raise PushConfigurationError()
    return {"publicKey": settings.vapid_public_key}


@router.post("/subscribe")
async def subscribe(
    body: WebPushSubscriptionIn,
    current_user: User = Depends(get_current_user),
    store: PushSubscriptionStore = Depends(get_subscription_store),
) -> dict:
    """Register (or refresh) the caller's browser push subscription."""
    subscription = await store.subscribe(current_user.id, body.to_endpoint())
    return {"message": "Subscription saved", "id": subscription.id}


@router.post("/unsubscribe")
async def unsubscribe(
    body: WebPushUnsubscribeIn,
    current_user: User = Depends(get_current_user),
    store: PushSubscriptionStore = Depends(get_subscription_store),
) -> dict:
    if not await store.unsubscribe(current_user.id, body.endpoint):
        raise SubscriptionNotFoundError(body.endpoint)
    return {"message": "Subscription removed"}


@router.delete("/unsubscribe-all")
async def unsubscribe_all(
    current_user: User = Depends(get_current_user),
    store: PushSubscriptionStore = Depends(get_subscription_store),
) -> dict:
    """Deactivate every browser subscription of the caller (logout)."""
    count = await store.unsubscribe_all(current_user.id, PushSubscriptionKind.WEB)
    return {"message": f"{count} subscription(s) removed", "count": count}


@router.get("/subscriptions", response_model=list[PushSubscriptionOut])
async def list_subscriptions(
    current_user: User = Depends(get_current_user),
    store: PushSubscriptionStore = Depends(get_subscription_store),
):
    """All browser subscriptions of the caller, inactive ones included."""
    return await store.list_all(current_user.id, PushSubscriptionKind.WEB)


@router.post("/test")
async def send_test_notification(
    current_user: User = Depends(get_current_user),
    store: PushSubscriptionStore = Depends(get_subscription_store),
    dispatcher: PushDispatcher = Depends(get_push_dispatcher),
) -> dict:
    if not await store.has_active(current_user.id, PushSubscriptionKind.WEB):
        raise ValidationError("No active push subscriptions found. Please subscribe first.")
    if not settings.vapid_private_key:
        raise PushConfigurationError()

    report = await dispatcher.dispatch(current_user.id, _test_message(), kind=PushSubscriptionKind.WEB)
    return {"message": "Test notification sent", "sent": report.succeeded, "failed": report.failed}


# ============== Expo Push Tokens ==============


@router.post("/expo/register")
async def register_expo_token(
    body: ExpoTokenIn,
    current_user: User = Depends(get_current_user),
    store: PushSubscriptionStore = Depends(get_subscription_store),
) -> dict:
    """Register the caller's mobile push token."""
    subscription = await store.subscribe(current_user.id, body.to_endpoint())
    return {"message": "Token registered", "id": subscription.id}


@router.delete("/expo/unregister")
async def unregister_expo_token(
    body: ExpoTokenIn,
    current_user: User = Depends(get_current_user),
    store: PushSubscriptionStore = Depends(get_subscription_store),
) -> dict:
    if not await store.unsubscribe(current_user.id, body.token):
        raise SubscriptionNotFoundError(body.token)
    return {"message": "Token removed"}


@router.delete("/expo/unregister-all")
async def unregister_all_expo_tokens(
    current_user: User = Depends(get_current_user),
    store: PushSubscriptionStore = Depends(get_subscription_store),
) -> dict:
    count = await store.unsubscribe_all(current_user.id, PushSubscriptionKind.EXPO)
    return {"message": f"{count} token(s) removed", "count": count}


@router.get("/expo/tokens", response_model=list[PushSubscriptionOut])
async def list_expo_tokens(
    current_user: User = Depends(get_current_user),
    store: PushSubscriptionStore = Depends(get_subscription_store),
):
    return await store.list_all(current_user.id, PushSubscriptionKind.EXPO)


@router.post("/expo/test")
async def send_expo_test_notification(
    current_user: User = Depends(get_current_user),
    store: PushSubscriptionStore = Depends(get_subscription_store),
    dispatcher: PushDispatcher = Depends(get_push_dispatcher),
) -> dict:
    if not await store.has_active(current_user.id, PushSubscriptionKind.EXPO):
        raise ValidationError("No active Expo push tokens found. Please register first.")

    report = await dispatcher.dispatch(current_user.id, _test_message(), kind=PushSubscriptionKind.EXPO)
    return {"message": "Test notification sent", "sent": report.succeeded, "failed": report.failed}


def _test_message() -> PushMessage:
    return PushMessage(
        title="Test notification",
        body="Push notifications are working",
        data={"type": "test", "timestamp": datetime.now(timezone.utc).isoformat()},
        tag="test-notification",
    )
