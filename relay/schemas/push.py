"""
Push Subscription Schemas

Request/response bodies for the push endpoints and the endpoint descriptor
consumed by the subscription store.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from relay.models.push_subscription import PushSubscriptionKind


class PushEndpoint(BaseModel):
    """Delivery endpoint descriptor passed to the subscription store."""

    kind: PushSubscriptionKind = PushSubscriptionKind.WEB
    endpoint: str = Field(min_length=1)
    p256dh: str | None = None
    auth: str | None = None
    device_type: str | None = None
    device_name: str | None = None


class PushKeys(BaseModel):
    p256dh: str = Field(min_length=1)
    auth: str = Field(min_length=1)


class WebPushSubscriptionIn(BaseModel):
    """Browser ``PushSubscription.toJSON()`` body."""

    endpoint: str = Field(min_length=1)
    keys: PushKeys

    def to_endpoint(self) -> PushEndpoint:
        return PushEndpoint(
            kind=PushSubscriptionKind.WEB,
            endpoint=self.endpoint,
            p256dh=self.keys.p256dh,
            auth=self.keys.auth,
        )


class WebPushUnsubscribeIn(BaseModel):
    endpoint: str = Field(min_length=1)


class ExpoTokenIn(BaseModel):
    """Mobile push token registration body."""

    model_config = ConfigDict(populate_by_name=True)

    token: str = Field(min_length=1)
    device_type: str | None = Field(default=None, alias="deviceType")
    device_name: str | None = Field(default=None, alias="deviceName")

    def to_endpoint(self) -> PushEndpoint:
        return PushEndpoint(
            kind=PushSubscriptionKind.EXPO,
            endpoint=self.token,
            device_type=self.device_type,
            device_name=self.device_name,
        )


class PushSubscriptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    kind: PushSubscriptionKind
    endpoint: str
    device_type: str | None = None
    device_name: str | None = None
    is_active: bool
    created_at: datetime
    last_used_at: datetime | None = None


class PushMessage(BaseModel):
    """Provider-neutral notification content."""

    title: str
    body: str = ""
    data: dict = Field(default_factory=dict)
    tag: str | None = None
    icon: str | None = "/icon-192.png"
    badge: str | None = "/badge-72.png"
    require_interaction: bool = False

    def to_web_payload(self) -> dict:
        """Shape read by the service worker's ``push`` handler."""
        return {
            "title": self.title,
            "body": self.body,
            "icon": self.icon,
            "badge": self.badge,
            "data": self.data,
            "tag": self.tag,
            "requireInteraction": self.require_interaction,
        }
