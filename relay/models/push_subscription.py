"""
Push Subscription Model

Durable delivery endpoints per user: browser Web Push subscriptions and
mobile (Expo) push tokens. Rows are soft-deleted through ``is_active``.
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from relay.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PushSubscriptionKind(str, enum.Enum):
    """Delivery endpoint families."""

    WEB = "web"
    EXPO = "expo"


class PushSubscription(Base):
    """
    Push subscription model.

    ``endpoint`` holds the browser push endpoint URL for web subscriptions and
    the device token for mobile ones; it is unique per user.
    """

    __tablename__ = "push_subscriptions"
    __table_args__ = (
        UniqueConstraint("user_id", "endpoint", name="uq_push_subscription_user_endpoint"),
        Index("ix_push_subscriptions_user_active", "user_id", "is_active"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    kind = Column(Enum(PushSubscriptionKind), default=PushSubscriptionKind.WEB, nullable=False)

    endpoint = Column(Text, nullable=False, index=True)

    # Web Push keys
    p256dh = Column(String(255), nullable=True)
    auth = Column(String(255), nullable=True)

    # Mobile device info
    device_type = Column(String(20), nullable=True)  # "ios" or "android"
    device_name = Column(String(255), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    last_used_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="push_subscriptions")

    def to_subscription_info(self) -> dict:
        """Web Push ``subscription_info`` structure."""
        return {
            "endpoint": self.endpoint,
            "keys": {"p256dh": self.p256dh, "auth": self.auth},
        }

    def __repr__(self) -> str:
        return f"<PushSubscription id={self.id} user={self.user_id} kind={self.kind} active={self.is_active}>"
