from sqlalchemy import Boolean, Column, Integer, String
from sqlalchemy.orm import relationship
from relay.database import Base


# User model (owned by the account service; the relay only reads it)
class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), index=True, nullable=False)
    email = Column(String, unique=True, nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)
    banned = Column(Boolean, default=False, nullable=False)

    push_subscriptions = relationship(
        "PushSubscription",
        back_populates="user",
        cascade="all, delete-orphan",
    )
