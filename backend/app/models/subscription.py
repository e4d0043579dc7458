"""
EventSub subscription model.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from app.database import Base
from app.utils.clock import utcnow


class EventSubSubscription(Base):
    """Local record of a remote Twitch EventSub subscription."""

    __tablename__ = "eventsub_subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    twitch_subscription_id = Column(String(100), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    subscription_type = Column(String(100), nullable=False, index=True)
    status = Column(String(60), nullable=False, default="webhook_callback_verification_pending")

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
