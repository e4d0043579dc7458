"""
Streamer account and notification preferences.
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from app.database import Base
from app.models.types import EncryptedString
from app.constants import (
    DEFAULT_STREAM_ONLINE_MESSAGE,
    DEFAULT_STREAM_OFFLINE_MESSAGE,
    DEFAULT_TITLE_CHANGE_MESSAGE,
    DEFAULT_CATEGORY_CHANGE_MESSAGE,
    DEFAULT_REWARD_REDEMPTION_MESSAGE,
)
from app.utils.clock import utcnow


class User(Base):
    """A Twitch broadcaster who signed in."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    twitch_id = Column(String(50), unique=True, nullable=False, index=True)
    twitch_login = Column(String(100), nullable=False, index=True)
    twitch_display_name = Column(String(100), nullable=False)
    twitch_profile_image_url = Column(String(500), nullable=True)

    # OAuth tokens (encrypted at rest)
    twitch_access_token = Column(EncryptedString, nullable=False)
    twitch_refresh_token = Column(EncryptedString, nullable=False)
    twitch_token_expires_at = Column(DateTime, nullable=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    settings = relationship("UserSettings", back_populates="user", uselist=False, cascade="all, delete-orphan")


class UserSettings(Base):
    """Message templates and the global reward-notification flag."""

    __tablename__ = "user_settings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)

    stream_online_message = Column(Text, nullable=False, default=DEFAULT_STREAM_ONLINE_MESSAGE)
    stream_offline_message = Column(Text, nullable=False, default=DEFAULT_STREAM_OFFLINE_MESSAGE)
    stream_title_change_message = Column(Text, nullable=False, default=DEFAULT_TITLE_CHANGE_MESSAGE)
    stream_category_change_message = Column(Text, nullable=False, default=DEFAULT_CATEGORY_CHANGE_MESSAGE)
    reward_redemption_message = Column(Text, nullable=False, default=DEFAULT_REWARD_REDEMPTION_MESSAGE)

    # ANDed with each integration's notify_reward_redemption
    notify_reward_redemption = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="settings")

    def template_for(self, notification_type: str) -> str:
        return {
            "stream_online": self.stream_online_message,
            "stream_offline": self.stream_offline_message,
            "title_change": self.stream_title_change_message,
            "category_change": self.stream_category_change_message,
            "reward_redemption": self.reward_redemption_message,
        }[notification_type]
