"""
Destination integrations (Telegram chats and Discord channels).
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from app.database import Base
from app.utils.clock import utcnow


class NotifyFlagsMixin:
    """Per-destination switches, one per notification type."""

    is_enabled = Column(Boolean, nullable=False, default=True)
    notify_stream_online = Column(Boolean, nullable=False, default=True)
    notify_stream_offline = Column(Boolean, nullable=False, default=False)
    notify_title_change = Column(Boolean, nullable=False, default=True)
    notify_category_change = Column(Boolean, nullable=False, default=True)
    notify_reward_redemption = Column(Boolean, nullable=False, default=False)

    def wants(self, notification_type: str) -> bool:
        return bool(getattr(self, f"notify_{notification_type}"))


class TelegramIntegration(NotifyFlagsMixin, Base):
    """A Telegram chat that receives notifications."""

    __tablename__ = "telegram_integrations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    telegram_chat_id = Column(String(50), nullable=False, index=True)
    telegram_chat_title = Column(String(255), nullable=True)
    telegram_chat_type = Column(String(20), nullable=False, default="private")  # private, group, supergroup, channel

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "telegram_chat_id", name="uq_telegram_user_chat"),
    )

    @property
    def destination_id(self) -> str:
        return self.telegram_chat_id


class DiscordIntegration(NotifyFlagsMixin, Base):
    """A Discord channel that receives notifications and, optionally, calendar events."""

    __tablename__ = "discord_integrations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    discord_guild_id = Column(String(50), nullable=False, index=True)
    discord_channel_id = Column(String(50), nullable=False)
    discord_guild_name = Column(String(255), nullable=True)
    discord_channel_name = Column(String(255), nullable=True)
    discord_webhook_url = Column(String(500), nullable=True)

    # Mirror the Twitch schedule into the guild's scheduled events
    calendar_sync_enabled = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "discord_guild_id", "discord_channel_id", name="uq_discord_user_channel"),
    )

    @property
    def destination_id(self) -> str:
        return self.discord_channel_id
