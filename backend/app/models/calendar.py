"""
Twitch schedule segments mirrored as Discord scheduled events.
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from app.database import Base
from app.utils.clock import utcnow


class SyncedCalendarEvent(Base):
    """Shadow row: one Twitch segment as seen by one Discord integration."""

    __tablename__ = "synced_calendar_events"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    twitch_segment_id = Column(String(255), nullable=False)
    discord_integration_id = Column(
        Integer, ForeignKey("discord_integrations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    discord_event_id = Column(String(50), nullable=True)  # unknown until created remotely

    title = Column(String(255), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=True)
    category_name = Column(String(255), nullable=True)
    is_recurring = Column(Boolean, nullable=False, default=False)

    last_synced_at = Column(DateTime, nullable=False, default=utcnow)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("twitch_segment_id", "discord_integration_id", name="uq_segment_integration"),
    )
