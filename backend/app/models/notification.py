"""
Notification audit log and durable retry queue.
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index
from app.database import Base
from app.models.enums import TaskStatus, DeliveryStatus
from app.constants import DEFAULT_MAX_ATTEMPTS
from app.utils.clock import utcnow


class NotificationLog(Base):
    """One row per delivery outcome per destination."""

    __tablename__ = "notification_history"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    notification_type = Column(String(50), nullable=False, index=True)
    destination_type = Column(String(20), nullable=False)  # telegram, discord
    destination_id = Column(String(100), nullable=False)

    content = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default=DeliveryStatus.SENT.value)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)


class NotificationTask(Base):
    """
    Retry queue entry.

    Only the queue worker mutates rows after enqueue. Rows are never deleted by
    the worker; retention prunes succeeded/dead rows after retention_days.
    """

    __tablename__ = "notification_queue"

    id = Column(Integer, primary_key=True, index=True)
    notification_log_id = Column(Integer, ForeignKey("notification_history.id", ondelete="SET NULL"), nullable=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    notification_type = Column(String(50), nullable=False)
    content_json = Column(Text, nullable=False)  # serialized NotificationContent
    message = Column(Text, nullable=False)  # pre-rendered text

    destination_type = Column(String(20), nullable=False)
    destination_id = Column(String(100), nullable=False)
    webhook_url = Column(String(500), nullable=True)

    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=DEFAULT_MAX_ATTEMPTS)
    next_attempt_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=TaskStatus.PENDING.value)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_notification_queue_due", "status", "next_attempt_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in (TaskStatus.SUCCEEDED.value, TaskStatus.DEAD.value)
