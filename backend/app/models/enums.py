"""
String enums stored in the database.
"""
from enum import Enum


class NotificationType(str, Enum):
    STREAM_ONLINE = "stream_online"
    STREAM_OFFLINE = "stream_offline"
    TITLE_CHANGE = "title_change"
    CATEGORY_CHANGE = "category_change"
    REWARD_REDEMPTION = "reward_redemption"


class DestinationType(str, Enum):
    TELEGRAM = "telegram"  # chat bot
    DISCORD = "discord"  # guild bot


class TaskStatus(str, Enum):
    """Retry queue lifecycle: pending -> processing -> succeeded | dead."""
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    DEAD = "dead"


class DeliveryStatus(str, Enum):
    """Status of a notification_history row."""
    SENT = "sent"
    FAILED = "failed"
    PENDING = "pending"
    EXPIRED = "expired"


class SubscriptionStatus(str, Enum):
    ENABLED = "enabled"
    VERIFICATION_PENDING = "webhook_callback_verification_pending"
    VERIFICATION_FAILED = "webhook_callback_verification_failed"
    REVOKED = "authorization_revoked"
