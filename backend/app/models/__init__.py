"""
Database models for Streamrelay.
"""
from app.models.enums import NotificationType, DestinationType, TaskStatus, DeliveryStatus, SubscriptionStatus
from app.models.user import User, UserSettings
from app.models.integration import TelegramIntegration, DiscordIntegration
from app.models.notification import NotificationLog, NotificationTask
from app.models.subscription import EventSubSubscription
from app.models.calendar import SyncedCalendarEvent

__all__ = [
    "NotificationType",
    "DestinationType",
    "TaskStatus",
    "DeliveryStatus",
    "SubscriptionStatus",
    "User",
    "UserSettings",
    "TelegramIntegration",
    "DiscordIntegration",
    "NotificationLog",
    "NotificationTask",
    "EventSubSubscription",
    "SyncedCalendarEvent",
]
