"""
Service layer for Streamrelay business logic.
"""
from app.services.notification_queue import NotificationQueue
from app.services.notification_dispatcher import NotificationDispatcher, DispatchResult, is_retryable_error
from app.services.notification_worker import NotificationWorker
from app.services.token_service import TwitchTokenService
from app.services.stream_state import LiveStatusService, ChannelStateTracker
from app.services.eventsub_handler import EventSubHandler
from app.services.subscription_reconciler import SubscriptionReconciler
from app.services.calendar_sync import CalendarSyncService
from app.services.retention_service import RetentionService

__all__ = [
    "NotificationQueue",
    "NotificationDispatcher",
    "DispatchResult",
    "is_retryable_error",
    "NotificationWorker",
    "TwitchTokenService",
    "LiveStatusService",
    "ChannelStateTracker",
    "EventSubHandler",
    "SubscriptionReconciler",
    "CalendarSyncService",
    "RetentionService",
]
