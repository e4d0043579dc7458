"""
Notification fan-out.

Renders the user's template once, delivers to every enabled destination that
opted into the notification type, writes one audit row per destination and
hands retryable failures to the durable queue.
"""
import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, List, Optional, Union
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from app.clients.registry import ClientRegistry
from app.config import NotificationRetryConfig
from app.constants import TWITCH_STREAM_URL_BASE
from app.models import (
    User,
    TelegramIntegration,
    DiscordIntegration,
    DestinationType,
    DeliveryStatus,
    NotificationType,
)
from app.schemas.notifications import NotificationContent, dump_content
from app.services.embeds import build_embed
from app.services.notification_history import record_delivery
from app.services.notification_queue import NotificationQueue
from app.services.template_renderer import render_template
from app.services.user_service import get_or_create_settings, get_enabled_integrations
from app.utils.clock import utcnow
from app.utils.errors import NotFoundError, ServiceUnavailableError, UpstreamError

# Lower-cased fragments of error messages worth retrying
RETRYABLE_MARKERS = (
    "too many requests",
    "429",
    "timeout",
    "timed out",
    "temporarily unavailable",
    "service unavailable",
    "bad gateway",
    "connection reset",
    "failed to send",
)


def is_retryable_error(error: Union[BaseException, str]) -> bool:
    """
    Whether a delivery failure is transient.

    Rate limits, timeouts, 5xx-style outages, network failures and a bot
    client that is not initialized yet are retryable; everything else
    (bad chat id, missing permissions, malformed payload) is not.
    """
    if isinstance(error, ServiceUnavailableError):
        return True
    if isinstance(error, UpstreamError) and error.is_transient:
        return True
    text = str(error).lower()
    if "service not initialized" in text:
        return True
    return any(marker in text for marker in RETRYABLE_MARKERS)


def build_stream_url(login: str) -> str:
    return f"{TWITCH_STREAM_URL_BASE}/{login}"


@dataclass
class Destination:
    destination_type: DestinationType
    destination_id: str
    webhook_url: Optional[str] = None


@dataclass
class DispatchResult:
    """Outcome of one destination."""
    destination: Destination
    status: DeliveryStatus
    error: Optional[str] = None
    log_id: Optional[int] = None
    task_id: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.status == DeliveryStatus.SENT


class NotificationDispatcher:
    """Delivers notifications now and queues the retryable failures."""

    def __init__(
        self,
        get_db_session: Callable[[], AsyncSession],
        clients: ClientRegistry,
        queue: NotificationQueue,
        retry_config: NotificationRetryConfig,
        clock=utcnow,
    ):
        self._get_db_session = get_db_session
        self.clients = clients
        self.queue = queue
        self.retry_config = retry_config
        self._clock = clock

    async def deliver(
        self,
        destination: Destination,
        content: NotificationContent,
        message: str,
        stream_url: str,
    ) -> None:
        """
        Send one notification to one destination. Raises on failure.

        Used for the first attempt and for every queued retry.
        """
        if destination.destination_type == DestinationType.TELEGRAM:
            telegram = self.clients.telegram
            if telegram is None:
                raise ServiceUnavailableError("Telegram service not initialized")
            await telegram.send_message(destination.destination_id, message)
            return

        discord = self.clients.discord
        if discord is None:
            raise ServiceUnavailableError("Discord service not initialized")

        embed, username, avatar_url = build_embed(content, message, stream_url)
        if destination.webhook_url:
            payload = {"username": username, "embeds": [embed]}
            if avatar_url:
                payload["avatar_url"] = avatar_url
            await discord.send_webhook_message(destination.webhook_url, payload)
        else:
            await discord.send_message(destination.destination_id, {"embeds": [embed]})

    async def send_notification(self, user_id: int, content: NotificationContent) -> List[DispatchResult]:
        """
        Fan a notification out to the user's destinations.

        Raises NotFoundError when the user does not exist. Delivery failures
        never raise; they are reported in the results and the audit log.
        """
        notification_type = content.notification_type

        async with self._get_db_session() as db:
            user = await db.get(User, user_id)
            if user is None:
                raise NotFoundError(f"User {user_id} not found")
            user_settings = await get_or_create_settings(db, user_id)
            telegram_integrations, discord_integrations = await get_enabled_integrations(db, user_id)
            await db.commit()

        stream_url = build_stream_url(user.twitch_login)
        message = render_template(user_settings.template_for(notification_type.value), content.placeholders(stream_url))

        destinations = self._select_destinations(
            notification_type, user_settings.notify_reward_redemption, telegram_integrations, discord_integrations
        )
        if not destinations:
            logger.debug(f"No destinations for {notification_type.value} of user {user_id}")
            return []

        errors = await asyncio.gather(
            *(self._attempt(destination, content, message, stream_url) for destination in destinations)
        )

        results: List[DispatchResult] = []
        async with self._get_db_session() as db:
            for destination, error in zip(destinations, errors):
                results.append(
                    await self._record(db, user_id, content, message, destination, error)
                )
            await db.commit()

        sent = sum(1 for r in results if r.success)
        logger.info(f"{notification_type.value} for user {user_id}: {sent}/{len(results)} destination(s) delivered")
        return results

    @staticmethod
    def _select_destinations(
        notification_type: NotificationType,
        global_reward_flag: bool,
        telegram_integrations: List[TelegramIntegration],
        discord_integrations: List[DiscordIntegration],
    ) -> List[Destination]:
        if notification_type == NotificationType.REWARD_REDEMPTION and not global_reward_flag:
            return []

        destinations = [
            Destination(DestinationType.TELEGRAM, integration.telegram_chat_id)
            for integration in telegram_integrations
            if integration.is_enabled and integration.wants(notification_type.value)
        ]
        destinations.extend(
            Destination(DestinationType.DISCORD, integration.discord_channel_id, integration.discord_webhook_url)
            for integration in discord_integrations
            if integration.is_enabled and integration.wants(notification_type.value)
        )
        return destinations

    async def _attempt(
        self,
        destination: Destination,
        content: NotificationContent,
        message: str,
        stream_url: str,
    ) -> Optional[Exception]:
        try:
            await self.deliver(destination, content, message, stream_url)
        except Exception as e:
            logger.warning(
                f"Failed to send {content.notification_type.value} to "
                f"{destination.destination_type.value}:{destination.destination_id}: {e}"
            )
            return e
        return None

    async def _record(
        self,
        db: AsyncSession,
        user_id: int,
        content: NotificationContent,
        message: str,
        destination: Destination,
        error: Optional[Exception],
    ) -> DispatchResult:
        notification_type = content.notification_type.value

        if error is None:
            status = DeliveryStatus.SENT
        elif self.retry_config.enabled and is_retryable_error(error):
            status = DeliveryStatus.PENDING
        else:
            status = DeliveryStatus.FAILED

        error_text = str(error) if error is not None else None
        log = await record_delivery(
            db,
            user_id=user_id,
            notification_type=notification_type,
            destination_type=destination.destination_type.value,
            destination_id=destination.destination_id,
            content=message,
            status=status,
            error_message=error_text,
        )
        result = DispatchResult(destination=destination, status=status, error=error_text, log_id=log.id)

        if status == DeliveryStatus.PENDING:
            now = self._clock()
            task = await self.queue.enqueue(
                user_id=user_id,
                notification_type=notification_type,
                content_json=dump_content(content),
                message=message,
                destination_type=destination.destination_type.value,
                destination_id=destination.destination_id,
                webhook_url=destination.webhook_url,
                notification_log_id=log.id,
                max_attempts=self.retry_config.max_attempts,
                next_attempt_at=now + timedelta(seconds=self.retry_config.initial_backoff_seconds),
                expires_at=now + timedelta(seconds=self.retry_config.ttl_for(notification_type)),
                db=db,
            )
            result.task_id = task.id
            logger.info(f"Queued {notification_type} retry task {task.id} for {destination.destination_type.value}")

        return result
