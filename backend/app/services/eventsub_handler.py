"""
EventSub message handling.

Verification challenges and revocations are answered inline by the webhook
route; notifications are processed after the 2xx response has been sent.
"""
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple
from loguru import logger
from sqlalchemy import update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.clients.twitch import TwitchClient
from app.constants import (
    EVENTSUB_STREAM_ONLINE,
    EVENTSUB_STREAM_OFFLINE,
    EVENTSUB_CHANNEL_UPDATE,
    EVENTSUB_REWARD_REDEMPTION,
)
from app.models import EventSubSubscription, SubscriptionStatus, User
from app.schemas.notifications import (
    StreamOnlineData,
    StreamOfflineData,
    TitleChangeData,
    CategoryChangeData,
    RewardRedemptionData,
)
from app.schemas.twitch import (
    EventSubWebhookPayload,
    StreamOnlineEvent,
    StreamOfflineEvent,
    ChannelUpdateEvent,
    RewardRedemptionEvent,
)
from app.services.notification_dispatcher import NotificationDispatcher
from app.services.stream_state import ChannelStateTracker, LiveStatusService
from app.services.template_renderer import render_template
from app.services.token_service import TwitchTokenService
from app.services.user_service import get_user_by_twitch_id, get_or_create_settings
from app.utils.clock import utcnow
from app.utils.errors import BadRequestError

# Used when the stream cannot be fetched right after going live
FALLBACK_STREAM_INFO: Tuple[str, str, Optional[str]] = ("Stream started!", "Unknown", None)


class EventSubHandler:
    def __init__(
        self,
        get_db_session: Callable[[], AsyncSession],
        dispatcher: NotificationDispatcher,
        twitch: TwitchClient,
        tokens: TwitchTokenService,
        live_status: LiveStatusService,
        channel_state: ChannelStateTracker,
    ):
        self._get_db_session = get_db_session
        self.dispatcher = dispatcher
        self.twitch = twitch
        self.tokens = tokens
        self.live_status = live_status
        self.channel_state = channel_state
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[None]]] = {
            EVENTSUB_STREAM_ONLINE: self.on_stream_online,
            EVENTSUB_STREAM_OFFLINE: self.on_stream_offline,
            EVENTSUB_CHANNEL_UPDATE: self.on_channel_update,
            EVENTSUB_REWARD_REDEMPTION: self.on_reward_redemption,
        }

    # ========================================================================
    # Message types
    # ========================================================================

    async def handle_verification(self, payload: EventSubWebhookPayload) -> str:
        """Confirm the local subscription and return the challenge to echo."""
        if not payload.challenge:
            raise BadRequestError("Verification message without challenge")

        updated = await self._set_status(payload.subscription.id, SubscriptionStatus.ENABLED)
        if updated:
            logger.info(f"EventSub subscription {payload.subscription.id} ({payload.subscription.type}) verified")
        else:
            logger.debug(f"Verification for unknown subscription {payload.subscription.id}")
        return payload.challenge

    async def handle_revocation(self, payload: EventSubWebhookPayload) -> None:
        """Drop the local record; the next reconciliation pass recreates what is still required."""
        async with self._get_db_session() as db:
            result = await db.execute(
                delete(EventSubSubscription).where(
                    EventSubSubscription.twitch_subscription_id == payload.subscription.id
                )
            )
            await db.commit()
        logger.warning(
            f"EventSub subscription {payload.subscription.id} ({payload.subscription.type}) revoked: "
            f"{payload.subscription.status or 'unknown reason'} ({result.rowcount or 0} local record(s) removed)"
        )

    async def handle_notification(self, payload: EventSubWebhookPayload) -> None:
        """Route an event to its handler. Runs after the response has been sent, so errors are logged."""
        subscription = payload.subscription
        try:
            await self._set_status(subscription.id, SubscriptionStatus.ENABLED, only_if_different=True)

            handler = self._handlers.get(subscription.type)
            if handler is None:
                logger.warning(f"Ignoring EventSub notification of unsupported type {subscription.type}")
                return
            await handler(payload.event or {})
        except Exception as e:
            logger.error(f"Failed to process {subscription.type} notification ({subscription.id}): {e}")

    # ========================================================================
    # Events
    # ========================================================================

    async def on_stream_online(self, raw: Dict[str, Any]) -> None:
        event = StreamOnlineEvent.model_validate(raw)
        user = await self._find_user(event.broadcaster_user_id)
        if user is None:
            return

        await self.live_status.mark_live(event.broadcaster_user_id)
        title, category, thumbnail_url = await self.get_stream_info(user)

        await self.dispatcher.send_notification(user.id, StreamOnlineData(
            streamer_name=event.broadcaster_user_name or user.twitch_display_name,
            streamer_avatar=user.twitch_profile_image_url,
            title=title,
            category=category,
            thumbnail_url=thumbnail_url,
        ))

    async def on_stream_offline(self, raw: Dict[str, Any]) -> None:
        event = StreamOfflineEvent.model_validate(raw)
        user = await self._find_user(event.broadcaster_user_id)
        if user is None:
            return

        await self.live_status.mark_offline(event.broadcaster_user_id)
        await self.dispatcher.send_notification(user.id, StreamOfflineData(
            streamer_name=event.broadcaster_user_name or user.twitch_display_name,
        ))

    async def on_channel_update(self, raw: Dict[str, Any]) -> None:
        event = ChannelUpdateEvent.model_validate(raw)
        user = await self._find_user(event.broadcaster_user_id)
        if user is None:
            return

        change = await self.channel_state.observe(event.broadcaster_user_id, event.title, event.category_id)
        if not change.any:
            logger.debug(f"channel.update for {user.twitch_login} without title/category change")
            return

        if not await self.live_status.is_live(user):
            logger.info(f"Skipping channel update notifications for {user.twitch_login}: stream is offline")
            return

        streamer_name = event.broadcaster_user_name or user.twitch_display_name
        if change.title_changed:
            await self.dispatcher.send_notification(user.id, TitleChangeData(
                streamer_name=streamer_name,
                new_title=event.title,
                category_name=event.category_name,
            ))
        if change.category_changed:
            await self.dispatcher.send_notification(user.id, CategoryChangeData(
                streamer_name=streamer_name,
                new_category=event.category_name,
            ))

    async def on_reward_redemption(self, raw: Dict[str, Any]) -> None:
        event = RewardRedemptionEvent.model_validate(raw)
        user = await self._find_user(event.broadcaster_user_id)
        if user is None:
            return

        logger.info(
            f"Reward redemption: broadcaster={user.twitch_login}, redeemer={event.user_name}, "
            f"reward={event.reward.title}"
        )
        if not await self.live_status.is_live(user):
            logger.info(f"Skipping reward redemption notification for {user.twitch_login}: stream is offline")
            return

        content = RewardRedemptionData(
            redeemer_name=event.user_name,
            reward_name=event.reward.title,
            reward_cost=event.reward.cost,
            user_input=event.user_input or None,
            broadcaster_name=event.broadcaster_user_name or user.twitch_display_name,
        )
        await self.dispatcher.send_notification(user.id, content)

        async with self._get_db_session() as db:
            user_settings = await get_or_create_settings(db, user.id)
            await db.commit()
        if user_settings.notify_reward_redemption:
            message = render_template(user_settings.reward_redemption_message, content.placeholders(""))
            await self.send_chat_message(user, message)

    # ========================================================================
    # Helpers
    # ========================================================================

    async def get_stream_info(self, user: User) -> Tuple[str, str, Optional[str]]:
        """(title, category, thumbnail url) of the live stream, or the fallback."""
        try:
            stream = await self.live_status.get_stream(user)
        except Exception as e:
            logger.warning(f"Failed to fetch stream info for {user.twitch_login}: {e}")
            return FALLBACK_STREAM_INFO
        if stream is None:
            return FALLBACK_STREAM_INFO
        return stream.title, stream.game_name or "Unknown", stream.thumbnail_url

    async def send_chat_message(self, user: User, message: str) -> None:
        try:
            await self.tokens.call_with_refresh(
                user, lambda token: self.twitch.send_chat_message(token, user.twitch_id, user.twitch_id, message)
            )
        except Exception as e:
            logger.warning(f"Failed to send reward chat message for {user.twitch_login}: {e}")

    async def _find_user(self, broadcaster_id: str) -> Optional[User]:
        async with self._get_db_session() as db:
            user = await get_user_by_twitch_id(db, broadcaster_id)
        if user is None:
            logger.debug(f"EventSub event for unknown broadcaster {broadcaster_id}")
        return user

    async def _set_status(
        self,
        twitch_subscription_id: str,
        status: SubscriptionStatus,
        only_if_different: bool = False,
    ) -> bool:
        stmt = update(EventSubSubscription).where(
            EventSubSubscription.twitch_subscription_id == twitch_subscription_id
        )
        if only_if_different:
            stmt = stmt.where(EventSubSubscription.status != status.value)
        async with self._get_db_session() as db:
            result = await db.execute(stmt.values(status=status.value, updated_at=utcnow()))
            await db.commit()
        return bool(result.rowcount)
