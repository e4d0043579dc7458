"""EventSub event routing tests."""

import pytest
from sqlalchemy import select, update

from app.clients.registry import ClientRegistry
from app.config import NotificationRetryConfig
from app.models import EventSubSubscription, NotificationLog, TelegramIntegration, UserSettings
from app.schemas.twitch import EventSubWebhookPayload, Stream
from app.services.eventsub_handler import EventSubHandler
from app.services.notification_dispatcher import NotificationDispatcher
from app.services.notification_queue import NotificationQueue
from app.services.stream_state import ChannelStateTracker, LiveStatusService
from app.services.token_service import TwitchTokenService
from app.utils.errors import BadRequestError
from tests.fakes import FakeTelegram, FakeTwitch


def build_handler(session_factory, twitch, telegram):
    queue = NotificationQueue(session_factory)
    dispatcher = NotificationDispatcher(
        session_factory, ClientRegistry(telegram=telegram), queue, NotificationRetryConfig()
    )
    tokens = TwitchTokenService(twitch, session_factory)
    return EventSubHandler(
        session_factory,
        dispatcher,
        twitch,
        tokens,
        LiveStatusService(twitch, tokens),
        ChannelStateTracker(),
    )


def notification(subscription_type, event, subscription_id="sub-1"):
    return EventSubWebhookPayload.model_validate({
        "subscription": {"id": subscription_id, "type": subscription_type, "status": "enabled", "version": "1"},
        "event": event,
    })


BROADCASTER = {
    "broadcaster_user_id": "1001",
    "broadcaster_user_login": "streamer",
    "broadcaster_user_name": "Streamer",
}

LIVE_STREAM = Stream(
    id="s-1",
    user_id="1001",
    user_login="streamer",
    user_name="Streamer",
    game_name="Celeste",
    title="Any% practice",
    type="live",
    thumbnail_url="https://cdn.example/thumb-{width}x{height}.jpg",
)


async def _logs(session_factory):
    async with session_factory() as db:
        result = await db.execute(select(NotificationLog).order_by(NotificationLog.id))
        return list(result.scalars().all())


class TestMessageTypes:
    @pytest.mark.asyncio
    async def test_verification_enables_subscription(self, session_factory, user) -> None:
        async with session_factory() as db:
            db.add(EventSubSubscription(
                twitch_subscription_id="sub-1",
                user_id=user.id,
                subscription_type="stream.online",
                status="webhook_callback_verification_pending",
            ))
            await db.commit()
        handler = build_handler(session_factory, FakeTwitch(), FakeTelegram())
        payload = EventSubWebhookPayload.model_validate({
            "subscription": {"id": "sub-1", "type": "stream.online"},
            "challenge": "pogchamp-kappa-360noscope-vohiyo",
        })

        assert await handler.handle_verification(payload) == "pogchamp-kappa-360noscope-vohiyo"

        async with session_factory() as db:
            record = (await db.execute(select(EventSubSubscription))).scalar_one()
        assert record.status == "enabled"

    @pytest.mark.asyncio
    async def test_verification_without_challenge(self, session_factory) -> None:
        handler = build_handler(session_factory, FakeTwitch(), FakeTelegram())
        payload = EventSubWebhookPayload.model_validate({"subscription": {"id": "sub-1", "type": "stream.online"}})
        with pytest.raises(BadRequestError):
            await handler.handle_verification(payload)

    @pytest.mark.asyncio
    async def test_unknown_broadcaster_ignored(self, session_factory, user, telegram_integration) -> None:
        telegram = FakeTelegram()
        handler = build_handler(session_factory, FakeTwitch(), telegram)
        await handler.handle_notification(notification("stream.online", {"broadcaster_user_id": "999"}))
        assert telegram.sent == []


class TestStreamEvents:
    @pytest.mark.asyncio
    async def test_online_uses_live_stream_info(self, session_factory, user, telegram_integration) -> None:
        twitch, telegram = FakeTwitch(), FakeTelegram()
        twitch.stream = LIVE_STREAM
        handler = build_handler(session_factory, twitch, telegram)

        await handler.handle_notification(notification("stream.online", BROADCASTER))

        assert len(telegram.sent) == 1
        text = telegram.sent[0][1]
        assert "Streamer started streaming!" in text
        assert "Any% practice" in text
        assert "Celeste" in text
        assert await handler.live_status.is_live(user)

    @pytest.mark.asyncio
    async def test_online_falls_back_when_stream_unavailable(self, session_factory, user, telegram_integration) -> None:
        twitch, telegram = FakeTwitch(), FakeTelegram()
        handler = build_handler(session_factory, twitch, telegram)

        await handler.handle_notification(notification("stream.online", BROADCASTER))

        assert "Stream started!" in telegram.sent[0][1]
        assert "Unknown" in telegram.sent[0][1]

    @pytest.mark.asyncio
    async def test_offline_respects_destination_flag(self, session_factory, user, telegram_integration) -> None:
        telegram = FakeTelegram()
        handler = build_handler(session_factory, FakeTwitch(), telegram)

        await handler.handle_notification(notification("stream.offline", BROADCASTER))
        assert telegram.sent == []

        async with session_factory() as db:
            await db.execute(update(TelegramIntegration).values(notify_stream_offline=True))
            await db.commit()
        await handler.handle_notification(notification("stream.offline", BROADCASTER))
        assert telegram.sent == [("-100200", "⚫ Streamer ended the stream")]


class TestChannelUpdate:
    """Title and category notifications are diffed and gated on the stream being live."""

    def _update(self, title, category_id, category_name):
        return notification("channel.update", {
            **BROADCASTER, "title": title, "category_id": category_id, "category_name": category_name,
        })

    @pytest.mark.asyncio
    async def test_first_update_is_baseline(self, session_factory, user, telegram_integration) -> None:
        twitch, telegram = FakeTwitch(), FakeTelegram()
        twitch.stream = LIVE_STREAM
        handler = build_handler(session_factory, twitch, telegram)

        await handler.handle_notification(self._update("Any% practice", "491", "Celeste"))

        assert telegram.sent == []

    @pytest.mark.asyncio
    async def test_title_and_category_sent_separately(self, session_factory, user, telegram_integration) -> None:
        twitch, telegram = FakeTwitch(), FakeTelegram()
        twitch.stream = LIVE_STREAM
        handler = build_handler(session_factory, twitch, telegram)
        await handler.handle_notification(self._update("Any% practice", "491", "Celeste"))

        await handler.handle_notification(self._update("Race night", "492", "Hollow Knight"))

        texts = [text for _, text in telegram.sent]
        assert texts == [
            "📝 Streamer changed stream title:\n\nRace night",
            "🎮 Streamer changed category to: Hollow Knight",
        ]
        types = [log.notification_type for log in await _logs(session_factory)]
        assert types == ["title_change", "category_change"]

    @pytest.mark.asyncio
    async def test_offline_stream_suppresses(self, session_factory, user, telegram_integration) -> None:
        twitch, telegram = FakeTwitch(), FakeTelegram()
        handler = build_handler(session_factory, twitch, telegram)
        await handler.handle_notification(self._update("Any% practice", "491", "Celeste"))

        await handler.handle_notification(self._update("Race night", "491", "Celeste"))

        assert telegram.sent == []


class TestRewardRedemption:
    REDEMPTION = {
        **BROADCASTER,
        "id": "r-1",
        "user_id": "2002",
        "user_login": "viewer",
        "user_name": "Viewer",
        "user_input": "play the bongo level",
        "reward": {"id": "rw-1", "title": "Hydrate", "cost": 500},
    }

    async def _enable_rewards(self, session_factory):
        async with session_factory() as db:
            await db.execute(update(UserSettings).values(notify_reward_redemption=True))
            await db.execute(update(TelegramIntegration).values(notify_reward_redemption=True))
            await db.commit()

    @pytest.mark.asyncio
    async def test_live_redemption_notifies_and_posts_chat(self, session_factory, user, telegram_integration) -> None:
        await self._enable_rewards(session_factory)
        twitch, telegram = FakeTwitch(), FakeTelegram()
        twitch.stream = LIVE_STREAM
        handler = build_handler(session_factory, twitch, telegram)

        await handler.handle_notification(notification(
            "channel.channel_points_custom_reward_redemption.add", self.REDEMPTION
        ))

        assert telegram.sent == [("-100200", "🎁 Viewer redeemed reward \"Hydrate\"!")]
        assert twitch.chat_messages == ["🎁 Viewer redeemed reward \"Hydrate\"!"]

    @pytest.mark.asyncio
    async def test_offline_redemption_ignored(self, session_factory, user, telegram_integration) -> None:
        await self._enable_rewards(session_factory)
        twitch, telegram = FakeTwitch(), FakeTelegram()
        handler = build_handler(session_factory, twitch, telegram)

        await handler.handle_notification(notification(
            "channel.channel_points_custom_reward_redemption.add", self.REDEMPTION
        ))

        assert telegram.sent == []
        assert twitch.chat_messages == []

    @pytest.mark.asyncio
    async def test_chat_retried_after_token_refresh(self, session_factory, user, telegram_integration) -> None:
        await self._enable_rewards(session_factory)
        twitch, telegram = FakeTwitch(), FakeTelegram()
        twitch.stream = LIVE_STREAM
        twitch.unauthorized_tokens.add("access-token")
        handler = build_handler(session_factory, twitch, telegram)

        await handler.handle_notification(notification(
            "channel.channel_points_custom_reward_redemption.add", self.REDEMPTION
        ))

        assert twitch.refreshes == 1
        assert len(twitch.chat_messages) == 1
