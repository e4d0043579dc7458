"""Recording stand-ins for the Twitch, Discord and Telegram clients."""

from itertools import count
from typing import Any, Dict, List, Optional

from app.schemas.twitch import EventSubInfo, Schedule, Stream, TokenResponse
from app.utils.errors import DiscordError, TwitchApiError


class FakeTelegram:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.create_error: Optional[Exception] = None
        self.sent: List[tuple] = []

    async def send_message(self, chat_id: str, text: str, **kwargs) -> int:
        if self.error is not None:
            raise self.error
        self.sent.append((chat_id, text))
        return len(self.sent)

    async def close(self) -> None:
        pass


class FakeDiscord:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.create_error: Optional[Exception] = None
        self.messages: List[tuple] = []
        self.webhook_messages: List[tuple] = []
        self.events: Dict[str, Dict[str, Any]] = {}
        self.created: List[Dict[str, Any]] = []
        self.updated: List[tuple] = []
        self.deleted: List[str] = []
        self._ids = count(9000)

    async def send_message(self, channel_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self.error is not None:
            raise self.error
        self.messages.append((channel_id, payload))
        return {"id": "m-1"}

    async def send_webhook_message(self, webhook_url: str, payload: Dict[str, Any]) -> None:
        if self.error is not None:
            raise self.error
        self.webhook_messages.append((webhook_url, payload))

    async def create_scheduled_event(self, guild_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self.create_error is not None:
            raise self.create_error
        event_id = str(next(self._ids))
        self.events[event_id] = payload
        self.created.append(payload)
        return {"id": event_id, **payload}

    async def update_scheduled_event(self, guild_id: str, event_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if event_id not in self.events:
            raise DiscordError("Discord API error (404): Unknown Guild Scheduled Event", status=404)
        self.events[event_id] = payload
        self.updated.append((event_id, payload))
        return {"id": event_id, **payload}

    async def delete_scheduled_event(self, guild_id: str, event_id: str) -> None:
        self.events.pop(event_id, None)
        self.deleted.append(event_id)

    async def close(self) -> None:
        pass


class FakeTwitch:
    def __init__(self):
        self.stream: Optional[Stream] = None
        self.schedule: Optional[Schedule] = None
        self.schedule_error: Optional[Exception] = None
        self.remote: Dict[str, EventSubInfo] = {}
        self.create_error: Optional[Exception] = None
        self.delete_error: Optional[Exception] = None
        self.created: List[str] = []
        self.deleted: List[str] = []
        self.list_calls = 0
        self.chat_messages: List[str] = []
        self.refreshes = 0
        self.unauthorized_tokens: set = set()
        self._ids = count(1)

    def _check(self, token: str) -> None:
        if token in self.unauthorized_tokens:
            raise TwitchApiError("Invalid OAuth token (HTTP 401)", status=401)

    async def refresh_token(self, refresh_token: str) -> TokenResponse:
        self.refreshes += 1
        return TokenResponse(
            access_token=f"access-{self.refreshes}",
            refresh_token=f"refresh-{self.refreshes}",
            expires_in=14400,
        )

    async def get_stream(self, access_token: str, user_id: str) -> Optional[Stream]:
        self._check(access_token)
        return self.stream

    async def get_schedule(self, access_token: str, broadcaster_id: str) -> Optional[Schedule]:
        self._check(access_token)
        if self.schedule_error is not None:
            raise self.schedule_error
        return self.schedule

    async def send_chat_message(self, access_token: str, broadcaster_id: str, sender_id: str, message: str) -> None:
        self._check(access_token)
        self.chat_messages.append(message)

    async def create_eventsub_subscription(self, subscription_type: str, version: str, condition: Dict[str, Any]) -> EventSubInfo:
        if self.create_error is not None:
            raise self.create_error
        info = EventSubInfo(
            id=f"sub-{next(self._ids)}",
            status="webhook_callback_verification_pending",
            type=subscription_type,
            version=version,
            condition=condition,
        )
        self.remote[info.id] = info
        self.created.append(subscription_type)
        return info

    async def list_eventsub_subscriptions(self, subscription_type: Optional[str] = None) -> List[EventSubInfo]:
        self.list_calls += 1
        return [s for s in self.remote.values() if subscription_type is None or s.type == subscription_type]

    async def delete_eventsub_subscription(self, subscription_id: str) -> None:
        if self.delete_error is not None:
            raise self.delete_error
        self.remote.pop(subscription_id, None)
        self.deleted.append(subscription_id)

    async def close(self) -> None:
        pass
