"""
Live status and channel state caches.

Both are process-local. The live cache remembers only positive answers, for
a short while, to avoid calling the streams API on every channel event. The
channel tracker remembers the last (title, category) seen per broadcaster so
channel.update events can be diffed.
"""
from dataclasses import dataclass
from typing import Optional, Tuple
from loguru import logger

from app.clients.twitch import TwitchClient
from app.constants import LIVE_STATUS_CACHE_TTL_SECONDS
from app.models import User
from app.schemas.twitch import Stream
from app.services.token_service import TwitchTokenService
from app.utils.cache import TTLCache


@dataclass
class ChannelChange:
    title_changed: bool = False
    category_changed: bool = False

    @property
    def any(self) -> bool:
        return self.title_changed or self.category_changed


class ChannelStateTracker:
    """Last observed (title, category_id) per broadcaster."""

    def __init__(self, cache: Optional[TTLCache] = None):
        self._cache: TTLCache[str, Tuple[str, str]] = cache or TTLCache(ttl_seconds=None)

    async def observe(self, broadcaster_id: str, title: str, category_id: str) -> ChannelChange:
        """
        Record the current state and report what changed.

        The first observation of a broadcaster is a baseline, not a change.
        """
        previous = await self._cache.swap(broadcaster_id, (title, category_id))
        if previous is None:
            return ChannelChange()
        old_title, old_category_id = previous
        return ChannelChange(title_changed=old_title != title, category_changed=old_category_id != category_id)


class LiveStatusService:
    def __init__(
        self,
        twitch: TwitchClient,
        tokens: TwitchTokenService,
        cache: Optional[TTLCache] = None,
    ):
        self.twitch = twitch
        self.tokens = tokens
        self._cache: TTLCache[str, bool] = cache or TTLCache(ttl_seconds=LIVE_STATUS_CACHE_TTL_SECONDS)

    async def mark_live(self, broadcaster_id: str) -> None:
        await self._cache.set(broadcaster_id, True)

    async def mark_offline(self, broadcaster_id: str) -> None:
        await self._cache.delete(broadcaster_id)

    async def get_stream(self, user: User) -> Optional[Stream]:
        return await self.tokens.call_with_refresh(
            user, lambda token: self.twitch.get_stream(token, user.twitch_id)
        )

    async def is_live(self, user: User) -> bool:
        """
        Whether the broadcaster is live.

        A cached positive answer is trusted; otherwise the API is asked. API
        failures count as offline.
        """
        if await self._cache.get(user.twitch_id):
            return True

        try:
            stream = await self.get_stream(user)
        except Exception as e:
            logger.warning(f"Could not check live status of {user.twitch_login}: {e}")
            return False

        if stream is not None:
            await self._cache.set(user.twitch_id, True)
            return True
        await self._cache.delete(user.twitch_id)
        return False
