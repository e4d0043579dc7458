"""
User access token upkeep.

Tokens are refreshed proactively when they expire within a minute, and once
more reactively when Twitch rejects a call with 401.
"""
from datetime import timedelta
from typing import Awaitable, Callable, TypeVar
from loguru import logger
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.clients.twitch import TwitchClient
from app.constants import TOKEN_REFRESH_MARGIN_SECONDS
from app.models import User
from app.utils.clock import utcnow
from app.utils.errors import TwitchApiError

T = TypeVar("T")


class TwitchTokenService:
    def __init__(self, twitch: TwitchClient, get_db_session: Callable[[], AsyncSession], clock=utcnow):
        self.twitch = twitch
        self._get_db_session = get_db_session
        self._clock = clock

    async def ensure_fresh_token(self, user: User) -> str:
        """Return a usable access token, refreshing it first when it is about to expire."""
        margin = timedelta(seconds=TOKEN_REFRESH_MARGIN_SECONDS)
        if user.twitch_token_expires_at is None or user.twitch_token_expires_at <= self._clock() + margin:
            return await self.refresh_user_token(user)
        return user.twitch_access_token

    async def refresh_user_token(self, user: User) -> str:
        """Refresh the user's tokens and persist them. Returns the new access token."""
        token = await self.twitch.refresh_token(user.twitch_refresh_token)
        expires_at = self._clock() + timedelta(seconds=token.expires_in)
        refresh_token = token.refresh_token or user.twitch_refresh_token

        async with self._get_db_session() as db:
            await db.execute(
                update(User)
                .where(User.id == user.id)
                .values(
                    twitch_access_token=token.access_token,
                    twitch_refresh_token=refresh_token,
                    twitch_token_expires_at=expires_at,
                    updated_at=self._clock(),
                )
            )
            await db.commit()

        user.twitch_access_token = token.access_token
        user.twitch_refresh_token = refresh_token
        user.twitch_token_expires_at = expires_at
        logger.debug(f"Refreshed Twitch token for {user.twitch_login}")
        return token.access_token

    async def call_with_refresh(self, user: User, call: Callable[[str], Awaitable[T]]) -> T:
        """Run ``call(access_token)``; on 401 refresh the token and retry exactly once."""
        access_token = await self.ensure_fresh_token(user)
        try:
            return await call(access_token)
        except TwitchApiError as e:
            if not e.is_unauthorized:
                raise
            logger.info(f"Twitch rejected the token of {user.twitch_login}, refreshing and retrying once")
            access_token = await self.refresh_user_token(user)
            return await call(access_token)
