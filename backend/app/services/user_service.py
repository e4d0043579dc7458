"""
User lookups shared by the webhook path and the background loops.
"""
from typing import List, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import User, UserSettings, TelegramIntegration, DiscordIntegration


async def get_user_by_twitch_id(db: AsyncSession, twitch_id: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.twitch_id == twitch_id))
    return result.scalar_one_or_none()


async def get_or_create_settings(db: AsyncSession, user_id: int) -> UserSettings:
    """Load the user's settings, creating the defaults on first use."""
    result = await db.execute(select(UserSettings).where(UserSettings.user_id == user_id))
    user_settings = result.scalar_one_or_none()
    if user_settings is None:
        user_settings = UserSettings(user_id=user_id)
        db.add(user_settings)
        await db.flush()
    return user_settings


async def get_enabled_integrations(db: AsyncSession, user_id: int):
    """Enabled Telegram and Discord integrations of a user."""
    telegram = await db.execute(
        select(TelegramIntegration)
        .where(TelegramIntegration.user_id == user_id, TelegramIntegration.is_enabled.is_(True))
        .order_by(TelegramIntegration.id)
    )
    discord = await db.execute(
        select(DiscordIntegration)
        .where(DiscordIntegration.user_id == user_id, DiscordIntegration.is_enabled.is_(True))
        .order_by(DiscordIntegration.id)
    )
    telegram_integrations: List[TelegramIntegration] = list(telegram.scalars().all())
    discord_integrations: List[DiscordIntegration] = list(discord.scalars().all())
    return telegram_integrations, discord_integrations
