"""Shared test fixtures."""

import os
import tempfile
from datetime import timedelta

from cryptography.fernet import Fernet

# Must be set before app.config is imported anywhere
_TEST_DIR = tempfile.mkdtemp(prefix="streamrelay_test_")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DIR}/test.db"
os.environ["DATA_DIR"] = _TEST_DIR
os.environ["CONFIG_ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["TWITCH__WEBHOOK_SECRET"] = "test-webhook-secret-123"

import pytest_asyncio  # noqa: E402

from app.database import Base, engine, AsyncSessionLocal  # noqa: E402
from app.models import (  # noqa: E402
    User,
    UserSettings,
    TelegramIntegration,
    DiscordIntegration,
)
from app.utils.clock import utcnow  # noqa: E402


@pytest_asyncio.fixture
async def session_factory():
    """Fresh schema per test; yields the application's session factory."""
    import app.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield AsyncSessionLocal
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def user(session_factory) -> User:
    """A broadcaster with a valid token and default settings."""
    async with session_factory() as db:
        user = User(
            twitch_id="1001",
            twitch_login="streamer",
            twitch_display_name="Streamer",
            twitch_profile_image_url="https://cdn.example/avatar.png",
            twitch_access_token="access-token",
            twitch_refresh_token="refresh-token",
            twitch_token_expires_at=utcnow() + timedelta(hours=4),
        )
        db.add(user)
        await db.flush()
        db.add(UserSettings(user_id=user.id))
        await db.commit()
        await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def telegram_integration(session_factory, user) -> TelegramIntegration:
    async with session_factory() as db:
        integration = TelegramIntegration(user_id=user.id, telegram_chat_id="-100200", telegram_chat_title="Fans")
        db.add(integration)
        await db.commit()
        await db.refresh(integration)
    return integration


@pytest_asyncio.fixture
async def discord_integration(session_factory, user) -> DiscordIntegration:
    async with session_factory() as db:
        integration = DiscordIntegration(
            user_id=user.id,
            discord_guild_id="g-1",
            discord_channel_id="c-1",
            discord_guild_name="Guild",
            discord_channel_name="live",
            calendar_sync_enabled=True,
        )
        db.add(integration)
        await db.commit()
        await db.refresh(integration)
    return integration
