"""
Swappable handles for the optional bot clients.

Telegram and Discord bots may be unconfigured or unreachable at startup.
Consumers read the current handle on every use and treat None as a normal
"service not initialized" outcome; the handles can be installed later
without restarting the process.
"""
import asyncio
from typing import Optional
from loguru import logger

from app.clients.discord import DiscordClient
from app.clients.telegram import TelegramClient


class ClientRegistry:
    """Holds the current Telegram and Discord clients (either may be None)."""

    def __init__(
        self,
        telegram: Optional[TelegramClient] = None,
        discord: Optional[DiscordClient] = None,
    ):
        self._telegram = telegram
        self._discord = discord
        self._lock = asyncio.Lock()

    @property
    def telegram(self) -> Optional[TelegramClient]:
        return self._telegram

    @property
    def discord(self) -> Optional[DiscordClient]:
        return self._discord

    async def set_telegram(self, client: Optional[TelegramClient]) -> None:
        async with self._lock:
            previous, self._telegram = self._telegram, client
        if previous is not None and previous is not client:
            await previous.close()

    async def set_discord(self, client: Optional[DiscordClient]) -> None:
        async with self._lock:
            previous, self._discord = self._discord, client
        if previous is not None and previous is not client:
            await previous.close()

    async def initialize_missing(
        self,
        telegram_token: Optional[str],
        discord_token: Optional[str],
    ) -> bool:
        """
        Create and verify any configured client that is not installed yet.

        Returns:
            True when every configured client is installed.
        """
        complete = True

        if telegram_token and self._telegram is None:
            client = TelegramClient(telegram_token)
            try:
                await client.verify()
            except Exception as e:
                logger.warning(f"Telegram bot not available yet: {e}")
                await client.close()
                complete = False
            else:
                await self.set_telegram(client)

        if discord_token and self._discord is None:
            client = DiscordClient(discord_token)
            try:
                await client.verify()
            except Exception as e:
                logger.warning(f"Discord bot not available yet: {e}")
                await client.close()
                complete = False
            else:
                await self.set_discord(client)

        return complete

    async def close(self) -> None:
        await self.set_telegram(None)
        await self.set_discord(None)
