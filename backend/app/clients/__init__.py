"""
API clients for external services.
"""
from app.clients.base import BaseApiClient
from app.clients.discord import DiscordClient
from app.clients.telegram import TelegramClient
from app.clients.twitch import TwitchClient
from app.clients.registry import ClientRegistry

__all__ = [
    "BaseApiClient",
    "DiscordClient",
    "TelegramClient",
    "TwitchClient",
    "ClientRegistry",
]
