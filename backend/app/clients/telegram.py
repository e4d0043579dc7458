"""
Telegram Bot API client.
"""
import asyncio
from typing import Any, Dict
import aiohttp
from loguru import logger

from app.clients.base import BaseApiClient
from app.utils.errors import TelegramError

TELEGRAM_API_URL = "https://api.telegram.org"


class TelegramClient(BaseApiClient):
    """Client for the Telegram Bot API."""

    service_name = "Telegram"

    def __init__(self, bot_token: str, api_url: str = TELEGRAM_API_URL, **kwargs):
        super().__init__(**kwargs)
        self.bot_token = bot_token
        self.api_url = api_url.rstrip("/")

    async def _call(self, method: str, payload: Dict[str, Any]) -> Any:
        url = f"{self.api_url}/bot{self.bot_token}/{method}"
        try:
            async with self.session.post(url, json=payload) as response:
                data = await response.json(content_type=None)
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise TelegramError(f"Failed to send Telegram request: {type(e).__name__}: {e}") from e

        if not isinstance(data, dict) or not data.get("ok"):
            code = data.get("error_code") if isinstance(data, dict) else response.status
            description = data.get("description", "unknown error") if isinstance(data, dict) else str(data)
            raise TelegramError(f"Telegram API error ({code}): {description}", status=code)
        return data.get("result")

    async def verify(self) -> None:
        me = await self._call("getMe", {})
        logger.info(f"Telegram bot initialized: @{me.get('username', '?')}")

    async def send_message(
        self,
        chat_id: str,
        text: str,
        parse_mode: str = "HTML",
        disable_web_page_preview: bool = False,
    ) -> int:
        """Send a text message. Returns the Telegram message id."""
        try:
            numeric_chat_id = int(chat_id)
        except ValueError:
            raise TelegramError(f"Invalid chat_id: {chat_id}")

        result = await self._call("sendMessage", {
            "chat_id": numeric_chat_id,
            "text": text,
            "parse_mode": parse_mode,
            "disable_web_page_preview": disable_web_page_preview,
        })
        return result.get("message_id", 0)
