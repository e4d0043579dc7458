"""
Discord REST API client (bot token).
"""
import asyncio
import math
from typing import Any, Dict, List, Optional
import aiohttp
from loguru import logger

from app.clients.base import BaseApiClient
from app.utils.errors import DiscordError

DISCORD_API_URL = "https://discord.com/api/v10"


class DiscordClient(BaseApiClient):
    """
    Client for the Discord bot API.

    A 429 response is retried exactly once after the server-specified
    ``retry_after`` (rounded up, plus one second). A second 429 surfaces as a
    DiscordError with status 429.
    """

    service_name = "Discord"

    def __init__(self, bot_token: str, api_url: str = DISCORD_API_URL, **kwargs):
        super().__init__(**kwargs)
        self.bot_token = bot_token
        self.api_url = api_url.rstrip("/")

    async def _request(
        self,
        method: str,
        url: str,
        json: Optional[Dict[str, Any]] = None,
        authenticated: bool = True,
    ) -> Any:
        headers = {"Authorization": f"Bot {self.bot_token}"} if authenticated else {}

        for attempt in (1, 2):
            try:
                async with self.session.request(method, url, json=json, headers=headers) as response:
                    if response.status == 429 and attempt == 1:
                        delay = await self._retry_delay(response)
                        logger.warning(f"Discord rate limited on {method} {url}, retrying in {delay}s")
                        await asyncio.sleep(delay)
                        continue

                    if response.status >= 400:
                        text = await response.text()
                        raise DiscordError(f"Discord API error ({response.status}): {text[:300]}", status=response.status)

                    if response.status == 204:
                        return None
                    return await response.json(content_type=None)
            except asyncio.CancelledError:
                raise
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise DiscordError(f"Failed to send Discord request: {type(e).__name__}: {e}") from e

        # Unreachable: the second iteration either returns or raises
        raise DiscordError("Discord API error (429): rate limited", status=429)

    @staticmethod
    async def _retry_delay(response: aiohttp.ClientResponse) -> int:
        retry_after: Optional[float] = None
        try:
            body = await response.json(content_type=None)
            if isinstance(body, dict) and body.get("retry_after") is not None:
                retry_after = float(body["retry_after"])
        except (ValueError, aiohttp.ContentTypeError):
            pass
        if retry_after is None:
            header = response.headers.get("Retry-After")
            try:
                retry_after = float(header) if header else 1.0
            except ValueError:
                retry_after = 1.0
        return math.ceil(retry_after) + 1

    async def verify(self) -> None:
        me = await self._request("GET", f"{self.api_url}/users/@me")
        logger.info(f"Discord bot initialized: {me.get('username', '?')}")

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def send_message(self, channel_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Post a message ({content, embeds}) to a channel as the bot."""
        return await self._request("POST", f"{self.api_url}/channels/{channel_id}/messages", json=payload)

    async def send_webhook_message(self, webhook_url: str, payload: Dict[str, Any]) -> None:
        """Post through a channel webhook (custom username/avatar, no bot auth)."""
        await self._request("POST", webhook_url, json=payload, authenticated=False)

    # ------------------------------------------------------------------
    # Guild scheduled events
    # ------------------------------------------------------------------

    async def create_scheduled_event(self, guild_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", f"{self.api_url}/guilds/{guild_id}/scheduled-events", json=payload)

    async def update_scheduled_event(self, guild_id: str, event_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request(
            "PATCH", f"{self.api_url}/guilds/{guild_id}/scheduled-events/{event_id}", json=payload
        )

    async def delete_scheduled_event(self, guild_id: str, event_id: str) -> None:
        await self._request("DELETE", f"{self.api_url}/guilds/{guild_id}/scheduled-events/{event_id}")

    async def list_scheduled_events(self, guild_id: str) -> List[Dict[str, Any]]:
        return await self._request("GET", f"{self.api_url}/guilds/{guild_id}/scheduled-events") or []
