"""
Twitch Helix, token and EventSub API client.
"""
import asyncio
import time
from typing import Any, Dict, List, Optional, Tuple
import aiohttp
from loguru import logger

from app.clients.base import BaseApiClient
from app.schemas.twitch import (
    EventSubInfo,
    Schedule,
    Stream,
    TokenResponse,
)
from app.utils.errors import TwitchApiError

TWITCH_AUTH_URL = "https://id.twitch.tv/oauth2"
TWITCH_API_URL = "https://api.twitch.tv/helix"

# Transient (429/5xx/network) retry configuration
MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0
BACKOFF_MULTIPLIER = 2.0

# Renew the app token this long before Twitch expires it
APP_TOKEN_EXPIRY_MARGIN_SECONDS = 300


class TwitchClient(BaseApiClient):
    """
    Client for the Twitch APIs.

    User-token calls raise TwitchApiError with ``status=401`` when the token
    is expired or revoked, so callers can refresh and retry once. App-token
    calls (EventSub) refresh the app token themselves on 401.
    """

    service_name = "Twitch"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        callback_url: str = "",
        webhook_secret: str = "",
        api_url: str = TWITCH_API_URL,
        auth_url: str = TWITCH_AUTH_URL,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.client_id = client_id
        self.client_secret = client_secret
        self.callback_url = callback_url
        self.webhook_secret = webhook_secret
        self.api_url = api_url.rstrip("/")
        self.auth_url = auth_url.rstrip("/")
        self._app_token: Optional[str] = None
        self._app_token_expires_at: float = 0.0
        self._app_token_lock = asyncio.Lock()

    async def _request(
        self,
        method: str,
        url: str,
        token: Optional[str] = None,
        params: Optional[Any] = None,
        json: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, str]] = None,
    ) -> Tuple[int, Any]:
        """
        Make an HTTP request with exponential backoff on 429/5xx and network errors.

        Returns:
            (status, body) where body is parsed JSON when possible, else text.
            Non-2xx statuses are returned, not raised; callers decide.
        """
        headers = {"Client-Id": self.client_id}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        backoff = INITIAL_BACKOFF_SECONDS
        last_error: Optional[str] = None

        for attempt in range(1, MAX_RETRIES + 1):
            try:
                async with self.session.request(
                    method, url, headers=headers, params=params, json=json, data=data
                ) as response:
                    text = await response.text()
                    try:
                        body = await response.json(content_type=None) if text else None
                    except ValueError:
                        body = text

                    if response.status == 429 or response.status >= 500:
                        last_error = f"HTTP {response.status}: {text[:200]}"
                        if attempt == MAX_RETRIES:
                            return response.status, body
                    else:
                        return response.status, body
            except asyncio.CancelledError:
                raise  # Don't retry on cancellation
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = f"{type(e).__name__}: {e}"
                if attempt == MAX_RETRIES:
                    raise TwitchApiError(f"Failed to reach Twitch: {last_error}") from e

            logger.warning(
                f"Transient Twitch error on {method} {url} ({last_error}). "
                f"Retrying in {backoff}s (attempt {attempt}/{MAX_RETRIES})"
            )
            await asyncio.sleep(backoff)
            backoff *= BACKOFF_MULTIPLIER

        raise TwitchApiError(f"Twitch request failed: {last_error}")

    @staticmethod
    def _error(context: str, status: int, body: Any) -> TwitchApiError:
        message = body.get("message") if isinstance(body, dict) else body
        return TwitchApiError(f"{context} (HTTP {status}): {message}", status=status)

    async def verify(self) -> None:
        await self.get_app_access_token()
        logger.info("Twitch app access token acquired")

    # ========================================================================
    # OAuth
    # ========================================================================

    async def refresh_token(self, refresh_token: str) -> TokenResponse:
        """Refresh a user access token."""
        status, body = await self._request("POST", f"{self.auth_url}/token", data={
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        })
        if status != 200:
            raise self._error("Failed to refresh token", status, body)
        return TokenResponse.model_validate(body)

    async def get_app_access_token(self, force_refresh: bool = False) -> str:
        """Get a cached app access token, requesting a new one when needed."""
        async with self._app_token_lock:
            if not force_refresh and self._app_token and time.monotonic() < self._app_token_expires_at:
                return self._app_token

            status, body = await self._request("POST", f"{self.auth_url}/token", data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "client_credentials",
            })
            if status != 200:
                raise self._error("Failed to get app access token", status, body)

            token = TokenResponse.model_validate(body)
            self._app_token = token.access_token
            lifetime = max(token.expires_in - APP_TOKEN_EXPIRY_MARGIN_SECONDS, 60)
            self._app_token_expires_at = time.monotonic() + lifetime
            logger.debug(f"Twitch app access token refreshed (valid ~{lifetime}s)")
            return self._app_token

    async def _app_request(
        self,
        method: str,
        url: str,
        params: Optional[Any] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Tuple[int, Any]:
        """App-token request; on 401 the token is renewed and the call retried once."""
        token = await self.get_app_access_token()
        status, body = await self._request(method, url, token=token, params=params, json=json)
        if status == 401:
            logger.info("Twitch app token rejected, refreshing and retrying once")
            token = await self.get_app_access_token(force_refresh=True)
            status, body = await self._request(method, url, token=token, params=params, json=json)
        return status, body

    # ========================================================================
    # Users, streams, schedule, chat (user token)
    # ========================================================================

    async def get_stream(self, access_token: str, user_id: str) -> Optional[Stream]:
        """Get the live stream of a broadcaster, or None when offline."""
        status, body = await self._request(
            "GET", f"{self.api_url}/streams", token=access_token, params={"user_id": user_id}
        )
        if status != 200:
            raise self._error("Failed to get stream", status, body)
        streams = body.get("data", [])
        return Stream.model_validate(streams[0]) if streams else None

    async def get_schedule(self, access_token: str, broadcaster_id: str) -> Optional[Schedule]:
        """Get the broadcaster's stream schedule. None when there is no schedule (404)."""
        status, body = await self._request(
            "GET", f"{self.api_url}/schedule", token=access_token, params={"broadcaster_id": broadcaster_id}
        )
        if status == 404:
            return None
        if status != 200:
            raise self._error("Failed to get schedule", status, body)
        data = body.get("data") or {}
        # Twitch sends "segments": null when only a vacation is set
        data["segments"] = data.get("segments") or []
        return Schedule.model_validate(data)

    async def send_chat_message(self, access_token: str, broadcaster_id: str, sender_id: str, message: str) -> None:
        """Send a chat message to the broadcaster's channel."""
        status, body = await self._request("POST", f"{self.api_url}/chat/messages", token=access_token, json={
            "broadcaster_id": broadcaster_id,
            "sender_id": sender_id,
            "message": message,
        })
        if status != 200:
            raise self._error("Failed to send chat message", status, body)
        results = body.get("data", [])
        if results and not results[0].get("is_sent", True):
            reason = (results[0].get("drop_reason") or {}).get("message", "dropped")
            raise TwitchApiError(f"Chat message was not sent: {reason}", status=status)

    # ========================================================================
    # EventSub (app token)
    # ========================================================================

    async def create_eventsub_subscription(
        self,
        subscription_type: str,
        version: str,
        condition: Dict[str, Any],
    ) -> EventSubInfo:
        """Create a webhook EventSub subscription."""
        status, body = await self._app_request("POST", f"{self.api_url}/eventsub/subscriptions", json={
            "type": subscription_type,
            "version": version,
            "condition": condition,
            "transport": {
                "method": "webhook",
                "callback": self.callback_url,
                "secret": self.webhook_secret,
            },
        })
        if status not in (200, 202):
            raise self._error(f"Failed to create {subscription_type} subscription", status, body)
        subscriptions = body.get("data", [])
        if not subscriptions:
            raise TwitchApiError(f"Twitch returned no subscription for {subscription_type}", status=status)
        return EventSubInfo.model_validate(subscriptions[0])

    async def list_eventsub_subscriptions(self, subscription_type: Optional[str] = None) -> List[EventSubInfo]:
        """List every EventSub subscription of the app, following pagination cursors."""
        subscriptions: List[EventSubInfo] = []
        cursor: Optional[str] = None

        while True:
            params: Dict[str, str] = {}
            if subscription_type:
                params["type"] = subscription_type
            if cursor:
                params["after"] = cursor

            status, body = await self._app_request("GET", f"{self.api_url}/eventsub/subscriptions", params=params)
            if status != 200:
                raise self._error("Failed to list subscriptions", status, body)

            subscriptions.extend(EventSubInfo.model_validate(item) for item in body.get("data", []))
            cursor = (body.get("pagination") or {}).get("cursor")
            if not cursor:
                return subscriptions

    async def delete_eventsub_subscription(self, subscription_id: str) -> None:
        """Delete an EventSub subscription. An unknown id counts as deleted."""
        status, body = await self._app_request(
            "DELETE", f"{self.api_url}/eventsub/subscriptions", params={"id": subscription_id}
        )
        if status == 404:
            logger.debug(f"EventSub subscription {subscription_id} already gone on Twitch")
            return
        if status != 204:
            raise self._error(f"Failed to delete subscription {subscription_id}", status, body)
