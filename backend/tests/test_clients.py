"""HTTP client tests against local aiohttp servers."""

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from app.clients.discord import DiscordClient
from app.clients.registry import ClientRegistry
from app.clients.telegram import TelegramClient
from app.utils.errors import DiscordError, TelegramError


async def serve(routes, responses):
    """Start a server answering each request with the next queued (status, body)."""
    calls = []

    async def handler(request: web.Request) -> web.Response:
        body = await request.json() if request.can_read_body else None
        calls.append((request.method, request.path, request.headers.get("Authorization"), body))
        status, payload = responses.pop(0)
        if payload is None:
            return web.Response(status=status)
        return web.json_response(payload, status=status)

    app = web.Application()
    for method, path in routes:
        app.router.add_route(method, path, handler)
    server = TestServer(app)
    await server.start_server()
    return server, calls


class TestDiscordClient:
    """Rate limit handling of the Discord client."""

    @pytest_asyncio.fixture
    async def discord(self):
        client = DiscordClient("bot-token")
        yield client
        await client.close()

    @pytest.mark.asyncio
    async def test_rate_limit_retried_once(self, discord) -> None:
        server, calls = await serve(
            [("POST", "/channels/c-1/messages")],
            [(429, {"message": "You are being rate limited.", "retry_after": 0.0}), (200, {"id": "m-1"})],
        )
        discord.api_url = str(server.make_url("")).rstrip("/")
        try:
            result = await discord.send_message("c-1", {"embeds": [{"title": "hi"}]})
        finally:
            await server.close()

        assert result == {"id": "m-1"}
        assert len(calls) == 2
        assert calls[0][2] == "Bot bot-token"

    @pytest.mark.asyncio
    async def test_second_rate_limit_surfaces(self, discord) -> None:
        server, calls = await serve(
            [("POST", "/channels/c-1/messages")],
            [(429, {"retry_after": 0.0}), (429, {"retry_after": 0.0})],
        )
        discord.api_url = str(server.make_url("")).rstrip("/")
        try:
            with pytest.raises(DiscordError) as exc_info:
                await discord.send_message("c-1", {"content": "hi"})
        finally:
            await server.close()

        assert exc_info.value.status == 429
        assert exc_info.value.is_transient
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_webhook_posts_without_bot_auth(self, discord) -> None:
        server, calls = await serve([("POST", "/api/webhooks/1/abc")], [(204, None)])
        try:
            await discord.send_webhook_message(str(server.make_url("/api/webhooks/1/abc")), {"content": "hi"})
        finally:
            await server.close()

        assert calls[0][2] is None
        assert calls[0][3] == {"content": "hi"}

    @pytest.mark.asyncio
    async def test_client_error_is_permanent(self, discord) -> None:
        server, _ = await serve(
            [("PATCH", "/guilds/g-1/scheduled-events/1")],
            [(404, {"message": "Unknown Guild Scheduled Event", "code": 10070})],
        )
        discord.api_url = str(server.make_url("")).rstrip("/")
        try:
            with pytest.raises(DiscordError) as exc_info:
                await discord.update_scheduled_event("g-1", "1", {"name": "x"})
        finally:
            await server.close()

        assert exc_info.value.status == 404
        assert not exc_info.value.is_transient

    @pytest.mark.asyncio
    async def test_list_scheduled_events(self, discord) -> None:
        server, calls = await serve(
            [("GET", "/guilds/g-1/scheduled-events")],
            [(200, [{"id": "9000", "name": "Speedruns"}])],
        )
        discord.api_url = str(server.make_url("")).rstrip("/")
        try:
            events = await discord.list_scheduled_events("g-1")
        finally:
            await server.close()

        assert events == [{"id": "9000", "name": "Speedruns"}]
        assert calls[0][:2] == ("GET", "/guilds/g-1/scheduled-events")


class TestTelegramClient:
    @pytest_asyncio.fixture
    async def telegram(self):
        client = TelegramClient("123:abc")
        yield client
        await client.close()

    @pytest.mark.asyncio
    async def test_send_message(self, telegram) -> None:
        server, calls = await serve(
            [("POST", "/bot123:abc/sendMessage")],
            [(200, {"ok": True, "result": {"message_id": 42}})],
        )
        telegram.api_url = str(server.make_url("")).rstrip("/")
        try:
            message_id = await telegram.send_message("-100200", "hello")
        finally:
            await server.close()

        assert message_id == 42
        assert calls[0][3]["chat_id"] == -100200
        assert calls[0][3]["text"] == "hello"

    @pytest.mark.asyncio
    async def test_api_error_carries_status(self, telegram) -> None:
        server, _ = await serve(
            [("POST", "/bot123:abc/sendMessage")],
            [(429, {"ok": False, "error_code": 429, "description": "Too Many Requests: retry after 5"})],
        )
        telegram.api_url = str(server.make_url("")).rstrip("/")
        try:
            with pytest.raises(TelegramError) as exc_info:
                await telegram.send_message("-100200", "hello")
        finally:
            await server.close()

        assert exc_info.value.status == 429
        assert exc_info.value.is_transient

    @pytest.mark.asyncio
    async def test_invalid_chat_id(self, telegram) -> None:
        with pytest.raises(TelegramError, match="Invalid chat_id"):
            await telegram.send_message("not-a-number", "hello")


class TestClientRegistry:
    """Optional bot handles that can be installed after startup."""

    @pytest.mark.asyncio
    async def test_starts_empty(self) -> None:
        registry = ClientRegistry()
        assert registry.telegram is None
        assert registry.discord is None
        assert await registry.initialize_missing(None, None) is True

    @pytest.mark.asyncio
    async def test_swap_closes_previous_client(self) -> None:
        first, second = TelegramClient("1:a"), TelegramClient("2:b")
        _ = first.session
        registry = ClientRegistry(telegram=first)

        await registry.set_telegram(second)

        assert registry.telegram is second
        assert first._session.closed
        await registry.close()
        assert registry.telegram is None
