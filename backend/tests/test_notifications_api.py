"""Notification history and queue stats endpoint tests."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.main import app
from app.models import DeliveryStatus
from app.services.notification_history import record_delivery
from app.services.notification_queue import NotificationQueue
from app.utils.clock import utcnow


@pytest_asyncio.fixture
async def client(session_factory):
    app.state.notification_queue = NotificationQueue(session_factory)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    del app.state.notification_queue


class TestHistory:
    @pytest.mark.asyncio
    async def test_newest_first_with_filters(self, client, session_factory, user) -> None:
        async with session_factory() as db:
            await record_delivery(db, user.id, "stream_online", "telegram", "-100200", "live", DeliveryStatus.SENT)
            await record_delivery(db, user.id, "stream_online", "discord", "c-1", "live", DeliveryStatus.FAILED, "Missing Access")
            await db.commit()

        response = await client.get("/api/notifications/history", params={"user_id": user.id})
        items = response.json()["items"]
        assert [item["destination_type"] for item in items] == ["discord", "telegram"]

        response = await client.get(
            "/api/notifications/history", params={"user_id": user.id, "status": "failed"}
        )
        items = response.json()["items"]
        assert len(items) == 1
        assert items[0]["error_message"] == "Missing Access"

    @pytest.mark.asyncio
    async def test_user_id_required(self, client) -> None:
        response = await client.get("/api/notifications/history")
        assert response.status_code == 422


class TestQueueStats:
    @pytest.mark.asyncio
    async def test_counts_every_status(self, client, user) -> None:
        await app.state.notification_queue.enqueue(
            user_id=user.id,
            notification_type="stream_offline",
            content_json='{"kind": "stream_offline", "streamer_name": "Streamer"}',
            message="bye",
            destination_type="telegram",
            destination_id="-100200",
            max_attempts=3,
            next_attempt_at=utcnow(),
        )

        response = await client.get("/api/notifications/queue/stats", params={"user_id": user.id})

        assert response.json() == {"counts": {"pending": 1, "processing": 0, "succeeded": 0, "dead": 0}}
