"""Durable retry queue tests."""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select

from app.models import NotificationTask, TaskStatus
from app.services.notification_queue import NotificationQueue
from app.utils.clock import utcnow


async def _enqueue(queue: NotificationQueue, user_id: int, **overrides) -> NotificationTask:
    now = utcnow()
    fields = dict(
        user_id=user_id,
        notification_type="stream_online",
        content_json='{"kind": "stream_offline", "streamer_name": "s"}',
        message="hello",
        destination_type="telegram",
        destination_id="-100200",
        max_attempts=5,
        next_attempt_at=now - timedelta(seconds=1),
        expires_at=now + timedelta(minutes=5),
    )
    fields.update(overrides)
    return await queue.enqueue(**fields)


class TestEnqueue:
    """New tasks start pending with no attempts."""

    @pytest.mark.asyncio
    async def test_enqueue_defaults(self, session_factory, user) -> None:
        now = utcnow()
        queue = NotificationQueue(session_factory, clock=lambda: now)
        task = await queue.enqueue(
            user_id=user.id,
            notification_type="stream_online",
            content_json='{"kind": "stream_offline", "streamer_name": "s"}',
            message="hello",
            destination_type="telegram",
            destination_id="-100200",
        )
        stored = await queue.find_by_id(task.id)
        assert stored.status == TaskStatus.PENDING.value
        assert stored.attempts == 0
        assert stored.max_attempts == 5
        assert stored.next_attempt_at == now
        assert stored.expires_at is None

        claimed = await queue.claim_due(1, now=now)
        assert [t.id for t in claimed] == [task.id]


class TestClaimDue:
    """Claim-one semantics."""

    @pytest.mark.asyncio
    async def test_claims_at_most_limit(self, session_factory, user) -> None:
        queue = NotificationQueue(session_factory)
        for _ in range(5):
            await _enqueue(queue, user.id)

        claimed = await queue.claim_due(3)

        assert len(claimed) == 3
        assert all(task.status == TaskStatus.PROCESSING.value for task in claimed)
        counts = await queue.count_by_status()
        assert counts["processing"] == 3
        assert counts["pending"] == 2

    @pytest.mark.asyncio
    async def test_oldest_due_first(self, session_factory, user) -> None:
        queue = NotificationQueue(session_factory)
        now = utcnow()
        late = await _enqueue(queue, user.id, next_attempt_at=now - timedelta(seconds=5))
        early = await _enqueue(queue, user.id, next_attempt_at=now - timedelta(seconds=50))

        claimed = await queue.claim_due(2)

        assert [task.id for task in claimed] == [early.id, late.id]

    @pytest.mark.asyncio
    async def test_concurrent_claims_are_disjoint(self, session_factory, user) -> None:
        queue = NotificationQueue(session_factory)
        for _ in range(6):
            await _enqueue(queue, user.id)

        first, second = await asyncio.gather(queue.claim_due(4), queue.claim_due(4))

        ids = [task.id for task in first + second]
        assert len(ids) == len(set(ids)) == 6

    @pytest.mark.asyncio
    async def test_future_tasks_not_claimed(self, session_factory, user) -> None:
        queue = NotificationQueue(session_factory)
        await _enqueue(queue, user.id, next_attempt_at=utcnow() + timedelta(minutes=1))
        assert await queue.claim_due(10) == []

    @pytest.mark.asyncio
    async def test_expired_tasks_never_claimed(self, session_factory, user) -> None:
        queue = NotificationQueue(session_factory)
        now = utcnow()
        await _enqueue(
            queue,
            user.id,
            next_attempt_at=now - timedelta(hours=1),
            expires_at=now - timedelta(seconds=1),
        )
        assert await queue.claim_due(10) == []

    @pytest.mark.asyncio
    async def test_empty_queue(self, session_factory) -> None:
        queue = NotificationQueue(session_factory)
        assert await queue.claim_due(10) == []


class TestAttempts:
    """Rescheduling and dead-lettering."""

    @pytest.mark.asyncio
    async def test_dead_after_max_attempts(self, session_factory, user) -> None:
        queue = NotificationQueue(session_factory)
        task = await _enqueue(queue, user.id, max_attempts=3)

        statuses = []
        for _ in range(3):
            await queue.claim_due(1)
            updated = await queue.register_attempt_and_schedule(task.id, utcnow(), "HTTP 503")
            statuses.append(updated.status)

        assert statuses == ["pending", "pending", "dead"]
        stored = await queue.find_by_id(task.id)
        assert stored.attempts == 3
        assert stored.last_error == "HTTP 503"

    @pytest.mark.asyncio
    async def test_mark_dead_regardless_of_attempts(self, session_factory, user) -> None:
        queue = NotificationQueue(session_factory)
        task = await _enqueue(queue, user.id)
        await queue.mark_dead(task.id, "malformed payload")
        stored = await queue.find_by_id(task.id)
        assert stored.status == TaskStatus.DEAD.value
        assert stored.attempts == 0

    @pytest.mark.asyncio
    async def test_mark_succeeded(self, session_factory, user) -> None:
        queue = NotificationQueue(session_factory)
        task = await _enqueue(queue, user.id)
        await queue.claim_due(1)
        await queue.mark_succeeded(task.id)
        assert (await queue.find_by_id(task.id)).is_terminal


class TestMaintenance:
    """Stale reclaim and expiry sweep."""

    @pytest.mark.asyncio
    async def test_reclaim_stale_processing(self, session_factory, user) -> None:
        queue = NotificationQueue(session_factory)
        requeued = await _enqueue(queue, user.id)
        exhausted = await _enqueue(queue, user.id, max_attempts=1)
        await queue.claim_due(2)

        reclaimed = await queue.reclaim_stale(utcnow() + timedelta(seconds=1))

        assert reclaimed == 2
        first = await queue.find_by_id(requeued.id)
        assert first.status == TaskStatus.PENDING.value
        assert first.attempts == 1
        second = await queue.find_by_id(exhausted.id)
        assert second.status == TaskStatus.DEAD.value

    @pytest.mark.asyncio
    async def test_fresh_processing_not_reclaimed(self, session_factory, user) -> None:
        queue = NotificationQueue(session_factory)
        await _enqueue(queue, user.id)
        await queue.claim_due(1)
        assert await queue.reclaim_stale(utcnow() - timedelta(minutes=10)) == 0

    @pytest.mark.asyncio
    async def test_expire_overdue(self, session_factory, user) -> None:
        queue = NotificationQueue(session_factory)
        now = utcnow()
        expired = await _enqueue(queue, user.id, expires_at=now - timedelta(seconds=1))
        live = await _enqueue(queue, user.id)

        swept = await queue.expire_overdue(now)

        assert [task.id for task in swept] == [expired.id]
        async with session_factory() as db:
            rows = (await db.execute(select(NotificationTask).order_by(NotificationTask.id))).scalars().all()
        assert [(r.id, r.status, r.last_error) for r in rows] == [
            (expired.id, "dead", "expired"),
            (live.id, "pending", None),
        ]
