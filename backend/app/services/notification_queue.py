"""
Durable notification retry queue (notification_queue table).

Lifecycle: pending -> processing -> succeeded | dead, with processing ->
pending on a retryable failure. Claiming is a single conditional UPDATE per
task, so two concurrent workers can never claim the same row.
"""
from datetime import datetime
from typing import Callable, Dict, List, Optional
from loguru import logger
from sqlalchemy import select, update, func, or_, case
from sqlalchemy.ext.asyncio import AsyncSession

from app.constants import DEFAULT_MAX_ATTEMPTS
from app.models import NotificationTask, TaskStatus
from app.utils.clock import utcnow


class NotificationQueue:
    """Persistence operations for retry tasks. Each call runs in its own transaction."""

    def __init__(self, get_db_session: Callable[[], AsyncSession], clock: Callable[[], datetime] = utcnow):
        self._get_db_session = get_db_session
        self._clock = clock

    async def enqueue(
        self,
        *,
        user_id: int,
        notification_type: str,
        content_json: str,
        message: str,
        destination_type: str,
        destination_id: str,
        webhook_url: Optional[str] = None,
        notification_log_id: Optional[int] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        next_attempt_at: Optional[datetime] = None,
        expires_at: Optional[datetime] = None,
        db: Optional[AsyncSession] = None,
    ) -> NotificationTask:
        """
        Insert a pending task.

        When ``db`` is given the row joins the caller's transaction (flushed,
        not committed), so an audit row and its task are stored together.
        Without ``next_attempt_at`` the task is due immediately.
        """
        now = self._clock()
        task = NotificationTask(
            user_id=user_id,
            notification_type=notification_type,
            content_json=content_json,
            message=message,
            destination_type=destination_type,
            destination_id=destination_id,
            webhook_url=webhook_url,
            notification_log_id=notification_log_id,
            attempts=0,
            max_attempts=max_attempts,
            next_attempt_at=next_attempt_at or now,
            expires_at=expires_at,
            status=TaskStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        if db is not None:
            db.add(task)
            await db.flush()
            return task

        async with self._get_db_session() as session:
            session.add(task)
            await session.commit()
        return task

    async def claim_due(self, limit: int, now: Optional[datetime] = None) -> List[NotificationTask]:
        """
        Atomically move up to ``limit`` due tasks to processing.

        A task is due when pending, next_attempt_at <= now and not expired.
        Oldest next_attempt_at first.
        """
        now = now or self._clock()
        claimed: List[NotificationTask] = []
        for _ in range(limit):
            task = await self._claim_one(now)
            if task is None:
                break
            claimed.append(task)
        return claimed

    async def _claim_one(self, now: datetime) -> Optional[NotificationTask]:
        next_due = (
            select(NotificationTask.id)
            .where(
                NotificationTask.status == TaskStatus.PENDING.value,
                NotificationTask.next_attempt_at <= now,
                or_(NotificationTask.expires_at.is_(None), NotificationTask.expires_at > now),
            )
            .order_by(NotificationTask.next_attempt_at.asc(), NotificationTask.id.asc())
            .limit(1)
            .scalar_subquery()
        )
        stmt = (
            update(NotificationTask)
            .where(NotificationTask.id == next_due, NotificationTask.status == TaskStatus.PENDING.value)
            .values(status=TaskStatus.PROCESSING.value, updated_at=now)
            .returning(NotificationTask)
            .execution_options(synchronize_session=False)
        )
        async with self._get_db_session() as session:
            result = await session.execute(stmt)
            task = result.scalars().first()
            await session.commit()
        return task

    async def mark_succeeded(self, task_id: int) -> None:
        await self._set_status(task_id, TaskStatus.SUCCEEDED, last_error=None)

    async def mark_dead(self, task_id: int, last_error: str) -> None:
        await self._set_status(task_id, TaskStatus.DEAD, last_error=last_error)

    async def _set_status(self, task_id: int, status: TaskStatus, last_error: Optional[str]) -> None:
        async with self._get_db_session() as session:
            await session.execute(
                update(NotificationTask)
                .where(NotificationTask.id == task_id)
                .values(status=status.value, last_error=last_error, updated_at=self._clock())
            )
            await session.commit()

    async def register_attempt_and_schedule(
        self,
        task_id: int,
        next_attempt_at: datetime,
        last_error: str,
    ) -> Optional[NotificationTask]:
        """
        Count a failed attempt and reschedule the task.

        The task becomes dead instead when attempts reaches max_attempts.
        Returns the updated row, or None when the task no longer exists.
        """
        stmt = (
            update(NotificationTask)
            .where(NotificationTask.id == task_id)
            .values(
                attempts=NotificationTask.attempts + 1,
                status=case(
                    (NotificationTask.attempts + 1 >= NotificationTask.max_attempts, TaskStatus.DEAD.value),
                    else_=TaskStatus.PENDING.value,
                ),
                next_attempt_at=next_attempt_at,
                last_error=last_error,
                updated_at=self._clock(),
            )
            .returning(NotificationTask)
            .execution_options(synchronize_session=False)
        )
        async with self._get_db_session() as session:
            result = await session.execute(stmt)
            task = result.scalars().first()
            await session.commit()
        return task

    async def find_by_id(self, task_id: int) -> Optional[NotificationTask]:
        async with self._get_db_session() as session:
            return await session.get(NotificationTask, task_id)

    async def reclaim_stale(self, stale_before: datetime) -> int:
        """
        Return tasks stuck in processing (worker crashed mid-delivery) to pending.

        The interrupted delivery counts as an attempt; a task without budget
        left becomes dead.
        """
        now = self._clock()
        async with self._get_db_session() as session:
            dead = await session.execute(
                update(NotificationTask)
                .where(
                    NotificationTask.status == TaskStatus.PROCESSING.value,
                    NotificationTask.updated_at < stale_before,
                    NotificationTask.attempts + 1 >= NotificationTask.max_attempts,
                )
                .values(
                    status=TaskStatus.DEAD.value,
                    attempts=NotificationTask.attempts + 1,
                    last_error="worker interrupted",
                    updated_at=now,
                )
            )
            requeued = await session.execute(
                update(NotificationTask)
                .where(
                    NotificationTask.status == TaskStatus.PROCESSING.value,
                    NotificationTask.updated_at < stale_before,
                )
                .values(
                    status=TaskStatus.PENDING.value,
                    attempts=NotificationTask.attempts + 1,
                    next_attempt_at=now,
                    updated_at=now,
                )
            )
            await session.commit()

        total = (dead.rowcount or 0) + (requeued.rowcount or 0)
        if total:
            logger.warning(
                f"Reclaimed {total} stale processing task(s): {requeued.rowcount} requeued, {dead.rowcount} dead"
            )
        return total

    async def expire_overdue(self, now: Optional[datetime] = None) -> List[NotificationTask]:
        """Dead-letter pending tasks whose TTL has passed. Returns the expired rows."""
        now = now or self._clock()
        stmt = (
            update(NotificationTask)
            .where(
                NotificationTask.status == TaskStatus.PENDING.value,
                NotificationTask.expires_at.is_not(None),
                NotificationTask.expires_at <= now,
            )
            .values(status=TaskStatus.DEAD.value, last_error="expired", updated_at=now)
            .returning(NotificationTask)
            .execution_options(synchronize_session=False)
        )
        async with self._get_db_session() as session:
            result = await session.execute(stmt)
            expired = list(result.scalars().all())
            await session.commit()
        return expired

    async def count_by_status(self, user_id: Optional[int] = None) -> Dict[str, int]:
        query = select(NotificationTask.status, func.count(NotificationTask.id)).group_by(NotificationTask.status)
        if user_id is not None:
            query = query.where(NotificationTask.user_id == user_id)
        async with self._get_db_session() as session:
            result = await session.execute(query)
            counts = {status.value: 0 for status in TaskStatus}
            counts.update({row[0]: row[1] for row in result.all()})
        return counts

