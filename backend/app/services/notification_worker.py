"""
Retry queue worker.

Each cycle reclaims tasks abandoned by a crashed worker, dead-letters expired
tasks, claims due tasks and replays them through the dispatcher's delivery
path. Terminal outcomes are mirrored onto the linked audit row.
"""
import asyncio
import random
from datetime import datetime, timedelta
from typing import Callable, Optional
from loguru import logger
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import NotificationRetryConfig
from app.models import User, NotificationTask, TaskStatus, DeliveryStatus, DestinationType
from app.schemas.notifications import parse_content
from app.services.notification_dispatcher import (
    Destination,
    NotificationDispatcher,
    build_stream_url,
    is_retryable_error,
)
from app.services.notification_history import update_status
from app.services.notification_queue import NotificationQueue
from app.utils.clock import utcnow

# Upper bound of the random extra delay, as a fraction of the base delay
BACKOFF_JITTER_RATIO = 0.1


def compute_backoff(
    attempts: int,
    initial_seconds: float,
    max_seconds: float,
    rng: Callable[[], float] = random.random,
) -> timedelta:
    """
    Exponential backoff with up to 10% jitter, never above ``max_seconds``.

    Non-decreasing in ``attempts``: the jittered delay of one attempt stays
    below the base delay of the next until both reach the cap.
    """
    base = min(max_seconds, initial_seconds * (2 ** max(attempts, 0)))
    jitter = base * BACKOFF_JITTER_RATIO * rng()
    return timedelta(seconds=min(max_seconds, base + jitter))


class NotificationWorker:
    """Replays queued notifications until they succeed, die or expire."""

    def __init__(
        self,
        queue: NotificationQueue,
        dispatcher: NotificationDispatcher,
        get_db_session: Callable[[], AsyncSession],
        retry_config: NotificationRetryConfig,
        clock: Callable[[], datetime] = utcnow,
        rng: Callable[[], float] = random.random,
    ):
        self.queue = queue
        self.dispatcher = dispatcher
        self._get_db_session = get_db_session
        self.retry_config = retry_config
        self._clock = clock
        self._rng = rng
        self._stop_event = asyncio.Event()

    def compute_backoff(self, attempts: int) -> timedelta:
        return compute_backoff(
            attempts,
            self.retry_config.initial_backoff_seconds,
            self.retry_config.max_backoff_seconds,
            self._rng,
        )

    async def run(self) -> None:
        """Poll until stop() is called. A cycle in flight is allowed to finish."""
        logger.info(
            f"Notification retry worker started (poll every {self.retry_config.poll_interval_seconds}s, "
            f"{self.retry_config.worker_concurrency} task(s) per cycle)"
        )
        while not self._stop_event.is_set():
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Notification retry cycle failed: {e}")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.retry_config.poll_interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Notification retry worker stopped")

    def stop(self) -> None:
        self._stop_event.set()

    async def run_cycle(self) -> int:
        """
        One maintenance + claim + process pass.

        Returns:
            Number of tasks processed.
        """
        now = self._clock()

        await self.queue.reclaim_stale(now - timedelta(seconds=self.retry_config.stale_processing_seconds))

        expired = await self.queue.expire_overdue(now)
        for task in expired:
            logger.info(f"Retry task {task.id} expired before delivery")
            await self._update_log(task, DeliveryStatus.EXPIRED, "expired")

        tasks = await self.queue.claim_due(self.retry_config.worker_concurrency, now)
        if tasks:
            logger.debug(f"Claimed {len(tasks)} retry task(s)")
            await asyncio.gather(*(self.process_task(task) for task in tasks))
        return len(tasks)

    async def process_task(self, task: NotificationTask) -> None:
        """
        Attempt one claimed task.

        Unexpected errors leave the task in processing; reclaim_stale returns
        it to the queue once it is stale.
        """
        try:
            await self._process(task)
        except Exception as e:
            logger.error(f"Unexpected error processing retry task {task.id}: {e}")

    async def _process(self, task: NotificationTask) -> None:
        now = self._clock()

        if task.expires_at is not None and task.expires_at <= now:
            await self.queue.mark_dead(task.id, "expired")
            await self._update_log(task, DeliveryStatus.EXPIRED, "expired")
            logger.info(f"Retry task {task.id} expired before delivery")
            return

        async with self._get_db_session() as db:
            user = await db.get(User, task.user_id)
        if user is None:
            await self._kill(task, "user not found")
            return

        try:
            content = parse_content(task.content_json)
        except PydanticValidationError as e:
            await self._kill(task, f"invalid notification payload: {e.error_count()} error(s)")
            return

        destination = Destination(
            destination_type=DestinationType(task.destination_type),
            destination_id=task.destination_id,
            webhook_url=task.webhook_url,
        )

        try:
            await self.dispatcher.deliver(destination, content, task.message, build_stream_url(user.twitch_login))
        except Exception as e:
            if is_retryable_error(e):
                await self._reschedule(task, str(e))
            else:
                await self._kill(task, str(e))
            return

        await self.queue.mark_succeeded(task.id)
        await self._update_log(task, DeliveryStatus.SENT, None)
        logger.info(
            f"Retry task {task.id} delivered to {task.destination_type}:{task.destination_id} "
            f"after {task.attempts + 1} retry attempt(s)"
        )

    async def _reschedule(self, task: NotificationTask, error: str) -> None:
        next_attempt_at = self._clock() + self.compute_backoff(task.attempts + 1)
        updated = await self.queue.register_attempt_and_schedule(task.id, next_attempt_at, error)
        if updated is None:
            logger.warning(f"Retry task {task.id} vanished while rescheduling")
            return

        if updated.status == TaskStatus.DEAD.value:
            logger.warning(f"Retry task {task.id} exhausted {updated.max_attempts} attempt(s): {error}")
            await self._update_log(task, DeliveryStatus.FAILED, error)
        else:
            logger.info(
                f"Retry task {task.id} failed (attempt {updated.attempts}/{updated.max_attempts}), "
                f"next attempt at {next_attempt_at.isoformat()}: {error}"
            )
            await self._update_log(task, DeliveryStatus.PENDING, error)

    async def _kill(self, task: NotificationTask, error: str) -> None:
        await self.queue.mark_dead(task.id, error)
        await self._update_log(task, DeliveryStatus.FAILED, error)
        logger.warning(f"Retry task {task.id} dead-lettered: {error}")

    async def _update_log(self, task: NotificationTask, status: DeliveryStatus, error: Optional[str]) -> None:
        if task.notification_log_id is None:
            return
        async with self._get_db_session() as db:
            await update_status(db, task.notification_log_id, status, error)
            await db.commit()
