"""
Data retention service for cleaning up old records.
"""
from datetime import timedelta
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import delete

from app.config import HistoryConfig
from app.models import NotificationLog, NotificationTask, TaskStatus
from app.database import checkpoint_wal
from app.utils.clock import utcnow


class RetentionService:
    """
    Prunes audit rows and finished retry tasks older than the retention window.

    Pending and processing tasks are never pruned, whatever their age.
    """

    def __init__(self, config: HistoryConfig, clock=utcnow):
        self.config = config
        self._clock = clock

    async def cleanup_old_data(self, db: AsyncSession):
        """Clean up old data based on retention policy."""
        retention_days = self.config.retention_days
        cutoff = self._clock() - timedelta(days=retention_days)
        logger.info(f"Starting data retention cleanup (retention: {retention_days} days)")

        try:
            # Tasks first: they reference audit rows
            await self._cleanup(
                db,
                NotificationTask,
                NotificationTask.updated_at < cutoff,
                NotificationTask.status.in_([TaskStatus.SUCCEEDED.value, TaskStatus.DEAD.value]),
            )
            await self._cleanup(db, NotificationLog, NotificationLog.created_at < cutoff)

            await db.commit()
            logger.info("Data retention cleanup completed")

            # Run WAL checkpoint after cleanup to consolidate the database
            await checkpoint_wal()

        except Exception as e:
            logger.error(f"Error during data retention cleanup: {e}")
            await db.rollback()

    async def _cleanup(self, db: AsyncSession, model, *conditions) -> int:
        """Delete the rows of one table matching every condition."""
        try:
            result = await db.execute(delete(model).where(*conditions))
            deleted_count = result.rowcount or 0

            if deleted_count > 0:
                logger.info(f"Deleted {deleted_count} old records from {model.__tablename__}")
            return deleted_count

        except Exception as e:
            logger.error(f"Error cleaning up {model.__tablename__}: {e}")
            raise
