"""
Notification audit log (notification_history table).
"""
from typing import List, Optional
from sqlalchemy import select, update, desc
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import NotificationLog, DeliveryStatus


async def record_delivery(
    db: AsyncSession,
    user_id: int,
    notification_type: str,
    destination_type: str,
    destination_id: str,
    content: str,
    status: DeliveryStatus,
    error_message: Optional[str] = None,
) -> NotificationLog:
    log = NotificationLog(
        user_id=user_id,
        notification_type=notification_type,
        destination_type=destination_type,
        destination_id=destination_id,
        content=content,
        status=status.value,
        error_message=error_message,
    )
    db.add(log)
    await db.flush()
    return log


async def update_status(
    db: AsyncSession,
    log_id: int,
    status: DeliveryStatus,
    error_message: Optional[str] = None,
) -> None:
    await db.execute(
        update(NotificationLog)
        .where(NotificationLog.id == log_id)
        .values(status=status.value, error_message=error_message)
    )


async def list_for_user(
    db: AsyncSession,
    user_id: int,
    limit: int = 50,
    offset: int = 0,
    notification_type: Optional[str] = None,
    destination_type: Optional[str] = None,
    status: Optional[str] = None,
) -> List[NotificationLog]:
    """Newest first, optionally filtered."""
    query = select(NotificationLog).where(NotificationLog.user_id == user_id)
    if notification_type:
        query = query.where(NotificationLog.notification_type == notification_type)
    if destination_type:
        query = query.where(NotificationLog.destination_type == destination_type)
    if status:
        query = query.where(NotificationLog.status == status)
    query = query.order_by(desc(NotificationLog.created_at), desc(NotificationLog.id)).limit(limit).offset(offset)
    result = await db.execute(query)
    return list(result.scalars().all())
