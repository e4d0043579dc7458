"""
Notification history and retry queue API routes.
"""
from typing import Optional
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.services.notification_history import list_for_user
from app.utils.errors import ServiceUnavailableError

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("/history")
async def get_notification_history(
    user_id: int = Query(..., description="Owner of the notifications"),
    limit: int = Query(50, ge=1, le=500, description="Maximum number of records"),
    offset: int = Query(0, ge=0, description="Offset for pagination"),
    notification_type: Optional[str] = Query(None, description="Filter by notification type"),
    destination_type: Optional[str] = Query(None, description="Filter by destination (telegram, discord)"),
    status: Optional[str] = Query(None, description="Filter by status (sent, failed, pending, expired)"),
    db: AsyncSession = Depends(get_db),
):
    """Delivery audit log of a user, newest first."""
    logs = await list_for_user(
        db,
        user_id,
        limit=limit,
        offset=offset,
        notification_type=notification_type,
        destination_type=destination_type,
        status=status,
    )
    return {
        "items": [
            {
                "id": log.id,
                "notification_type": log.notification_type,
                "destination_type": log.destination_type,
                "destination_id": log.destination_id,
                "content": log.content,
                "status": log.status,
                "error_message": log.error_message,
                "created_at": log.created_at.isoformat() if log.created_at else None,
            }
            for log in logs
        ],
        "limit": limit,
        "offset": offset,
    }


@router.get("/queue/stats")
async def get_queue_stats(
    request: Request,
    user_id: Optional[int] = Query(None, description="Restrict counts to one user"),
):
    """Retry queue task counts per status."""
    queue = getattr(request.app.state, "notification_queue", None)
    if queue is None:
        raise ServiceUnavailableError("Notification queue not initialized")
    return {"counts": await queue.count_by_status(user_id)}
