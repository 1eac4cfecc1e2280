"""/api/notifications エンドポイント。"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from reminder_engine import schemas
from reminder_engine.deps import get_current_user_id, get_reminders_db_dep
from reminder_engine.reminders_models import Notification


router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=schemas.NotificationsListResponse)
def list_notifications(
    limit: int = Query(default=50, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_reminders_db_dep),
) -> schemas.NotificationsListResponse:
    """受信した通知を新しい順に返す（未読件数付き）。"""

    rows = (
        db.query(Notification)
        .filter(Notification.receiver_id == str(user_id))
        .order_by(Notification.created_at.desc())
        .limit(int(limit))
        .all()
    )
    unread = (
        db.query(Notification)
        .filter(Notification.receiver_id == str(user_id), Notification.read_at.is_(None))
        .count()
    )
    return schemas.NotificationsListResponse(
        unread=int(unread),
        data=[
            schemas.NotificationItem(
                id=str(n.id),
                text=str(n.text),
                type=str(n.type),
                entity_id=n.entity_id,
                created_at=n.created_at,
                read_at=n.read_at,
            )
            for n in rows
        ],
    )
