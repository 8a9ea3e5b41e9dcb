from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import Principal, get_current_user
from app.db.session import get_db
from app.schemas.notifications import NotificationOut, NotificationsOut
from app.services.notification_service import NotificationFeed, notifications_for

router = APIRouter(tags=["notifications"])


@router.get("/notifications", response_model=NotificationsOut)
def my_notifications(
    dismissed: List[str] = Query(default=[]),
    previousCount: Optional[int] = None,
    db: Session = Depends(get_db),
    me: Principal = Depends(get_current_user),
):
    """Booking updates and broadcasts, newest first.

    Dismissals live on the client: send their ids back as `dismissed`. Send the
    last `count` as `previousCount` to learn whether a cue should play.
    """
    items = notifications_for(db, me.id, me.role, dismissed=dismissed)
    snap = NotificationFeed(previous_size=previousCount).update(items)
    return NotificationsOut(
        items=[NotificationOut(
            id=n.id,
            kind=n.kind,
            title=n.title,
            body=n.body,
            createdAt=n.created_at.isoformat(),
            bookingId=n.booking_id,
            status=n.status,
        ) for n in snap.items],
        count=snap.size,
        cue=snap.cue,
    )
