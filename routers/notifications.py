from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from sqlalchemy import func
from sqlmodel import select

from db import SessionDep
from models import Notification
from responses import ok
from schemas import NotificationRead
from .auth import CurrentUserDep

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("")
def list_notifications(
    session: SessionDep,
    current: CurrentUserDep,
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
):
    """
    The caller's notifications, newest first. Clients poll this.
    """
    query = select(Notification).where(Notification.user_id == current.user_id)
    if unread_only:
        query = query.where(Notification.is_read == False)  # noqa: E712
    notifications = session.exec(
        query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
    ).all()
    return ok(jsonable_encoder(notifications))


@router.get("/unread-count")
def unread_count(session: SessionDep, current: CurrentUserDep):
    count = session.exec(
        select(func.count())
        .select_from(Notification)
        .where(
            Notification.user_id == current.user_id,
            Notification.is_read == False,  # noqa: E712
        )
    ).one()
    return ok({"count": count})


@router.patch("/read-all")
def mark_all_read(session: SessionDep, current: CurrentUserDep):
    unread = session.exec(
        select(Notification).where(
            Notification.user_id == current.user_id,
            Notification.is_read == False,  # noqa: E712
        )
    ).all()
    for notification in unread:
        notification.is_read = True
        session.add(notification)
    session.commit()
    return ok({"updated": len(unread)}, message="All notifications marked as read")


@router.patch("/{notification_id}/read")
def mark_read(
    notification_id: int,
    session: SessionDep,
    current: CurrentUserDep,
    body: Optional[NotificationRead] = None,
):
    notification = session.get(Notification, notification_id)
    if notification is None or notification.user_id != current.user_id:
        raise HTTPException(status_code=404, detail="Notification not found")

    notification.is_read = body.is_read if body is not None else True
    session.add(notification)
    session.commit()
    session.refresh(notification)
    return ok(jsonable_encoder(notification), message="Notification updated")
