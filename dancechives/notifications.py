"""Notification rows: writing them for recipients and reading them back."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from .errors import NotFound
from .models import Notification
from .utils import utcnow

TAGGED = "TAGGED"
INCOMING_REQUEST = "INCOMING_REQUEST"
REQUEST_APPROVED = "REQUEST_APPROVED"
REQUEST_DENIED = "REQUEST_DENIED"
TEAM_MEMBER_ADDED = "TEAM_MEMBER_ADDED"
AUTH_LEVEL_CHANGED = "AUTH_LEVEL_CHANGED"

DEFAULT_LIMIT = 50


def create_notification(
    session: Session,
    user_id: str,
    type: str,
    title: str,
    message: str,
    *,
    payload: dict[str, Any] | None = None,
    related_request_type: str | None = None,
    related_request_id: str | None = None,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        payload=payload,
        related_request_type=related_request_type,
        related_request_id=related_request_id,
        created_at=utcnow(),
    )
    session.add(notification)
    session.flush()
    return notification


def create_tag_notification(
    session: Session,
    user_id: str,
    *,
    event_id: str,
    event_title: str | None,
    role: str,
    video_id: str | None = None,
    video_title: str | None = None,
    section_id: str | None = None,
    section_title: str | None = None,
) -> Notification:
    """Tell a user they were tagged; the payload carries navigation ids."""
    event_name = event_title or event_id
    if video_id:
        where = f'video "{video_title or video_id}" in {event_name}'
    elif section_id:
        where = f'section "{section_title or section_id}" in {event_name}'
    else:
        where = event_name
    payload: dict[str, Any] = {"eventId": event_id, "role": role}
    if video_id:
        payload["videoId"] = video_id
    if section_id:
        payload["sectionId"] = section_id
    return create_notification(
        session,
        user_id,
        TAGGED,
        "You were tagged",
        f"You were tagged as {role} in {where}",
        payload=payload,
    )


def list_notifications(
    session: Session,
    user_id: str,
    *,
    limit: int = DEFAULT_LIMIT,
    is_old: bool | None = None,
) -> Sequence[Notification]:
    stmt = select(Notification).where(Notification.user_id == user_id)
    if is_old is not None:
        stmt = stmt.where(Notification.is_old.is_(is_old))
    stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc())
    if limit and limit > 0:
        stmt = stmt.limit(limit)
    return session.scalars(stmt).all()


def count_new_notifications(session: Session, user_id: str) -> int:
    stmt = select(func.count(Notification.id)).where(
        Notification.user_id == user_id, Notification.is_old.is_(False)
    )
    return int(session.scalar(stmt) or 0)


def mark_notification_as_old(
    session: Session, user_id: str, notification_id: str
) -> Notification:
    notification = session.get(Notification, notification_id)
    # Someone else's notification reads as missing.
    if not notification or notification.user_id != user_id:
        raise NotFound("Notification not found")
    notification.is_old = True
    session.add(notification)
    session.flush()
    return notification


def mark_all_notifications_as_old(session: Session, user_id: str) -> int:
    result = session.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_old.is_(False))
        .values(is_old=True)
    )
    return result.rowcount or 0


def prune_old_notifications(
    session: Session, older_than: timedelta, *, now: datetime | None = None
) -> int:
    """Delete read notifications created before ``now - older_than``."""
    cutoff = (now or utcnow()) - older_than
    result = session.execute(
        delete(Notification).where(
            Notification.is_old.is_(True), Notification.created_at < cutoff
        )
    )
    return result.rowcount or 0


def serialize_notification(notification: Notification) -> dict[str, Any]:
    return {
        "id": notification.id,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "payload": notification.payload,
        "relatedRequestType": notification.related_request_type,
        "relatedRequestId": notification.related_request_id,
        "isOld": notification.is_old,
        "createdAt": notification.created_at.isoformat(),
    }
