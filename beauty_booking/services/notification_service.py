"""Read-side helpers for a user's in-app notifications."""

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from beauty_booking.db.models import Notification

DEFAULT_LIMIT = 50
MAX_LIMIT = 200


def list_notifications(
    db: Session,
    user_id: str,
    unread_only: bool = False,
    limit: int = DEFAULT_LIMIT,
) -> tuple[list[Notification], int]:
    """Return the newest notifications for a user and their total unread count."""
    limit = max(1, min(limit, MAX_LIMIT))

    query = (
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc())
        .limit(limit)
    )
    if unread_only:
        query = query.where(Notification.is_read.is_(False))

    notifications = list(db.scalars(query).all())
    unread_count = db.scalar(
        select(func.count(Notification.id))
        .where(Notification.user_id == user_id)
        .where(Notification.is_read.is_(False))
    ) or 0
    return notifications, unread_count


def mark_read(
    db: Session,
    user_id: str,
    notification_ids: list[str] | None = None,
    mark_all: bool = False,
) -> int:
    """Mark the user's notifications read. Ids belonging to other users are ignored."""
    if not mark_all and not notification_ids:
        return 0

    statement = (
        update(Notification)
        .where(Notification.user_id == user_id)
        .where(Notification.is_read.is_(False))
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    if not mark_all:
        statement = statement.where(Notification.id.in_(notification_ids))

    try:
        result = db.execute(statement)
        db.commit()
        return result.rowcount
    except SQLAlchemyError:
        db.rollback()
        raise
