"""
Notification dispatcher.

In-app notifications and their SMS outbox rows are written in the caller's
transaction. `OutboxDispatcher.drain` delivers pending SMS rows after commit
(request background task) and on the scheduler interval; delivery failures
never touch the transaction that produced the message.
"""
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.date_utils import utcnow
from app.db import SessionLocal, get_db_session
from app.errors import NotFoundError, ValidationFailedError
from app.logger import get_logger
from app.models import Notification, NotificationType, OutboundMessage, OutboundStatus, User
from app.permissions import AuthContext
from app.sms import SMSClient, format_sms_message, get_sms_client

logger = get_logger(__name__)


def notify(
    db: Session,
    user_id: int,
    title: str,
    message: str,
    notification_type: NotificationType,
    related_task_id: Optional[int] = None,
    sms_data: Optional[Dict[str, Any]] = None,
) -> Notification:
    """
    Create an in-app notification and, when the user opted in, queue its SMS.
    Does not commit.
    """
    notification = Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=notification_type,
        related_task_id=related_task_id,
    )
    db.add(notification)
    db.flush()

    user = db.get(User, user_id)
    if user is not None and user.sms_notifications_enabled and user.phone_number:
        body = format_sms_message(notification_type, sms_data or {"title": title})
        db.add(OutboundMessage(
            user_id=user_id,
            notification_id=notification.id,
            to_number=user.phone_number,
            body=body,
        ))
        logger.debug(f"Queued SMS for user {user_id} ({notification_type.value})")

    return notification


def notify_many(
    db: Session,
    user_ids: Iterable[int],
    title: str,
    message: str,
    notification_type: NotificationType,
    related_task_id: Optional[int] = None,
    sms_data: Optional[Dict[str, Any]] = None,
) -> List[Notification]:
    """Fan the same notification out to several users."""
    return [
        notify(db, user_id, title, message, notification_type, related_task_id, sms_data)
        for user_id in user_ids
    ]


# ==========================================================
# Notification inbox operations
# ==========================================================

def list_notifications(db: Session, ctx: AuthContext, limit: int = 10) -> List[Notification]:
    return (
        db.query(Notification)
        .filter(Notification.user_id == ctx.user_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
        .all()
    )


def unread_count(db: Session, ctx: AuthContext) -> int:
    return (
        db.query(Notification)
        .filter(Notification.user_id == ctx.user_id, Notification.read.is_(False))
        .count()
    )


def mark_read(db: Session, ctx: AuthContext, notification_id: Optional[int] = None, all_: bool = False) -> int:
    """Mark one notification, or every unread one, as read. Returns rows touched."""
    query = db.query(Notification).filter(Notification.user_id == ctx.user_id)
    if all_:
        count = query.filter(Notification.read.is_(False)).update(
            {"read": True}, synchronize_session=False
        )
    else:
        if notification_id is None:
            raise ValidationFailedError("Notification ID is required")
        count = query.filter(Notification.id == notification_id).update(
            {"read": True}, synchronize_session=False
        )
        if count == 0:
            raise NotFoundError("Notification not found")
    db.commit()
    return count


def delete_notifications(db: Session, ctx: AuthContext, notification_id: Optional[int] = None, all_: bool = False) -> int:
    """Delete one notification, or all of the caller's. Returns rows removed."""
    query = db.query(Notification).filter(Notification.user_id == ctx.user_id)
    if all_:
        count = query.delete(synchronize_session=False)
    else:
        if notification_id is None:
            raise ValidationFailedError("Notification ID is required")
        count = query.filter(Notification.id == notification_id).delete(synchronize_session=False)
        if count == 0:
            raise NotFoundError("Notification not found")
    db.commit()
    return count


# ==========================================================
# SMS outbox delivery
# ==========================================================

class OutboxDispatcher:
    """
    Delivers pending outbox rows through the SMS client.
    Each row is retried on later drains until `max_attempts` is reached.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        sms_client: Optional[SMSClient] = None,
        max_attempts: Optional[int] = None,
        batch_size: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.sms_client = sms_client or get_sms_client()
        self.max_attempts = max_attempts or settings.outbox_max_attempts
        self.batch_size = batch_size or settings.outbox_batch_size

    def _claim(self, db: Session, message_id: int) -> bool:
        """Move one row from PENDING to SENDING; only the drain that wins sends it."""
        claimed = (
            db.query(OutboundMessage)
            .filter(OutboundMessage.id == message_id, OutboundMessage.status == OutboundStatus.PENDING)
            .update({"status": OutboundStatus.SENDING}, synchronize_session=False)
        )
        db.commit()
        return claimed == 1

    def drain(self) -> Dict[str, int]:
        """
        Send every pending message once. Rows are claimed before sending, so
        drains that overlap (request background task and scheduler) never
        deliver the same message twice.

        Returns:
            Counts of sent, retrying and failed messages
        """
        stats = {"sent": 0, "retrying": 0, "failed": 0}
        try:
            with get_db_session(self.session_factory) as db:
                pending_ids = [
                    row.id for row in (
                        db.query(OutboundMessage.id)
                        .filter(OutboundMessage.status == OutboundStatus.PENDING)
                        .order_by(OutboundMessage.id)
                        .limit(self.batch_size)
                        .all()
                    )
                ]
                db.commit()

                for message_id in pending_ids:
                    if not self._claim(db, message_id):
                        continue
                    message = db.get(OutboundMessage, message_id)
                    result = self.sms_client.send_sms(message.to_number, message.body)
                    message.attempts += 1
                    if result.success:
                        message.status = OutboundStatus.SENT
                        message.provider_message_id = result.message_id
                        message.sent_at = utcnow()
                        message.last_error = None
                        stats["sent"] += 1
                    else:
                        message.last_error = result.error
                        if message.attempts >= self.max_attempts:
                            message.status = OutboundStatus.FAILED
                            stats["failed"] += 1
                            logger.error(
                                f"SMS {message.id} to user {message.user_id} failed permanently: {result.error}"
                            )
                        else:
                            message.status = OutboundStatus.PENDING
                            stats["retrying"] += 1
                            logger.warning(
                                f"SMS {message.id} attempt {message.attempts} failed: {result.error}"
                            )
                    db.commit()
        except Exception as e:
            logger.error(f"Outbox drain failed: {e}")

        if any(stats.values()):
            logger.info(
                f"Outbox drained: {stats['sent']} sent, {stats['retrying']} retrying, {stats['failed']} failed"
            )
        return stats


_dispatcher: Optional[OutboxDispatcher] = None


def get_outbox_dispatcher() -> OutboxDispatcher:
    """Get or create the outbox dispatcher singleton (FastAPI dependency)."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = OutboxDispatcher()
    return _dispatcher
