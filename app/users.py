"""
Per-user account settings and balance lookup.
"""
import re
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from app.db import atomic
from app.errors import ConflictError, NotFoundError, UnauthorizedError, ValidationFailedError
from app.logger import get_logger
from app.models import User
from app.permissions import AuthContext
from app.points import current_balance
from app.sms import SMSClient, SMSResult
from auth.security import hash_password, verify_password

logger = get_logger(__name__)

E164_PATTERN = re.compile(r'^\+[1-9]\d{7,14}$')
MIN_PASSWORD_LENGTH = 8


def _get_user(db: Session, ctx: AuthContext) -> User:
    user = db.get(User, ctx.user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def get_user_points(db: Session, ctx: AuthContext) -> Dict[str, Any]:
    return {"user_id": ctx.user_id, "points": current_balance(db, ctx.user_id, ctx.family_id)}


def update_sms_settings(
    db: Session,
    ctx: AuthContext,
    enabled: bool,
    phone_number: Optional[str] = None,
) -> User:
    """Opt in or out of SMS. Enabling requires an E.164 phone number."""
    user = _get_user(db, ctx)
    phone_number = phone_number.strip() if phone_number else None

    if phone_number and not E164_PATTERN.match(phone_number):
        raise ValidationFailedError("Phone number must be in international format, e.g. +15551234567")
    if enabled and not (phone_number or user.phone_number):
        raise ValidationFailedError("A phone number is required to enable SMS notifications")

    with atomic(db):
        if phone_number is not None:
            user.phone_number = phone_number
        user.sms_notifications_enabled = enabled
    return user


def send_test_sms(db: Session, ctx: AuthContext, sms_client: SMSClient) -> SMSResult:
    user = _get_user(db, ctx)
    if not user.phone_number:
        raise ValidationFailedError("No phone number on file")
    return sms_client.send_sms(
        user.phone_number,
        f"FamilyTasks test message for {user.name}. SMS notifications are working!",
    )


def change_password(db: Session, ctx: AuthContext, current_password: str, new_password: str) -> None:
    user = _get_user(db, ctx)
    if not verify_password(current_password, user.password_hash):
        raise UnauthorizedError("Current password is incorrect")
    if len(new_password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailedError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    with atomic(db):
        user.password_hash = hash_password(new_password)
    logger.info(f"Password changed for user {user.id}")


def change_email(db: Session, ctx: AuthContext, new_email: str, password: str) -> User:
    user = _get_user(db, ctx)
    if not verify_password(password, user.password_hash):
        raise UnauthorizedError("Password is incorrect")

    new_email = new_email.strip().lower()
    existing = db.query(User.id).filter(User.email == new_email, User.id != user.id).first()
    if existing is not None:
        raise ConflictError("Email is already in use")

    with atomic(db):
        user.email = new_email
    return user


def update_timezone(db: Session, ctx: AuthContext, timezone: str) -> User:
    """Set the IANA timezone used for the user's "today"."""
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationFailedError(f"Unknown timezone: {timezone}")

    user = _get_user(db, ctx)
    with atomic(db):
        user.timezone = timezone
    return user
