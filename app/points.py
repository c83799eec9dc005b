"""
Points ledger.

Every balance is the sum of a user's PointsHistory rows within a family.
Entries are only appended; corrections are new offsetting entries.
"""
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from app.db import atomic
from app.errors import ForbiddenError, InsufficientPointsError, NotFoundError, ValidationFailedError
from app.logger import get_logger
from app.models import FamilyMember, NotificationType, PointsHistory
from app.notifications import notify
from app.permissions import AuthContext

logger = get_logger(__name__)

MAX_REASON_LENGTH = 200


def append_entry(
    db: Session,
    user_id: int,
    family_id: int,
    points: int,
    reason: str,
    created_by: int,
    task_id: Optional[int] = None,
) -> PointsHistory:
    """
    Insert a ledger entry. Positive points award, negative points deduct.
    Does not commit; callers own the transaction.
    """
    entry = PointsHistory(
        user_id=user_id,
        family_id=family_id,
        points=points,
        reason=reason,
        task_id=task_id,
        created_by=created_by,
    )
    db.add(entry)
    db.flush()
    logger.info(f"Ledger {points:+d} for user {user_id} in family {family_id}: {reason}")
    return entry


def current_balance(db: Session, user_id: int, family_id: int) -> int:
    """Sum of all ledger entries for the user in the family."""
    total = (
        db.query(func.coalesce(func.sum(PointsHistory.points), 0))
        .filter(PointsHistory.user_id == user_id, PointsHistory.family_id == family_id)
        .scalar()
    )
    return int(total or 0)


def _require_parent(ctx: AuthContext, action: str) -> None:
    if not ctx.is_parent:
        raise ForbiddenError(f"Only parents can {action}")


def _get_family_member(db: Session, ctx: AuthContext, user_id: int) -> FamilyMember:
    member = (
        db.query(FamilyMember)
        .options(joinedload(FamilyMember.user))
        .filter(FamilyMember.user_id == user_id, FamilyMember.family_id == ctx.family_id)
        .first()
    )
    if member is None:
        raise NotFoundError("User not found in your family")
    return member


def _validate_manual_entry(points: int, reason: str) -> str:
    if points <= 0:
        raise ValidationFailedError("Points must be a positive number")
    reason = (reason or "").strip()
    if not reason:
        raise ValidationFailedError("Reason is required")
    if len(reason) > MAX_REASON_LENGTH:
        raise ValidationFailedError(f"Reason must be less than {MAX_REASON_LENGTH} characters")
    return reason


def _entry_result(entry: PointsHistory, balance_before: int) -> dict:
    data = entry.to_dict()
    data["balance_before"] = balance_before
    data["balance_after"] = balance_before + entry.points
    return data


def add_points(db: Session, ctx: AuthContext, user_id: int, points: int, reason: str) -> dict:
    """
    Award bonus points to a family member (parents only).
    """
    _require_parent(ctx, "add points")
    reason = _validate_manual_entry(points, reason)
    member = _get_family_member(db, ctx, user_id)

    with atomic(db):
        balance_before = current_balance(db, user_id, ctx.family_id)
        entry = append_entry(
            db, user_id, ctx.family_id, points, f"Bonus Points: {reason}", created_by=ctx.user_id
        )
        notify(
            db,
            user_id,
            "Points Earned",
            f"You earned {points} bonus points: {reason}",
            NotificationType.POINTS_EARNED,
            sms_data={"title": reason, "points": points},
        )

    logger.info(f"{ctx.name or ctx.user_id} added {points} points to {member.user.name}")
    return _entry_result(entry, balance_before)


def deduct_points(db: Session, ctx: AuthContext, user_id: int, points: int, reason: str) -> dict:
    """
    Spend points from a family member's balance (parents only).
    Rejected when the request exceeds the current balance.
    """
    _require_parent(ctx, "deduct points")
    reason = _validate_manual_entry(points, reason)
    member = _get_family_member(db, ctx, user_id)

    with atomic(db):
        balance_before = current_balance(db, user_id, ctx.family_id)
        if points > balance_before:
            raise InsufficientPointsError(f"User only has {balance_before} points available")
        entry = append_entry(
            db, user_id, ctx.family_id, -points, f"Reward Shop: {reason}", created_by=ctx.user_id
        )
        notify(
            db,
            user_id,
            "Points Deducted",
            f"{points} points were deducted: {reason}",
            NotificationType.POINTS_DEDUCTED,
            sms_data={"title": reason, "points": points, "reason": reason},
        )

    logger.info(f"{ctx.name or ctx.user_id} deducted {points} points from {member.user.name}")
    return _entry_result(entry, balance_before)


def _ledger_query(db: Session, family_id: int):
    return (
        db.query(PointsHistory)
        .options(
            joinedload(PointsHistory.user),
            joinedload(PointsHistory.creator),
            joinedload(PointsHistory.task),
        )
        .filter(PointsHistory.family_id == family_id)
    )


def get_history(db: Session, ctx: AuthContext, user_id: Optional[int] = None) -> dict:
    """
    Ledger entries for the caller, or for a family member when a parent asks.
    Entries are returned newest first with the running balance around each.
    """
    target_user_id = ctx.user_id
    if user_id is not None and user_id != ctx.user_id:
        if not ctx.is_parent:
            raise ForbiddenError("Only parents can view other users' history")
        _get_family_member(db, ctx, user_id)
        target_user_id = user_id

    entries = (
        _ledger_query(db, ctx.family_id)
        .filter(PointsHistory.user_id == target_user_id)
        .order_by(PointsHistory.created_at.asc(), PointsHistory.id.asc())
        .all()
    )

    running = 0
    history = []
    for entry in entries:
        item = entry.to_dict()
        item["balance_before"] = running
        running += entry.points
        item["balance_after"] = running
        history.append(item)
    history.reverse()

    return {"user_id": target_user_id, "history": history, "current_balance": running}


def get_family_history(db: Session, ctx: AuthContext) -> dict:
    """Every ledger entry of the family plus each member's balance (parents only)."""
    _require_parent(ctx, "view family-wide points history")

    entries = (
        _ledger_query(db, ctx.family_id)
        .order_by(PointsHistory.created_at.desc(), PointsHistory.id.desc())
        .all()
    )
    members = (
        db.query(FamilyMember)
        .options(joinedload(FamilyMember.user))
        .filter(FamilyMember.family_id == ctx.family_id)
        .order_by(FamilyMember.joined_at, FamilyMember.id)
        .all()
    )

    balances: Dict[int, int] = {}
    for entry in entries:
        balances[entry.user_id] = balances.get(entry.user_id, 0) + entry.points

    member_balances: List[dict] = [
        {
            "user_id": member.user_id,
            "user_name": member.user.name,
            "role": member.role.value,
            "current_balance": balances.get(member.user_id, 0),
        }
        for member in members
    ]

    return {"history": [entry.to_dict() for entry in entries], "member_balances": member_balances}
