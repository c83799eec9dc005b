"""
Task lifecycle manager.

States: AVAILABLE (bonus pool) -> PENDING -> COMPLETED -> VERIFIED, with
COMPLETED -> PENDING when a parent declines. A status change and the ledger
entry that must accompany it always commit together. Tasks that are not
eligible for a transition are reported as not found.
"""
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import List, Optional

from sqlalchemy import case, or_
from sqlalchemy.orm import Session, joinedload, selectinload

from app.date_utils import local_today, utcnow
from app.db import atomic
from app.errors import ForbiddenError, NotFoundError, ValidationFailedError
from app.logger import get_logger
from app.models import (
    FamilyMember,
    Notification,
    NotificationType,
    PointsHistory,
    RecurrencePattern,
    Task,
    TaskStatus,
    TaskTag,
    User,
)
from app.notifications import notify, notify_many
from app.permissions import AuthContext
from app.points import append_entry
from app.recurring import generate_next_after_verification

logger = get_logger(__name__)

STATUS_ORDER = case(
    {
        TaskStatus.AVAILABLE.value: 0,
        TaskStatus.PENDING.value: 1,
        TaskStatus.COMPLETED.value: 2,
        TaskStatus.VERIFIED.value: 3,
    },
    value=Task.status,
)


@dataclass
class TaskDraft:
    """Validated input for task creation."""
    title: str
    points: int
    due_date: date
    description: Optional[str] = None
    assigned_to: Optional[int] = None
    is_bonus_task: bool = False
    is_recurring: bool = False
    recurrence_pattern: Optional[RecurrencePattern] = None
    due_date_only: bool = False
    tag_ids: List[int] = field(default_factory=list)


@dataclass
class TaskChanges:
    """Partial update; None leaves a field unchanged."""
    title: Optional[str] = None
    description: Optional[str] = None
    points: Optional[int] = None
    due_date: Optional[date] = None
    due_date_only: Optional[bool] = None
    tag_ids: Optional[List[int]] = None


def award_reason(task: Task) -> str:
    return f"Task completed: {task.title}"


def _task_query(db: Session, ctx: AuthContext):
    return (
        db.query(Task)
        .options(
            joinedload(Task.creator),
            joinedload(Task.assignee),
            joinedload(Task.verifier),
            selectinload(Task.tags),
        )
        .filter(Task.family_id == ctx.family_id, Task.deleted_at.is_(None))
    )


def _require_parent(ctx: AuthContext, action: str) -> None:
    if not ctx.is_parent:
        raise ForbiddenError(f"Only parents can {action}")


def _family_tags(db: Session, ctx: AuthContext, tag_ids: List[int]) -> List[TaskTag]:
    if not tag_ids:
        return []
    unique_ids = set(tag_ids)
    tags = (
        db.query(TaskTag)
        .filter(TaskTag.id.in_(unique_ids), TaskTag.family_id == ctx.family_id)
        .all()
    )
    if len(tags) != len(unique_ids):
        raise ValidationFailedError("Unknown tag for this family")
    return tags


def _other_member_ids(db: Session, family_id: int, exclude: List[int]) -> List[int]:
    rows = (
        db.query(FamilyMember.user_id)
        .filter(FamilyMember.family_id == family_id, FamilyMember.user_id.notin_(exclude))
        .all()
    )
    return [row[0] for row in rows]


def _reload(db: Session, ctx: AuthContext, task_id: int) -> Task:
    db.expire_all()
    return _task_query(db, ctx).filter(Task.id == task_id).one()


def _award_and_notify(db: Session, ctx: AuthContext, task: Task) -> None:
    append_entry(
        db,
        user_id=task.assigned_to,
        family_id=task.family_id,
        points=task.points,
        reason=award_reason(task),
        created_by=ctx.user_id,
        task_id=task.id,
    )
    notify(
        db,
        task.assigned_to,
        "Task Verified",
        f'Your task "{task.title}" has been verified! You earned {task.points} points.',
        NotificationType.TASK_VERIFIED,
        related_task_id=task.id,
        sms_data={"title": task.title, "points": task.points},
    )
    notify(
        db,
        task.assigned_to,
        "Points Earned",
        f'You earned {task.points} points for completing "{task.title}"',
        NotificationType.POINTS_EARNED,
        related_task_id=task.id,
        sms_data={"title": task.title, "points": task.points},
    )


# ==========================================================
# Queries
# ==========================================================

def list_tasks(
    db: Session,
    ctx: AuthContext,
    status: Optional[TaskStatus] = None,
    assigned_to: Optional[int] = None,
    created_by: Optional[int] = None,
) -> List[Task]:
    """
    Family tasks, optionally filtered. Children only see their own
    assignments plus bonus tasks still open for claiming.
    """
    query = _task_query(db, ctx)

    if status is not None:
        query = query.filter(Task.status == status)
    if assigned_to is not None:
        query = query.filter(Task.assigned_to == assigned_to)
    if created_by is not None:
        query = query.filter(Task.created_by == created_by)

    if not ctx.is_parent:
        query = query.filter(or_(
            Task.assigned_to == ctx.user_id,
            Task.status == TaskStatus.AVAILABLE,
        ))

    return query.order_by(STATUS_ORDER, Task.due_date.asc(), Task.created_at.desc(), Task.id.desc()).all()


def weekly_tasks(db: Session, ctx: AuthContext, today: Optional[date] = None) -> List[Task]:
    """Tasks due from today through the next six days."""
    today = today or local_today()
    query = _task_query(db, ctx).filter(
        Task.due_date >= today,
        Task.due_date <= today + timedelta(days=6),
    )
    if not ctx.is_parent:
        query = query.filter(or_(
            Task.assigned_to == ctx.user_id,
            Task.status == TaskStatus.AVAILABLE,
        ))
    return query.order_by(Task.due_date.asc(), Task.id.asc()).all()


def get_task(db: Session, ctx: AuthContext, task_id: int) -> Task:
    task = _task_query(db, ctx).filter(Task.id == task_id).first()
    if task is None:
        raise NotFoundError("Task not found")
    if not ctx.is_parent and task.assigned_to != ctx.user_id and task.status != TaskStatus.AVAILABLE:
        raise NotFoundError("Task not found")
    return task


# ==========================================================
# Create / update / delete
# ==========================================================

def create_task(db: Session, ctx: AuthContext, draft: TaskDraft) -> Task:
    """
    Create a regular task (assigned, PENDING) or a bonus task (unassigned,
    AVAILABLE). Parents only.
    """
    _require_parent(ctx, "create tasks")

    if draft.is_bonus_task and draft.assigned_to is not None:
        raise ValidationFailedError("Bonus tasks cannot be assigned")
    if not draft.is_bonus_task and draft.assigned_to is None:
        raise ValidationFailedError("Regular tasks require assignment")
    if draft.is_recurring and draft.recurrence_pattern is None:
        raise ValidationFailedError("Recurring tasks require a recurrence pattern")

    if draft.assigned_to is not None:
        assignee = (
            db.query(FamilyMember)
            .filter(FamilyMember.user_id == draft.assigned_to, FamilyMember.family_id == ctx.family_id)
            .first()
        )
        if assignee is None:
            raise ValidationFailedError("Assignee not found in family")

    tags = _family_tags(db, ctx, draft.tag_ids)

    with atomic(db):
        task = Task(
            title=draft.title,
            description=draft.description,
            points=draft.points,
            due_date=draft.due_date,
            created_by=ctx.user_id,
            assigned_to=draft.assigned_to,
            family_id=ctx.family_id,
            status=TaskStatus.AVAILABLE if draft.is_bonus_task else TaskStatus.PENDING,
            is_bonus_task=draft.is_bonus_task,
            is_recurring=draft.is_recurring,
            recurrence_pattern=draft.recurrence_pattern if draft.is_recurring else None,
            due_date_only=draft.due_date_only,
            tags=tags,
        )
        db.add(task)
        db.flush()
        if task.is_recurring:
            task.series_id = task.id

        if draft.is_bonus_task:
            notify_many(
                db,
                _other_member_ids(db, ctx.family_id, [ctx.user_id]),
                "New Bonus Task",
                f'A new bonus task is available: "{task.title}" ({task.points} points)',
                NotificationType.BONUS_TASK_AVAILABLE,
                related_task_id=task.id,
                sms_data={"title": task.title, "points": task.points, "is_bonus": True},
            )
        elif draft.assigned_to != ctx.user_id:
            notify(
                db,
                draft.assigned_to,
                "New Task Assigned",
                f'You have been assigned a new task: "{task.title}"',
                NotificationType.TASK_ASSIGNED,
                related_task_id=task.id,
                sms_data={"title": task.title, "due_date": task.due_date.isoformat()},
            )

    logger.info(f"Task {task.id} '{draft.title}' created by user {ctx.user_id}")
    return _reload(db, ctx, task.id)


def update_task(db: Session, ctx: AuthContext, task_id: int, changes: TaskChanges) -> Task:
    """Edit a task. Allowed to its creator and to parents."""
    task = _task_query(db, ctx).filter(Task.id == task_id).first()
    if task is None:
        raise NotFoundError("Task not found")
    if task.created_by != ctx.user_id and not ctx.is_parent:
        raise ForbiddenError("Not authorized to edit this task")

    tags = _family_tags(db, ctx, changes.tag_ids) if changes.tag_ids is not None else None

    with atomic(db):
        if changes.title is not None:
            task.title = changes.title
        if changes.description is not None:
            task.description = changes.description
        if changes.points is not None:
            task.points = changes.points
        if changes.due_date is not None:
            task.due_date = changes.due_date
        if changes.due_date_only is not None:
            task.due_date_only = changes.due_date_only
        if tags is not None:
            task.tags = tags

    return _reload(db, ctx, task_id)


def delete_task(db: Session, ctx: AuthContext, task_id: int) -> dict:
    """
    Soft-delete a task (parents only). Points already awarded for it are
    reversed with an offsetting ledger entry.
    """
    _require_parent(ctx, "delete tasks")

    task = _task_query(db, ctx).filter(Task.id == task_id).first()
    if task is None:
        raise NotFoundError("Task not found or not in your family")

    points_adjustment = None
    with atomic(db):
        if task.status == TaskStatus.VERIFIED and task.assigned_to is not None:
            award = (
                db.query(PointsHistory)
                .filter(
                    PointsHistory.task_id == task.id,
                    PointsHistory.user_id == task.assigned_to,
                    PointsHistory.points > 0,
                )
                .first()
            )
            if award is not None:
                append_entry(
                    db,
                    user_id=task.assigned_to,
                    family_id=task.family_id,
                    points=-award.points,
                    reason=f"Task deleted: {task.title} (points reversed)",
                    created_by=ctx.user_id,
                    task_id=task.id,
                )
                points_adjustment = {"user_id": task.assigned_to, "points_reversed": award.points}


        db.query(Notification).filter(Notification.related_task_id == task.id).delete(
            synchronize_session=False
        )
        task.deleted_at = utcnow()

        if task.assigned_to is not None and task.assigned_to != ctx.user_id:
            notify(
                db,
                task.assigned_to,
                "Task Deleted",
                f'The task "{task.title}" was deleted',
                NotificationType.TASK_DELETED,
                sms_data={"title": task.title},
            )

    logger.info(f"Task {task_id} deleted by user {ctx.user_id}")
    return {"task_id": task_id, "points_adjustment": points_adjustment}


# ==========================================================
# State transitions
# ==========================================================

def claim_task(db: Session, ctx: AuthContext, task_id: int) -> Task:
    """
    Claim an open bonus task for the caller. The conditional update makes
    a second claim fail even when two members race for the same task.
    """
    task = _task_query(db, ctx).filter(Task.id == task_id).first()
    if task is None:
        raise NotFoundError("Task not found")
    if not task.is_bonus_task:
        raise ValidationFailedError("This is not a bonus task")

    with atomic(db):
        claimed = (
            db.query(Task)
            .filter(
                Task.id == task_id,
                Task.status == TaskStatus.AVAILABLE,
                Task.assigned_to.is_(None),
                Task.deleted_at.is_(None),
            )
            .update(
                {"assigned_to": ctx.user_id, "status": TaskStatus.PENDING},
                synchronize_session=False,
            )
        )
        if claimed == 0:
            raise NotFoundError("Task is no longer available")

        recipients = _other_member_ids(db, ctx.family_id, [ctx.user_id, task.created_by])
        if task.created_by != ctx.user_id:
            recipients.insert(0, task.created_by)
        notify_many(
            db,
            recipients,
            "Bonus Task Claimed",
            f'{ctx.name or "A family member"} has claimed the bonus task: "{task.title}"',
            NotificationType.BONUS_TASK_SELF_ASSIGNED,
            related_task_id=task.id,
            sms_data={"title": task.title, "user_name": ctx.name},
        )

    logger.info(f"Bonus task {task_id} claimed by user {ctx.user_id}")
    return _reload(db, ctx, task_id)


def complete_task(db: Session, ctx: AuthContext, task_id: int, today: Optional[date] = None) -> Task:
    """
    Mark the caller's task done. A parent completing their own task is
    verified and paid in the same transaction; a child's task waits in
    COMPLETED for review.
    """
    task = (
        _task_query(db, ctx)
        .filter(Task.id == task_id, Task.assigned_to == ctx.user_id)
        .first()
    )
    if task is None or task.status != TaskStatus.PENDING:
        raise NotFoundError("Task not found or not assigned to you")

    if task.due_date_only:
        if today is None:
            user = db.get(User, ctx.user_id)
            today = local_today(user.timezone if user else None)
        if today < task.due_date:
            raise ValidationFailedError(
                f"This task can only be completed on or after {task.due_date.isoformat()}"
            )

    now = utcnow()
    self_verify = ctx.is_parent

    with atomic(db):
        values = {"status": TaskStatus.VERIFIED if self_verify else TaskStatus.COMPLETED, "completed_at": now}
        if self_verify:
            values.update({"verified_at": now, "verified_by": ctx.user_id})
        updated = (
            db.query(Task)
            .filter(Task.id == task_id, Task.status == TaskStatus.PENDING, Task.assigned_to == ctx.user_id)
            .update(values, synchronize_session=False)
        )
        if updated == 0:
            raise NotFoundError("Task not found or not assigned to you")

        if self_verify:
            _award_and_notify(db, ctx, task)
        elif task.created_by != ctx.user_id:
            notify(
                db,
                task.created_by,
                "Task Completed",
                f'{ctx.name or "Your child"} has completed the task: "{task.title}"',
                NotificationType.TASK_COMPLETED,
                related_task_id=task.id,
                sms_data={"title": task.title, "user_name": ctx.name},
            )

    logger.info(
        f"Task {task_id} completed by user {ctx.user_id}"
        + (" and auto-verified" if self_verify else "; awaiting review")
    )

    task = _reload(db, ctx, task_id)
    if self_verify and task.is_recurring:
        generate_next_after_verification(db, task, today=today)
        task = _reload(db, ctx, task_id)
    return task


def verify_task(db: Session, ctx: AuthContext, task_id: int, today: Optional[date] = None) -> dict:
    """
    Approve a completed task and pay its points (parents only). The status
    change and the ledger entry commit together, exactly once.
    """
    _require_parent(ctx, "verify tasks")

    task = (
        _task_query(db, ctx)
        .filter(Task.id == task_id, Task.status == TaskStatus.COMPLETED)
        .first()
    )
    if task is None:
        raise NotFoundError("Task not found or not ready for verification")

    with atomic(db):
        updated = (
            db.query(Task)
            .filter(Task.id == task_id, Task.status == TaskStatus.COMPLETED)
            .update(
                {"status": TaskStatus.VERIFIED, "verified_at": utcnow(), "verified_by": ctx.user_id},
                synchronize_session=False,
            )
        )
        if updated == 0:
            raise NotFoundError("Task not found or not ready for verification")
        _award_and_notify(db, ctx, task)

    logger.info(f"Task {task_id} verified by user {ctx.user_id}; {task.points} points awarded")

    task = _reload(db, ctx, task_id)
    if task.is_recurring:
        generate_next_after_verification(db, task, today=today)
        task = _reload(db, ctx, task_id)
    return {"task": task, "points_awarded": task.points}


def decline_task(db: Session, ctx: AuthContext, task_id: int, reason: Optional[str] = None) -> Task:
    """
    Send a completed task back for rework (parents only). No points move.
    """
    _require_parent(ctx, "decline tasks")

    task = (
        _task_query(db, ctx)
        .filter(Task.id == task_id, Task.status == TaskStatus.COMPLETED)
        .first()
    )
    if task is None:
        raise NotFoundError("Task not found or not ready for review")

    reason = reason.strip() if reason else None

    with atomic(db):
        updated = (
            db.query(Task)
            .filter(Task.id == task_id, Task.status == TaskStatus.COMPLETED)
            .update(
                {"status": TaskStatus.PENDING, "completed_at": None, "decline_reason": reason},
                synchronize_session=False,
            )
        )
        if updated == 0:
            raise NotFoundError("Task not found or not ready for review")

        notify(
            db,
            task.assigned_to,
            "Task Needs Rework",
            f'Your task "{task.title}" was declined and needs to be redone.'
            + (f" Reason: {reason}" if reason else ""),
            NotificationType.TASK_DECLINED,
            related_task_id=task.id,
            sms_data={"title": task.title},
        )

    logger.info(f"Task {task_id} declined by user {ctx.user_id}")
    return _reload(db, ctx, task_id)
