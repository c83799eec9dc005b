"""
Recurring task generation.

Next due dates are always derived from the previous instance's due date, so
a late completion never shifts the schedule. A series holds at most one
instance per due date.
"""
from datetime import date, timedelta
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import ForbiddenError
from app.date_utils import add_months, local_today
from app.logger import get_logger
from app.models import RecurrencePattern, Task, TaskStatus
from app.permissions import AuthContext

logger = get_logger(__name__)


def calculate_next_due_date(pattern: RecurrencePattern, current_due_date: date) -> date:
    """
    Advance a due date by one recurrence unit.

    Raises:
        ValueError: for an unknown pattern
    """
    pattern = RecurrencePattern(pattern)
    if pattern == RecurrencePattern.DAILY:
        return current_due_date + timedelta(days=1)
    if pattern == RecurrencePattern.WEEKLY:
        return current_due_date + timedelta(weeks=1)
    if pattern == RecurrencePattern.MONTHLY:
        return add_months(current_due_date, 1)
    raise ValueError(f"Unknown recurrence pattern: {pattern}")


def _series_id(task: Task) -> int:
    return task.series_id or task.id


def _instance_exists(db: Session, series_id: int, due_date: date) -> bool:
    return (
        db.query(Task.id)
        .filter(Task.series_id == series_id, Task.due_date == due_date)
        .first()
        is not None
    )


def _new_instance(task: Task, due_date: date) -> Task:
    # Bonus series re-open into the pool; regular series keep their assignee
    return Task(
        title=task.title,
        description=task.description,
        points=task.points,
        due_date=due_date,
        created_by=task.created_by,
        assigned_to=None if task.is_bonus_task else task.assigned_to,
        family_id=task.family_id,
        status=TaskStatus.AVAILABLE if task.is_bonus_task else TaskStatus.PENDING,
        is_recurring=True,
        recurrence_pattern=task.recurrence_pattern,
        is_bonus_task=task.is_bonus_task,
        due_date_only=task.due_date_only,
        series_id=_series_id(task),
        tags=list(task.tags),
    )


def create_next_recurring_task(
    db: Session,
    task: Task,
    today: Optional[date] = None,
) -> Optional[Task]:
    """
    Create the instance following `task` in its series.

    Returns:
        The new task, or None when the task is not recurring, the instance
        already exists, or it would fall beyond the scheduling horizon.
    """
    if not task.is_recurring or not task.recurrence_pattern:
        return None

    series_id = _series_id(task)
    if task.series_id is None:
        task.series_id = series_id

    next_due = calculate_next_due_date(task.recurrence_pattern, task.due_date)
    today = today or local_today()
    if next_due > today + timedelta(days=settings.recurring_horizon_days):
        logger.debug(f"Next instance of series {series_id} ({next_due}) is beyond the horizon")
        return None

    if _instance_exists(db, series_id, next_due):
        logger.debug(f"Series {series_id} already has an instance due {next_due}")
        return None

    new_task = _new_instance(task, next_due)
    db.add(new_task)
    db.commit()
    db.refresh(new_task)
    logger.info(f"Created recurring instance {new_task.id} of series {series_id} due {next_due}")
    return new_task


def generate_next_after_verification(db: Session, task: Task, today: Optional[date] = None) -> Optional[Task]:
    """
    Best-effort follow-up once a recurring task is verified.
    Failures are logged and never propagate to the verification.
    """
    try:
        return create_next_recurring_task(db, task, today=today)
    except Exception as e:
        db.rollback()
        logger.error(f"Error creating next recurring task for task {task.id}: {e}")
        return None


def generate_missing_recurring_tasks(
    db: Session,
    ctx: AuthContext,
    today: Optional[date] = None,
) -> List[Task]:
    """
    Backfill every recurring series in the caller's family whose latest
    instance is already overdue, until the series has an instance due on or
    after today.

    Returns:
        The newly created tasks
    """
    if not ctx.is_parent:
        raise ForbiddenError("Only parents can generate recurring tasks")

    today = today or local_today()
    series_key = func.coalesce(Task.series_id, Task.id)

    latest_per_series = (
        db.query(series_key.label("series_id"), func.max(Task.due_date).label("latest_due"))
        .filter(
            Task.family_id == ctx.family_id,
            Task.is_recurring.is_(True),
            Task.recurrence_pattern.isnot(None),
            Task.deleted_at.is_(None),
        )
        .group_by(series_key)
        .all()
    )

    created: List[Task] = []
    for series_id, latest_due in latest_per_series:
        if latest_due >= today:
            continue

        template = (
            db.query(Task)
            .filter(series_key == series_id, Task.due_date == latest_due, Task.deleted_at.is_(None))
            .first()
        )
        if template is None:
            continue

        try:
            series_created = []
            due = latest_due
            while due < today and len(series_created) < settings.recurring_backfill_limit:
                due = calculate_next_due_date(template.recurrence_pattern, due)
                if _instance_exists(db, series_id, due):
                    continue
                instance = _new_instance(template, due)
                db.add(instance)
                series_created.append(instance)
            if template.series_id is None:
                template.series_id = series_id
            db.commit()
            created.extend(series_created)
            if series_created:
                logger.info(f"Backfilled {len(series_created)} instance(s) for series {series_id}")
        except Exception as e:
            db.rollback()
            logger.error(f"Error backfilling recurring series {series_id}: {e}")

    return created
