"""
Task lifecycle routes.
"""
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from api.responses import ok
from app.db import get_db
from app.models import TaskStatus
from app.notifications import OutboxDispatcher, get_outbox_dispatcher
from app.permissions import AuthContext
from app.recurring import generate_missing_recurring_tasks
from app.tasks import (
    TaskChanges,
    TaskDraft,
    claim_task,
    complete_task,
    create_task,
    decline_task,
    delete_task,
    get_task,
    list_tasks,
    update_task,
    verify_task,
    weekly_tasks,
)
from auth.dependencies import get_auth_context
from schemas.tasks import TaskCreate, TaskDecline, TaskUpdate

router = APIRouter(prefix="/tasks", tags=["Tasks"])


@router.get("")
def get_tasks(
    status: Optional[TaskStatus] = Query(None),
    assigned_to: Optional[int] = Query(None),
    created_by: Optional[int] = Query(None),
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    tasks = list_tasks(db, ctx, status=status, assigned_to=assigned_to, created_by=created_by)
    return ok([task.to_dict() for task in tasks])


@router.post("", status_code=201)
def post_task(
    payload: TaskCreate,
    background_tasks: BackgroundTasks,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    dispatcher: OutboxDispatcher = Depends(get_outbox_dispatcher),
):
    task = create_task(db, ctx, TaskDraft(**payload.model_dump()))
    background_tasks.add_task(dispatcher.drain)
    return ok(task.to_dict())


@router.get("/weekly")
def get_weekly_tasks(ctx: AuthContext = Depends(get_auth_context), db: Session = Depends(get_db)):
    return ok([task.to_dict() for task in weekly_tasks(db, ctx)])


@router.post("/recurring/generate")
def generate_recurring(ctx: AuthContext = Depends(get_auth_context), db: Session = Depends(get_db)):
    created = generate_missing_recurring_tasks(db, ctx)
    return ok({"created_count": len(created), "tasks": [task.to_dict() for task in created]})


@router.get("/{task_id}")
def get_single_task(task_id: int, ctx: AuthContext = Depends(get_auth_context), db: Session = Depends(get_db)):
    return ok(get_task(db, ctx, task_id).to_dict())


@router.put("/{task_id}")
def put_task(
    task_id: int,
    payload: TaskUpdate,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    task = update_task(db, ctx, task_id, TaskChanges(**payload.model_dump()))
    return ok(task.to_dict())


@router.delete("/{task_id}")
def remove_task(
    task_id: int,
    background_tasks: BackgroundTasks,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    dispatcher: OutboxDispatcher = Depends(get_outbox_dispatcher),
):
    result = delete_task(db, ctx, task_id)
    background_tasks.add_task(dispatcher.drain)
    return ok(result)


@router.post("/{task_id}/assign")
def assign_bonus_task(
    task_id: int,
    background_tasks: BackgroundTasks,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    dispatcher: OutboxDispatcher = Depends(get_outbox_dispatcher),
):
    """Claim an available bonus task for the caller."""
    task = claim_task(db, ctx, task_id)
    background_tasks.add_task(dispatcher.drain)
    return ok(task.to_dict())


@router.post("/{task_id}/complete")
def complete(
    task_id: int,
    background_tasks: BackgroundTasks,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    dispatcher: OutboxDispatcher = Depends(get_outbox_dispatcher),
):
    task = complete_task(db, ctx, task_id)
    background_tasks.add_task(dispatcher.drain)
    return ok(task.to_dict())


@router.post("/{task_id}/verify")
def verify(
    task_id: int,
    background_tasks: BackgroundTasks,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    dispatcher: OutboxDispatcher = Depends(get_outbox_dispatcher),
):
    result = verify_task(db, ctx, task_id)
    background_tasks.add_task(dispatcher.drain)
    return ok({"task": result["task"].to_dict(), "points_awarded": result["points_awarded"]})


@router.post("/{task_id}/decline")
def decline(
    task_id: int,
    background_tasks: BackgroundTasks,
    payload: Optional[TaskDecline] = None,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    dispatcher: OutboxDispatcher = Depends(get_outbox_dispatcher),
):
    task = decline_task(db, ctx, task_id, reason=payload.reason if payload else None)
    background_tasks.add_task(dispatcher.drain)
    return ok(task.to_dict())
