from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from api.responses import ok
from app.db import get_db
from app.notifications import OutboxDispatcher, get_outbox_dispatcher
from app.permissions import AuthContext
from app.points import add_points, deduct_points, get_family_history, get_history
from auth.dependencies import get_auth_context
from schemas.points import PointsAdjustment

router = APIRouter(prefix="/points", tags=["Points"])


@router.post("/add")
def add(
    payload: PointsAdjustment,
    background_tasks: BackgroundTasks,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    dispatcher: OutboxDispatcher = Depends(get_outbox_dispatcher),
):
    result = add_points(db, ctx, payload.user_id, payload.points, payload.reason)
    background_tasks.add_task(dispatcher.drain)
    return ok(result)


@router.post("/deduct")
def deduct(
    payload: PointsAdjustment,
    background_tasks: BackgroundTasks,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    dispatcher: OutboxDispatcher = Depends(get_outbox_dispatcher),
):
    result = deduct_points(db, ctx, payload.user_id, payload.points, payload.reason)
    background_tasks.add_task(dispatcher.drain)
    return ok(result)


@router.get("/history")
def history(
    user_id: Optional[int] = Query(None),
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    return ok(get_history(db, ctx, user_id=user_id))


@router.get("/family-history")
def family_history(ctx: AuthContext = Depends(get_auth_context), db: Session = Depends(get_db)):
    return ok(get_family_history(db, ctx))
