from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.responses import ok
from app.db import get_db
from app.notifications import delete_notifications, list_notifications, mark_read, unread_count
from app.permissions import AuthContext
from auth.dependencies import get_auth_context
from schemas.notifications import NotificationAction

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("")
def get_notifications(
    limit: int = Query(10, ge=1, le=100),
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    notifications = list_notifications(db, ctx, limit=limit)
    return ok({
        "notifications": [n.to_dict() for n in notifications],
        "unread_count": unread_count(db, ctx),
    })


@router.get("/unread-count")
def get_unread_count(ctx: AuthContext = Depends(get_auth_context), db: Session = Depends(get_db)):
    return ok({"unread_count": unread_count(db, ctx)})


@router.patch("")
def patch_notifications(
    payload: NotificationAction,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    updated = mark_read(db, ctx, notification_id=payload.notification_id, all_=payload.all)
    return ok({"updated": updated})


@router.delete("")
def remove_notifications(
    notification_id: Optional[int] = Query(None),
    all: bool = Query(False),
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    deleted = delete_notifications(db, ctx, notification_id=notification_id, all_=all)
    return ok({"deleted": deleted})
