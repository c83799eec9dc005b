from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from api.responses import ok
from app.db import get_db
from app.permissions import AuthContext
from app.sms import SMSClient, get_sms_client
from app.users import (
    change_email,
    change_password,
    get_user_points,
    send_test_sms,
    update_sms_settings,
    update_timezone,
)
from auth.dependencies import get_auth_context
from schemas.users import EmailChange, PasswordChange, SMSSettings, TimezoneUpdate

router = APIRouter(prefix="/user", tags=["User"])


@router.get("/points")
def points(ctx: AuthContext = Depends(get_auth_context), db: Session = Depends(get_db)):
    return ok(get_user_points(db, ctx))


@router.post("/sms-settings")
def sms_settings(payload: SMSSettings, ctx: AuthContext = Depends(get_auth_context), db: Session = Depends(get_db)):
    user = update_sms_settings(db, ctx, payload.enabled, payload.phone_number)
    return ok({
        "sms_notifications_enabled": user.sms_notifications_enabled,
        "phone_number": user.phone_number,
    })


@router.post("/test-sms")
def test_sms(
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    sms_client: SMSClient = Depends(get_sms_client),
):
    result = send_test_sms(db, ctx, sms_client)
    return ok({"sent": result.success, "message_id": result.message_id, "error": result.error})


@router.post("/change-password")
def password(payload: PasswordChange, ctx: AuthContext = Depends(get_auth_context), db: Session = Depends(get_db)):
    change_password(db, ctx, payload.current_password, payload.new_password)
    return ok({"message": "Password updated"})


@router.post("/change-email")
def email(payload: EmailChange, ctx: AuthContext = Depends(get_auth_context), db: Session = Depends(get_db)):
    user = change_email(db, ctx, payload.new_email, payload.password)
    return ok({"email": user.email})


@router.post("/timezone")
def timezone(payload: TimezoneUpdate, ctx: AuthContext = Depends(get_auth_context), db: Session = Depends(get_db)):
    user = update_timezone(db, ctx, payload.timezone)
    return ok({"timezone": user.timezone})
