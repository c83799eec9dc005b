from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from api.responses import ok
from app.db import get_db
from app.families import get_my_family, list_members, regenerate_family_code, remove_member, update_member
from app.permissions import AuthContext
from auth.dependencies import get_auth_context
from schemas.families import MemberUpdate

router = APIRouter(prefix="/families", tags=["Families"])


@router.get("/my")
def my_family(ctx: AuthContext = Depends(get_auth_context), db: Session = Depends(get_db)):
    return ok(get_my_family(db, ctx))


@router.get("/members")
def members(ctx: AuthContext = Depends(get_auth_context), db: Session = Depends(get_db)):
    return ok([member.to_dict() for member in list_members(db, ctx)])


@router.patch("/members/{member_id}")
def edit_member(
    member_id: int,
    payload: MemberUpdate,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    return ok(update_member(db, ctx, member_id, payload.name).to_dict())


@router.delete("/members/{member_id}")
def delete_member(member_id: int, ctx: AuthContext = Depends(get_auth_context), db: Session = Depends(get_db)):
    return ok(remove_member(db, ctx, member_id))


@router.post("/regenerate")
def regenerate(ctx: AuthContext = Depends(get_auth_context), db: Session = Depends(get_db)):
    family = regenerate_family_code(db, ctx)
    return ok({"family_code": family.family_code})
