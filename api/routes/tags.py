from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from api.responses import ok
from app.db import get_db
from app.permissions import AuthContext
from app.tags import create_tag, delete_tag, list_tags, update_tag
from auth.dependencies import get_auth_context
from schemas.tags import TagCreate, TagUpdate

router = APIRouter(prefix="/tags", tags=["Tags"])


@router.get("")
def get_tags(ctx: AuthContext = Depends(get_auth_context), db: Session = Depends(get_db)):
    return ok([tag.to_dict() for tag in list_tags(db, ctx)])


@router.post("", status_code=201)
def post_tag(payload: TagCreate, ctx: AuthContext = Depends(get_auth_context), db: Session = Depends(get_db)):
    return ok(create_tag(db, ctx, payload.name, payload.color).to_dict())


@router.put("/{tag_id}")
def put_tag(
    tag_id: int,
    payload: TagUpdate,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    return ok(update_tag(db, ctx, tag_id, name=payload.name, color=payload.color).to_dict())


@router.delete("/{tag_id}")
def remove_tag(tag_id: int, ctx: AuthContext = Depends(get_auth_context), db: Session = Depends(get_db)):
    delete_tag(db, ctx, tag_id)
    return ok({"tag_id": tag_id})
