"""
Family-scoped task tags.
"""
import re
from typing import List, Optional

from sqlalchemy.orm import Session

from app.db import atomic
from app.errors import ConflictError, ForbiddenError, NotFoundError, ValidationFailedError
from app.logger import get_logger
from app.models import TaskTag, task_tag_relations
from app.permissions import AuthContext

logger = get_logger(__name__)

COLOR_PATTERN = re.compile(r'^#[0-9A-Fa-f]{6}$')
DEFAULT_COLOR = "#3B82F6"


def _clean(name: Optional[str], color: Optional[str]):
    if name is not None:
        name = name.strip()
        if not name or len(name) > 50:
            raise ValidationFailedError("Tag name must be between 1 and 50 characters")
    if color is not None and not COLOR_PATTERN.match(color):
        raise ValidationFailedError("Color must be a hex value like #A1B2C3")
    return name, color


def _name_taken(db: Session, family_id: int, name: str, exclude_id: Optional[int] = None) -> bool:
    query = db.query(TaskTag.id).filter(TaskTag.family_id == family_id, TaskTag.name == name)
    if exclude_id is not None:
        query = query.filter(TaskTag.id != exclude_id)
    return query.first() is not None


def _get_tag(db: Session, ctx: AuthContext, tag_id: int) -> TaskTag:
    tag = db.query(TaskTag).filter(TaskTag.id == tag_id, TaskTag.family_id == ctx.family_id).first()
    if tag is None:
        raise NotFoundError("Tag not found")
    return tag


def list_tags(db: Session, ctx: AuthContext) -> List[TaskTag]:
    return db.query(TaskTag).filter(TaskTag.family_id == ctx.family_id).order_by(TaskTag.name).all()


def create_tag(db: Session, ctx: AuthContext, name: str, color: Optional[str] = None) -> TaskTag:
    if not ctx.is_parent:
        raise ForbiddenError("Only parents can manage tags")
    name, color = _clean(name, color or DEFAULT_COLOR)
    if _name_taken(db, ctx.family_id, name):
        raise ConflictError(f"Tag '{name}' already exists")

    tag = TaskTag(family_id=ctx.family_id, name=name, color=color)
    with atomic(db):
        db.add(tag)
    db.refresh(tag)
    return tag


def update_tag(
    db: Session,
    ctx: AuthContext,
    tag_id: int,
    name: Optional[str] = None,
    color: Optional[str] = None,
) -> TaskTag:
    if not ctx.is_parent:
        raise ForbiddenError("Only parents can manage tags")
    name, color = _clean(name, color)
    tag = _get_tag(db, ctx, tag_id)
    if name is not None and _name_taken(db, ctx.family_id, name, exclude_id=tag.id):
        raise ConflictError(f"Tag '{name}' already exists")

    with atomic(db):
        if name is not None:
            tag.name = name
        if color is not None:
            tag.color = color
    db.refresh(tag)
    return tag


def delete_tag(db: Session, ctx: AuthContext, tag_id: int) -> None:
    """Delete a tag and detach it from every task."""
    if not ctx.is_parent:
        raise ForbiddenError("Only parents can manage tags")
    tag = _get_tag(db, ctx, tag_id)
    with atomic(db):
        db.execute(task_tag_relations.delete().where(task_tag_relations.c.tag_id == tag.id))
        db.delete(tag)
    logger.info(f"Tag {tag_id} deleted from family {ctx.family_id}")
