"""
Identity and family membership: registration, family codes and member
management.
"""
import secrets
import string
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session, joinedload

from app.config import settings
from app.db import atomic
from app.errors import ConflictError, ForbiddenError, NotFoundError, ValidationFailedError
from app.logger import get_logger
from app.models import AccountRole, Family, FamilyMember, User
from app.permissions import AuthContext, FamilyRole, can_manage_family
from auth.security import hash_password

logger = get_logger(__name__)

FAMILY_CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_GENERATION_ATTEMPTS = 5


@dataclass
class Registration:
    email: str
    password: str
    name: str
    role: AccountRole
    family_code: Optional[str] = None
    family_name: Optional[str] = None
    phone_number: Optional[str] = None
    timezone: str = "UTC"


def generate_family_code(length: Optional[int] = None) -> str:
    """Random family code drawn from A-Z and 0-9."""
    length = length or settings.family_code_length
    return "".join(secrets.choice(FAMILY_CODE_ALPHABET) for _ in range(length))


def _unique_family_code(db: Session) -> str:
    for _ in range(CODE_GENERATION_ATTEMPTS):
        code = generate_family_code()
        if db.query(Family.id).filter(Family.family_code == code).first() is None:
            return code
    raise ConflictError("Could not generate a unique family code, please retry")


def register_user(db: Session, registration: Registration) -> Dict[str, Any]:
    """
    Create an account and its family membership.

    Without a family code a new family is created and the user becomes its
    admin parent. With a code the user joins that family with the role of
    their account.

    Returns:
        Dictionary with the created user and family
    """
    email = registration.email.strip().lower()
    if db.query(User.id).filter(User.email == email).first() is not None:
        raise ConflictError("User with this email already exists")

    family: Optional[Family] = None
    if registration.family_code:
        family = (
            db.query(Family)
            .filter(Family.family_code == registration.family_code.strip().upper())
            .first()
        )
        if family is None:
            raise NotFoundError("Invalid family code")
    elif registration.role != AccountRole.PARENT:
        raise ValidationFailedError("Children must join an existing family with a family code")
    elif not registration.family_name or len(registration.family_name.strip()) < 2:
        raise ValidationFailedError("Family name is required to create a new family")

    with atomic(db):
        user = User(
            email=email,
            name=registration.name.strip(),
            password_hash=hash_password(registration.password),
            role=registration.role,
            phone_number=registration.phone_number,
            timezone=registration.timezone or "UTC",
        )
        db.add(user)

        if family is None:
            family = Family(name=registration.family_name.strip(), family_code=_unique_family_code(db))
            db.add(family)
            member_role = FamilyRole.ADMIN_PARENT
        else:
            member_role = FamilyRole(registration.role.value)

        db.flush()
        db.add(FamilyMember(user_id=user.id, family_id=family.id, role=member_role))

    logger.info(f"Registered user {user.id} as {member_role.value} of family {family.id}")
    return {"user": user.to_dict(), "family": family.to_dict(), "family_role": member_role.value}


def get_my_family(db: Session, ctx: AuthContext) -> Dict[str, Any]:
    family = db.get(Family, ctx.family_id)
    if family is None:
        raise NotFoundError("Family not found")
    data = family.to_dict()
    data["role"] = ctx.role.value
    data["member_count"] = (
        db.query(FamilyMember).filter(FamilyMember.family_id == ctx.family_id).count()
    )
    return data


def list_members(db: Session, ctx: AuthContext) -> List[FamilyMember]:
    return (
        db.query(FamilyMember)
        .options(joinedload(FamilyMember.user))
        .filter(FamilyMember.family_id == ctx.family_id)
        .order_by(FamilyMember.joined_at, FamilyMember.id)
        .all()
    )


def _get_member(db: Session, ctx: AuthContext, member_id: int) -> FamilyMember:
    member = (
        db.query(FamilyMember)
        .options(joinedload(FamilyMember.user))
        .filter(FamilyMember.id == member_id, FamilyMember.family_id == ctx.family_id)
        .first()
    )
    if member is None:
        raise NotFoundError("Family member not found")
    return member


def update_member(db: Session, ctx: AuthContext, member_id: int, name: str) -> FamilyMember:
    """Rename a family member (parents only)."""
    if not ctx.is_parent:
        raise ForbiddenError("Only parents can edit family members")
    name = (name or "").strip()
    if len(name) < 2:
        raise ValidationFailedError("Name must be at least 2 characters")

    member = _get_member(db, ctx, member_id)
    with atomic(db):
        member.user.name = name
    db.refresh(member)
    return member


def remove_member(db: Session, ctx: AuthContext, member_id: int) -> Dict[str, Any]:
    """
    Remove someone from the family (parents only). Nobody can remove
    themselves, and only an admin parent can remove another admin. The user
    account and its history stay.
    """
    if not ctx.is_parent:
        raise ForbiddenError("Only parents can remove family members")

    member = _get_member(db, ctx, member_id)
    if member.user_id == ctx.user_id:
        raise ValidationFailedError("You cannot remove yourself from the family")
    if member.role == FamilyRole.ADMIN_PARENT and not can_manage_family(ctx.role):
        raise ForbiddenError("Only an admin parent can remove another admin")

    removed = {"member_id": member.id, "user_id": member.user_id, "name": member.user.name}
    with atomic(db):
        db.delete(member)

    logger.info(f"User {removed['user_id']} removed from family {ctx.family_id} by user {ctx.user_id}")
    return removed


def regenerate_family_code(db: Session, ctx: AuthContext) -> Family:
    """Issue a new family code; the old one stops working (admin parent only)."""
    if not can_manage_family(ctx.role):
        raise ForbiddenError("Only the admin parent can regenerate the family code")

    family = db.get(Family, ctx.family_id)
    if family is None:
        raise NotFoundError("Family not found")

    with atomic(db):
        family.family_code = _unique_family_code(db)

    logger.info(f"Family {family.id} code regenerated")
    return family


def build_family_context(db: Session, ctx: AuthContext) -> Dict[str, Any]:
    """Family name and members in the shape the task-parsing assistant expects."""
    family = db.get(Family, ctx.family_id)
    return {
        "family_id": ctx.family_id,
        "family_name": family.name if family else "",
        "members": [
            {"id": member.user_id, "name": member.user.name, "role": member.role.value}
            for member in list_members(db, ctx)
        ],
    }
