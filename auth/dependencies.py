"""
FastAPI dependencies resolving the bearer token into the caller's context.
"""
from fastapi import Depends
from sqlalchemy.orm import Session

from app.db import get_db
from app.errors import NotFoundError, UnauthorizedError
from app.models import FamilyMember, User
from app.permissions import AuthContext
from auth.jwt_handler import decode_access_token
from auth.oauth2 import oauth2_scheme


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    payload = decode_access_token(token)
    if not payload:
        raise UnauthorizedError("Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise UnauthorizedError("Invalid token")

    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        raise UnauthorizedError("Invalid token")

    user = db.get(User, user_id)
    if user is None:
        raise UnauthorizedError("User no longer exists")
    return user


def get_auth_context(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> AuthContext:
    """The caller's family membership; every family-scoped route depends on this."""
    member = (
        db.query(FamilyMember)
        .filter(FamilyMember.user_id == user.id)
        .order_by(FamilyMember.joined_at, FamilyMember.id)
        .first()
    )
    if member is None:
        raise NotFoundError("User is not a member of any family")
    return AuthContext(user_id=user.id, family_id=member.family_id, role=member.role, name=user.name)
