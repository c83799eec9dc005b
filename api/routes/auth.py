from fastapi import APIRouter, Depends
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from api.responses import ok
from app.db import get_db
from app.errors import UnauthorizedError
from app.families import Registration, register_user
from app.models import FamilyMember, User
from auth.dependencies import get_current_user
from auth.jwt_handler import create_access_token
from auth.security import verify_password
from schemas.auth import RegisterRequest, Token

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.post("/register", status_code=201)
def register(payload: RegisterRequest, db: Session = Depends(get_db)):
    result = register_user(db, Registration(**payload.model_dump()))
    return ok(result)


@router.post("/token", response_model=Token)
def login(form: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == form.username.strip().lower()).first()

    if not user or not verify_password(form.password, user.password_hash):
        raise UnauthorizedError("Invalid credentials")

    token = create_access_token({"sub": str(user.id)})
    return {
        "access_token": token,
        "token_type": "bearer",
        "user_id": user.id,
        "name": user.name,
        "role": user.role.value
    }


@router.get("/me")
def me(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Current user plus their family membership."""
    member = db.query(FamilyMember).filter(FamilyMember.user_id == user.id).first()
    data = user.to_dict()
    data["family_id"] = member.family_id if member else None
    data["family_role"] = member.role.value if member else None
    return ok(data)
