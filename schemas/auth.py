from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from app.models import AccountRole


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    name: str = Field(min_length=2, max_length=100)
    role: AccountRole
    family_code: Optional[str] = None
    family_name: Optional[str] = Field(default=None, max_length=50)
    phone_number: Optional[str] = None
    timezone: str = "UTC"

    @field_validator("timezone")
    @classmethod
    def known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {value}")
        return value

    @model_validator(mode="after")
    def family_code_or_name(self):
        if not self.family_code and not (self.family_name and len(self.family_name.strip()) >= 2):
            raise ValueError("Either family_code or family_name (at least 2 characters) is required")
        return self


class Token(BaseModel):
    access_token: str
    token_type: str
    user_id: int
    name: str
    role: str
