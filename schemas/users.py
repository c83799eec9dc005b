from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class SMSSettings(BaseModel):
    enabled: bool
    phone_number: Optional[str] = None


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8)


class EmailChange(BaseModel):
    new_email: EmailStr
    password: str


class TimezoneUpdate(BaseModel):
    timezone: str = Field(min_length=1, max_length=64)
