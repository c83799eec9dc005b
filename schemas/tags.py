from typing import Optional

from pydantic import BaseModel, Field

HEX_COLOR = r'^#[0-9A-Fa-f]{6}$'


class TagCreate(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR)


class TagUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR)
