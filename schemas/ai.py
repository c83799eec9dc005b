from datetime import date
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class ParseTasksRequest(BaseModel):
    input: str = Field(min_length=1, max_length=2000)
    target_date: Optional[date] = None
    default_points: Optional[int] = Field(default=None, ge=0, le=100)


class ChatTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str = Field(max_length=4000)


class ChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=2000)
    history: List[ChatTurn] = Field(default_factory=list, max_length=20)
