from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from app.models import RecurrencePattern


class TaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    points: int = Field(ge=0, le=100)
    due_date: date
    assigned_to: Optional[int] = None
    is_bonus_task: bool = False
    is_recurring: bool = False
    recurrence_pattern: Optional[RecurrencePattern] = None
    due_date_only: bool = False
    tag_ids: List[int] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_assignment(self):
        if self.is_bonus_task and self.assigned_to is not None:
            raise ValueError("Bonus tasks cannot be assigned")
        if not self.is_bonus_task and self.assigned_to is None:
            raise ValueError("Regular tasks require assignment")
        if self.is_recurring and self.recurrence_pattern is None:
            raise ValueError("Recurring tasks require a recurrence pattern")
        return self


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    points: Optional[int] = Field(default=None, ge=0, le=100)
    due_date: Optional[date] = None
    due_date_only: Optional[bool] = None
    tag_ids: Optional[List[int]] = None


class TaskDecline(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)
