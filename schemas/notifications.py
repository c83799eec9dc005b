from typing import Optional

from pydantic import BaseModel


class NotificationAction(BaseModel):
    notification_id: Optional[int] = None
    all: bool = False
