from pydantic import BaseModel, Field


class PointsAdjustment(BaseModel):
    user_id: int
    points: int = Field(gt=0)
    reason: str = Field(min_length=1, max_length=200)
