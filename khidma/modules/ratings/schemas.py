"""
Ratings Module - Pydantic Schemas
"""
import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from khidma.modules.ratings.models import RatingType


class SubmitRatingRequest(BaseModel):
    job_id: uuid.UUID
    rated_id: uuid.UUID
    rating: int = Field(..., description="1 to 5")
    review_text: str | None = Field(None, max_length=1000)


class RatingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    job_id: uuid.UUID
    rated_id: uuid.UUID
    rating: int
    rating_type: RatingType
    review_text: str | None = None
    created_at: datetime


class GivenRatingResponse(RatingResponse):
    rater_id: uuid.UUID


class SubmitRatingResponse(BaseModel):
    success: bool
    rating_id: uuid.UUID
    new_average: float | None = None
    bubbles_expired: bool = False


class AverageRatingResponse(BaseModel):
    average: float
    count: int
