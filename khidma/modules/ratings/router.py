"""
Rating endpoints. Ratings are private: received ratings never carry the rater.
"""
import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from khidma.core.database import get_db
from khidma.modules.auth.dependencies import CurrentUser
from khidma.modules.ratings.schemas import (
    AverageRatingResponse,
    GivenRatingResponse,
    RatingResponse,
    SubmitRatingRequest,
    SubmitRatingResponse,
)
from khidma.modules.ratings.service import RatingService

router = APIRouter(prefix="/ratings", tags=["Ratings"])


def get_rating_service(db: AsyncSession = Depends(get_db)) -> RatingService:
    return RatingService(db)


@router.post("", response_model=SubmitRatingResponse, status_code=status.HTTP_201_CREATED)
async def submit_rating(
    payload: SubmitRatingRequest,
    current_user: CurrentUser,
    service: RatingService = Depends(get_rating_service),
):
    return await service.submit_rating(
        payload.job_id,
        current_user.id,
        payload.rated_id,
        payload.rating,
        review_text=payload.review_text,
    )


@router.get("/received", response_model=list[RatingResponse])
async def get_my_ratings(
    current_user: CurrentUser,
    service: RatingService = Depends(get_rating_service),
):
    return await service.get_user_ratings(current_user.id)


@router.get("/given", response_model=list[GivenRatingResponse])
async def get_ratings_given(
    current_user: CurrentUser,
    service: RatingService = Depends(get_rating_service),
):
    return await service.get_ratings_given(current_user.id)


@router.get("/users/{user_id}/average", response_model=AverageRatingResponse)
async def get_user_average_rating(
    user_id: uuid.UUID,
    current_user: CurrentUser,
    service: RatingService = Depends(get_rating_service),
):
    return await service.get_user_average_rating(user_id)
