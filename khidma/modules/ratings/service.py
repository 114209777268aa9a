"""
Ratings Module - Business Logic Service
"""
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from khidma.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from khidma.core.logging import get_logger
from khidma.modules.auth.models import User
from khidma.modules.chats.service import MessageService
from khidma.modules.jobs.models import Job
from khidma.modules.ratings.models import Rating, RatingType

logger = get_logger(__name__)


class RatingService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.messages = MessageService(db)

    async def _average(self, user_id: uuid.UUID) -> tuple[float | None, int]:
        stmt = select(func.avg(Rating.rating), func.count(Rating.id)).where(Rating.rated_id == user_id)
        average, count = (await self.db.execute(stmt)).one()
        if not count:
            return None, 0
        return round(float(average), 1), count

    async def submit_rating(
        self,
        job_id: uuid.UUID,
        rater_id: uuid.UUID,
        rated_id: uuid.UUID,
        rating: int,
        review_text: str | None = None,
    ) -> dict:
        if rating < 1 or rating > 5:
            raise ValidationError("Rating must be between 1 and 5")

        job = await self.db.get(Job, job_id)
        if not job:
            raise NotFoundError("Job not found")
        participants = {job.customer_id, job.worker_id}
        if rater_id not in participants or rated_id not in participants or rater_id == rated_id:
            raise ForbiddenError("Only the customer and worker of this job can rate each other")
        if rater_id == job.customer_id:
            rating_type = RatingType.CUSTOMER_RATES_WORKER
        else:
            rating_type = RatingType.WORKER_RATES_CUSTOMER

        stmt = select(Rating.id).where(Rating.job_id == job_id, Rating.rater_id == rater_id)
        if (await self.db.execute(stmt)).first() is not None:
            raise ConflictError("You have already rated this job")

        record = Rating(
            job_id=job_id,
            rater_id=rater_id,
            rated_id=rated_id,
            rating=rating,
            review_text=review_text,
            rating_type=rating_type.value,
        )
        self.db.add(record)
        await self.db.flush()

        average, _ = await self._average(rated_id)
        rated_user = await self.db.get(User, rated_id)
        if rated_user:
            rated_user.rating = average

        raters = await self.db.execute(select(Rating.rater_id).where(Rating.job_id == job_id))
        both_rated = participants <= set(raters.scalars().all())
        if both_rated:
            await self.messages.expire_rating_bubbles(job_id)

        await self.db.commit()
        logger.info(
            "Rating submitted",
            job_id=str(job_id),
            rating_type=record.rating_type,
            both_rated=both_rated,
        )
        return {
            "success": True,
            "rating_id": record.id,
            "new_average": average,
            "bubbles_expired": both_rated,
        }

    async def get_user_ratings(self, user_id: uuid.UUID) -> list[Rating]:
        """Ratings received by the user. Callers must not expose the rater."""
        stmt = select(Rating).where(Rating.rated_id == user_id).order_by(Rating.created_at.desc())
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_ratings_given(self, user_id: uuid.UUID) -> list[Rating]:
        stmt = select(Rating).where(Rating.rater_id == user_id).order_by(Rating.created_at.desc())
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_user_average_rating(self, user_id: uuid.UUID) -> dict:
        average, count = await self._average(user_id)
        return {"average": average or 0, "count": count}
