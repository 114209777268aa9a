"""
Ratings Module - Database Models
"""
import uuid
from enum import Enum

from sqlalchemy import CheckConstraint, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from khidma.core.models import Base


class RatingType(str, Enum):
    CUSTOMER_RATES_WORKER = "customer_rates_worker"
    WORKER_RATES_CUSTOMER = "worker_rates_customer"


class Rating(Base):
    """Private 1-5 rating left by one side of a job for the other."""
    __tablename__ = "rating"

    __table_args__ = (
        UniqueConstraint("job_id", "rater_id", name="uq_rating_job_rater"),
        CheckConstraint("rating BETWEEN 1 AND 5", name="rating_range"),
    )

    rater_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("user.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    rated_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("user.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    job_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("job.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    rating_type: Mapped[str] = mapped_column(String(30), nullable=False)
    review_text: Mapped[str | None] = mapped_column(Text, nullable=True)
