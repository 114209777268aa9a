"""
Jobs Module - Database Models
Jobs posted from customer chats, their views, cancellations and the
categorization votes cast by categorizer workers.
"""
import uuid
from datetime import datetime
from enum import Enum, IntEnum

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import ARRAY, UUID
from sqlalchemy.orm import Mapped, mapped_column

from khidma.core.models import Base


class JobStatus(str, Enum):
    POSTED = "posted"
    MATCHED = "matched"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BroadcastPhase(IntEnum):
    NEW = 0
    CATEGORIZATION = 1
    BIDDING = 2


class CancellationPhase(str, Enum):
    BIDDING = "bidding"
    MATCHED = "matched"
    IN_PROGRESS = "in_progress"


class Job(Base):
    __tablename__ = "job"

    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("user.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    category_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("category.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    subcategory_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("category.id", ondelete="SET NULL"),
        nullable=True,
    )
    # Set instead of subcategory_id when categorizers tie
    subcategory_ids: Mapped[list[uuid.UUID]] = mapped_column(
        ARRAY(UUID(as_uuid=True)),
        nullable=False,
        default=list,
    )

    voice_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    voice_duration: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    photos: Mapped[list[str]] = mapped_column(ARRAY(Text), nullable=False, default=list)
    location_lat: Mapped[float] = mapped_column(Float, nullable=False)
    location_lng: Mapped[float] = mapped_column(Float, nullable=False)

    work_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    onboarding_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    completion_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    portfolio_consent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    price_floor: Mapped[float] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=False, default=0)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=JobStatus.POSTED.value,
        index=True,
    )
    worker_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("user.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    matched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Broadcast state
    categorizer_worker_ids: Mapped[list[uuid.UUID]] = mapped_column(
        ARRAY(UUID(as_uuid=True)),
        nullable=False,
        default=list,
    )
    broadcasting_phase: Mapped[int] = mapped_column(Integer, nullable=False, default=BroadcastPhase.NEW)
    categorizer_group_size: Mapped[int | None] = mapped_column(Integer, nullable=True)

    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at_phase: Mapped[str | None] = mapped_column(String(20), nullable=True)


class JobView(Base):
    __tablename__ = "job_view"

    __table_args__ = (
        UniqueConstraint("job_id", "worker_id", name="uq_job_view_job_worker"),
    )

    job_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("job.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    worker_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("user.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    viewed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class JobCancellation(Base):
    __tablename__ = "job_cancellation"

    job_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("job.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    cancelled_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("user.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    phase: Mapped[str] = mapped_column(String(20), nullable=False)
    cancelled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class JobCategorization(Base):
    """One categorizer's subcategory vote for a job."""
    __tablename__ = "job_categorization"

    __table_args__ = (
        UniqueConstraint("job_id", "worker_id", name="uq_job_categorization_job_worker"),
    )

    job_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("job.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    worker_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("user.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    suggested_subcategory_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("category.id", ondelete="CASCADE"),
        nullable=False,
    )
