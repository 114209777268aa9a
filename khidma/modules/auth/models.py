"""
Auth Module - Database Models
User (customer or worker), OTP codes, sessions and refresh tokens.
"""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from khidma.core.models import Base


class UserType(str, Enum):
    CUSTOMER = "customer"
    WORKER = "worker"


class ApprovalStatus(str, Enum):
    """Worker verification state. Customers are approved on sign-up."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class OnboardingStatus(str, Enum):
    """Worker onboarding steps, in order."""
    NOT_STARTED = "not_started"
    SELFIE_COMPLETED = "selfie_completed"
    DOCUMENTS_COMPLETED = "documents_completed"
    CATEGORIES_COMPLETED = "categories_completed"
    ADDITIONAL_FILES_COMPLETED = "additional_files_completed"
    COMPLETED = "completed"


# Used to order customers ahead of workers in support queues
PRIORITY_SCORES = {
    UserType.CUSTOMER.value: 100,
    UserType.WORKER.value: 50,
}


class User(Base):
    """Marketplace user. `user_type` decides which flows are open."""
    __tablename__ = "user"

    phone: Mapped[str] = mapped_column(String(20), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    user_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=UserType.CUSTOMER.value,
        index=True,
    )

    rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    balance: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    photo_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    photo_storage_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    approval_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ApprovalStatus.PENDING.value,
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancellation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    priority_score: Mapped[int] = mapped_column(Integer, nullable=False, default=100)

    # Worker onboarding
    onboarding_status: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        default=OnboardingStatus.NOT_STARTED.value,
    )
    current_onboarding_step: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    onboarding_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    selfie_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    selfie_storage_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    @property
    def is_worker(self) -> bool:
        return self.user_type == UserType.WORKER.value

    @property
    def is_approved(self) -> bool:
        return self.approval_status == ApprovalStatus.APPROVED.value


class OtpCode(Base):
    """Hashed one-time code sent by SMS. Only the bcrypt hash is stored."""
    __tablename__ = "otp_code"

    __table_args__ = (
        Index("idx_otp_phone_verified", "phone", "verified"),
    )

    phone: Mapped[str] = mapped_column(String(20), nullable=False)
    code_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class UserSession(Base):
    """Opaque session token bound to a device."""
    __tablename__ = "user_session"

    __table_args__ = (
        Index("idx_session_user_device", "user_id", "device_id"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("user.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    device_id: Mapped[str] = mapped_column(String(255), nullable=False)
    access_token: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_activity: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class RefreshToken(Base):
    """Long-lived refresh token, stored as a bcrypt hash."""
    __tablename__ = "refresh_token"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("user.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_revoked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
