"""
Onboarding Module - Database Models
Worker skills, verification documents and onboarding configuration.
"""
import uuid
from enum import Enum

from sqlalchemy import ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from khidma.core.models import Base


class DocumentType(str, Enum):
    ID_FRONT = "id_front"
    ID_BACK = "id_back"
    PASSPORT = "passport"
    RESIDENCY_PERMIT_FRONT = "residency_permit_front"
    RESIDENCY_PERMIT_BACK = "residency_permit_back"
    CERTIFICATION = "certification"
    LICENSE = "license"
    ADDITIONAL_FILE = "additional_file"


ID_DOCUMENT_TYPES = frozenset({
    DocumentType.ID_FRONT.value,
    DocumentType.ID_BACK.value,
    DocumentType.PASSPORT.value,
    DocumentType.RESIDENCY_PERMIT_FRONT.value,
    DocumentType.RESIDENCY_PERMIT_BACK.value,
})

ADDITIONAL_FILE_TYPES = frozenset({
    DocumentType.CERTIFICATION.value,
    DocumentType.LICENSE.value,
    DocumentType.ADDITIONAL_FILE.value,
})


class VerificationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class UserSkill(Base):
    """
    A worker's declared skill.

    `category_id` holds a subcategory when one was picked, otherwise the
    main category itself.
    """
    __tablename__ = "user_skill"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("user.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    category_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("category.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    experience_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)


class UserDocument(Base):
    __tablename__ = "user_document"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("user.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    document_type: Mapped[str] = mapped_column(String(40), nullable=False)
    file_url: Mapped[str] = mapped_column(Text, nullable=False)
    storage_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    verification_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=VerificationStatus.PENDING.value,
    )


class WorkerConfig(Base):
    """Append-only; the newest row is the active configuration."""
    __tablename__ = "worker_config"

    max_categories: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
