"""
Categories Module - Database Models
Two-level service catalogue (category -> subcategory), pricing baselines,
expert categorizers and runtime key/value settings.
"""
import uuid

from sqlalchemy import Boolean, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from khidma.core.models import Base

SUPPORTED_LANGUAGES = ("en", "fr", "ar")


class Category(Base):
    """Catalogue node. level 0 is a main category, level 1 a subcategory."""
    __tablename__ = "category"

    parent_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("category.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    name_en: Mapped[str] = mapped_column(String(120), nullable=False)
    name_fr: Mapped[str] = mapped_column(String(120), nullable=False)
    name_ar: Mapped[str] = mapped_column(String(120), nullable=False)
    photo_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    requires_photos: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    requires_work_code: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=0, index=True)

    def localized_name(self, language: str = "en") -> str:
        if language not in SUPPORTED_LANGUAGES:
            language = "en"
        return getattr(self, f"name_{language}") or self.name_en


class CategoryPricing(Base):
    """Minimum bid protection for a subcategory."""
    __tablename__ = "category_pricing"

    subcategory_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("category.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    baseline_price: Mapped[float] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=False)
    minimum_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=70)
    updated_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("user.id", ondelete="SET NULL"),
        nullable=True,
    )


class ExpertCategorizer(Base):
    """Worker designated by an admin as a trusted categorizer for a category."""
    __tablename__ = "expert_categorizer"

    __table_args__ = (
        UniqueConstraint("category_id", "worker_id", name="uq_expert_category_worker"),
    )

    category_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("category.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    worker_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("user.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    designated_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("user.id", ondelete="SET NULL"),
        nullable=True,
    )


class SystemSetting(Base):
    """Runtime tunables (e.g. categorizer_group_size) stored as strings."""
    __tablename__ = "system_setting"

    setting_key: Mapped[str] = mapped_column(String(100), unique=True, index=True, nullable=False)
    setting_value: Mapped[str] = mapped_column(String(500), nullable=False)
