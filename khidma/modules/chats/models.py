"""
Chats Module - Database Models

Chat kinds are told apart by which participants are set:
- customer service chat: customer, no worker
- worker notification chat: worker, no customer
- conversation chat: customer + worker + job
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from khidma.core.models import Base


class BubbleType(str, Enum):
    TEXT = "text"
    VOICE = "voice"
    PHOTO = "photo"
    CONFIRMATION = "confirmation"
    DATE = "date"
    SYSTEM_INSTRUCTION = "system_instruction"
    SYSTEM_PROMPT = "system_prompt"
    SYSTEM_NOTIFICATION = "system_notification"
    JOB = "job"
    WORKER_JOB = "worker_job"
    ONBOARDING_CODE_INPUT = "onboarding_code_input"
    COMPLETION_CODE_INPUT = "completion_code_input"
    RATING_REQUEST = "rating_request"
    BID = "bid"


# Bubble types a client may send directly
USER_BUBBLE_TYPES = frozenset({
    BubbleType.TEXT,
    BubbleType.VOICE,
    BubbleType.PHOTO,
    BubbleType.CONFIRMATION,
    BubbleType.DATE,
    BubbleType.SYSTEM_INSTRUCTION,
    BubbleType.JOB,
    BubbleType.WORKER_JOB,
    BubbleType.ONBOARDING_CODE_INPUT,
    BubbleType.COMPLETION_CODE_INPUT,
})

SYSTEM_BUBBLE_TYPES = frozenset({
    BubbleType.SYSTEM_INSTRUCTION,
    BubbleType.SYSTEM_PROMPT,
    BubbleType.SYSTEM_NOTIFICATION,
})


class MessageStatus(str, Enum):
    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class Chat(Base):
    __tablename__ = "chat"

    category_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("category.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    job_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("job.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    customer_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("user.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    worker_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("user.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    banner_info: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_cleared: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    @property
    def is_conversation(self) -> bool:
        return self.customer_id is not None and self.worker_id is not None

    def has_participant(self, user_id: uuid.UUID) -> bool:
        return user_id is not None and user_id in (self.customer_id, self.worker_id)


class Message(Base):
    """
    A chat bubble. `content` is free text for user bubbles and the related
    job or bid id for `job`, `worker_job` and `bid` bubbles.
    """
    __tablename__ = "message"

    __table_args__ = (
        Index("idx_message_chat_partition", "chat_id", "year_month", "created_at"),
    )

    chat_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("chat.id", ondelete="CASCADE"),
        nullable=False,
    )
    year_month: Mapped[str] = mapped_column(String(7), nullable=False)
    sender_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("user.id", ondelete="CASCADE"),
        nullable=False,
    )
    bubble_type: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    metadata_: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONB, nullable=True)
    is_dismissed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_expired: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class MessagePartition(Base):
    """Message count per chat and month. Rows never hold a count below 1."""
    __tablename__ = "message_partition"

    __table_args__ = (
        UniqueConstraint("chat_id", "year_month", name="uq_message_partition_chat_month"),
    )

    chat_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("chat.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    year_month: Mapped[str] = mapped_column(String(7), nullable=False)
    message_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
