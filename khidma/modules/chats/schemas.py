"""
Chats Module - Pydantic Schemas
"""
import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from khidma.modules.chats.models import BubbleType, MessageStatus

Language = Literal["en", "fr", "ar"]


# ============== Chat Schemas ==============

class ChatResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    category_id: uuid.UUID
    job_id: uuid.UUID | None = None
    customer_id: uuid.UUID | None = None
    worker_id: uuid.UUID | None = None
    banner_info: str | None = None
    is_cleared: bool = False
    created_at: datetime


class ChatInfoResponse(ChatResponse):
    message_count: int = 0
    is_fresh: bool = True


class CategoryChatRequest(BaseModel):
    category_id: uuid.UUID


# ============== Message Schemas ==============

class SenderSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    user_type: str
    photo_url: str | None = None


class MessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: uuid.UUID
    chat_id: uuid.UUID
    year_month: str
    sender_id: uuid.UUID
    bubble_type: str
    content: str
    metadata: dict[str, Any] | None = Field(default=None, validation_alias="metadata_")
    is_dismissed: bool = False
    is_expired: bool = False
    status: MessageStatus | None = None
    delivered_at: datetime | None = None
    read_at: datetime | None = None
    created_at: datetime
    sender: SenderSummary | None = None


class MessagePage(BaseModel):
    items: list[MessageResponse] = Field(default_factory=list)
    total: int = 0
    limit: int = 50
    offset: int = 0
    has_more: bool = False


class SendMessageRequest(BaseModel):
    bubble_type: BubbleType
    content: str = Field(..., max_length=4000)
    metadata: dict[str, Any] | None = None


class SendMessageResponse(BaseModel):
    """`message` is null when the text triggered the completion flow."""
    message: MessageResponse | None = None
    completion_flow_started: bool = False


class MessageIdsRequest(BaseModel):
    message_ids: list[uuid.UUID] = Field(..., min_length=1, max_length=100)


class SystemMessageRequest(BaseModel):
    bubble_type: Literal["system_instruction", "system_prompt", "system_notification"]
    message_key: str
    language: Language = "en"
    variables: dict[str, str] = Field(default_factory=dict)
    metadata: dict[str, Any] | None = None


class InitialInstructionsRequest(BaseModel):
    category_id: uuid.UUID
    language: Language = "en"
