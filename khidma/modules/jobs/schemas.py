"""
Jobs Module - Pydantic Schemas
"""
import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from khidma.modules.jobs.models import CancellationPhase, JobStatus


class CreateJobRequest(BaseModel):
    """Post the request collected in a customer service chat."""
    chat_id: uuid.UUID
    location_lat: float = Field(..., ge=-90, le=90)
    location_lng: float = Field(..., ge=-180, le=180)
    price_floor: float = Field(0, ge=0)
    portfolio_consent: bool = False
    language: Literal["en", "fr", "ar"] = "en"


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    customer_id: uuid.UUID
    category_id: uuid.UUID
    subcategory_id: uuid.UUID | None = None
    subcategory_ids: list[uuid.UUID] = Field(default_factory=list)
    voice_url: str | None = None
    voice_duration: float = 0
    photos: list[str] = Field(default_factory=list)
    location_lat: float
    location_lng: float
    portfolio_consent: bool
    price_floor: float
    status: JobStatus
    worker_id: uuid.UUID | None = None
    matched_at: datetime | None = None
    broadcasting_phase: int = 0
    categorizer_group_size: int | None = None
    cancelled_at: datetime | None = None
    cancelled_at_phase: CancellationPhase | None = None
    created_at: datetime


class CancelJobRequest(BaseModel):
    phase: CancellationPhase


class CancelJobResponse(BaseModel):
    success: bool
    cancelled_at: datetime


class AssignWorkerRequest(BaseModel):
    worker_id: uuid.UUID


class AssignWorkerResponse(BaseModel):
    success: bool
    job_id: uuid.UUID
    worker_id: uuid.UUID
    chat_id: uuid.UUID
    job_status: JobStatus


class CodeInputRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=10)


class CodeValidationResponse(BaseModel):
    success: bool
    is_valid: bool
    job_status: JobStatus


class CompletionFlowResponse(BaseModel):
    success: bool
    completion_code: str
    ratings_sent: bool
    code_generated: bool


class JobViewResponse(BaseModel):
    success: bool
    already_viewed: bool


class JobBubbleData(BaseModel):
    job_id: uuid.UUID
    status: JobStatus
    voice_url: str | None = None
    voice_duration: float = 0
    photo_count: int = 0
    photos: list[str] = Field(default_factory=list)
    view_count: int = 0
    created_at: datetime


class JobOnboardingStatus(BaseModel):
    code_generated: bool
    code_entered: bool
    current_status: JobStatus


class StatusTransitionResponse(BaseModel):
    success: bool
    new_status: JobStatus
