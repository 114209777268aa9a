"""
Worker Jobs Module - Pydantic Schemas
"""
import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class JobLocation(BaseModel):
    lat: float
    lng: float


class WorkerEligibleJob(BaseModel):
    """A job waiting on this worker, as shown in their job list."""
    job_id: uuid.UUID
    category_id: uuid.UUID
    category_name: str
    category_name_fr: str | None = None
    category_name_ar: str | None = None
    voice_url: str | None = None
    voice_duration: float = 0
    photos: list[str] = Field(default_factory=list)
    location: JobLocation
    price_floor: float = 0
    portfolio_consent: bool = False
    broadcasting_phase: int
    customer_name: str
    created_at: datetime
    has_subcategory: bool
    subcategory_id: uuid.UUID | None = None


class SubmitCategorizationRequest(BaseModel):
    subcategory_id: uuid.UUID


class CategorizationResult(BaseModel):
    result: Literal["majority", "tie", "waiting"]
    vote_distribution: dict[str, int]
    subcategory_id: uuid.UUID | None = None
    tied_subcategories: list[uuid.UUID] = Field(default_factory=list)
    current_votes: int | None = None
    total_needed: int | None = None
    majority_threshold: int | None = None


class BidValidationRequest(BaseModel):
    subcategory_id: uuid.UUID
    amount: float


class BidValidationResponse(BaseModel):
    is_valid: bool
    minimum_amount: float
    baseline_price: float
    reason: str | None = None


class SubmitBidRequest(BaseModel):
    amount: float = Field(..., gt=0, description="Worker's price before equipment and fee")
    equipment_cost: float = Field(0, ge=0)


class BidSubmissionResponse(BaseModel):
    success: bool
    bid_id: uuid.UUID
    base_amount: float
    equipment_cost: float
    service_fee: float
    total_amount: float
    expires_at: datetime
    priority_window_end: datetime
