"""
Bids Module - Pydantic Schemas
"""
import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from khidma.modules.bids.models import BidStatus


class BidResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    job_id: uuid.UUID
    worker_id: uuid.UUID
    amount: float
    equipment_cost: float
    service_fee: float
    base_amount: float
    status: BidStatus
    expires_at: datetime
    priority_window_end: datetime
    accepted_at: datetime | None = None
    rejected_at: datetime | None = None
    created_at: datetime


class AcceptBidResponse(BaseModel):
    success: bool
    bid_id: uuid.UUID
    worker_id: uuid.UUID
    job_id: uuid.UUID
    conversation_chat_id: uuid.UUID
    customer_chat_id: uuid.UUID | None = None


class RejectBidResponse(BaseModel):
    success: bool
    bid_id: uuid.UUID
    status: BidStatus
