"""
Worker-side job endpoints: job list, categorization votes and bids.
"""
import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from khidma.core.database import get_db
from khidma.modules.auth.dependencies import CurrentWorker
from khidma.modules.worker_jobs.schemas import (
    BidSubmissionResponse,
    BidValidationRequest,
    BidValidationResponse,
    CategorizationResult,
    SubmitBidRequest,
    SubmitCategorizationRequest,
    WorkerEligibleJob,
)
from khidma.modules.worker_jobs.service import WorkerJobService

router = APIRouter(prefix="/worker-jobs", tags=["Worker Jobs"])


def get_worker_job_service(db: AsyncSession = Depends(get_db)) -> WorkerJobService:
    return WorkerJobService(db)


@router.get("/eligible", response_model=list[WorkerEligibleJob])
async def get_eligible_jobs(
    current_user: CurrentWorker,
    service: WorkerJobService = Depends(get_worker_job_service),
):
    return await service.get_worker_eligible_jobs(current_user.id)


@router.post("/{job_id}/categorization", response_model=CategorizationResult)
async def submit_categorization(
    job_id: uuid.UUID,
    payload: SubmitCategorizationRequest,
    current_user: CurrentWorker,
    service: WorkerJobService = Depends(get_worker_job_service),
):
    return await service.submit_categorization(job_id, current_user.id, payload.subcategory_id)


@router.post("/bids/validate", response_model=BidValidationResponse)
async def validate_bid_amount(
    payload: BidValidationRequest,
    current_user: CurrentWorker,
    service: WorkerJobService = Depends(get_worker_job_service),
):
    return await service.validate_bid_amount(payload.subcategory_id, payload.amount)


@router.post(
    "/{job_id}/bids",
    response_model=BidSubmissionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_bid(
    job_id: uuid.UUID,
    payload: SubmitBidRequest,
    current_user: CurrentWorker,
    service: WorkerJobService = Depends(get_worker_job_service),
):
    return await service.submit_worker_bid(
        job_id,
        current_user.id,
        payload.amount,
        payload.equipment_cost,
    )
