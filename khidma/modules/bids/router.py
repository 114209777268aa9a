"""
Customer-side bid endpoints.
"""
import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from khidma.core.database import get_db
from khidma.core.exceptions import ForbiddenError, NotFoundError
from khidma.modules.auth.dependencies import CurrentCustomer, CurrentUser
from khidma.modules.bids.schemas import AcceptBidResponse, BidResponse, RejectBidResponse
from khidma.modules.bids.service import BidService

router = APIRouter(prefix="/bids", tags=["Bids"])


def get_bid_service(db: AsyncSession = Depends(get_db)) -> BidService:
    return BidService(db)


@router.get("/job/{job_id}", response_model=list[BidResponse])
async def get_job_bids(
    job_id: uuid.UUID,
    current_user: CurrentUser,
    service: BidService = Depends(get_bid_service),
):
    """Bids on a job. Customers see every bid on their jobs, workers only their own."""
    job = await service.jobs.get_job_by_id(job_id)
    if not job:
        raise NotFoundError("Job not found")

    bids = await service.get_job_bids(job_id)
    if job.customer_id == current_user.id:
        return bids
    if current_user.is_worker:
        return [bid for bid in bids if bid.worker_id == current_user.id]
    raise ForbiddenError("Not allowed to view bids for this job")


@router.post("/{bid_id}/accept", response_model=AcceptBidResponse)
async def accept_bid(
    bid_id: uuid.UUID,
    current_user: CurrentCustomer,
    service: BidService = Depends(get_bid_service),
):
    return await service.accept_bid(bid_id, current_user.id)


@router.post("/{bid_id}/reject", response_model=RejectBidResponse)
async def reject_bid(
    bid_id: uuid.UUID,
    current_user: CurrentCustomer,
    service: BidService = Depends(get_bid_service),
):
    return await service.reject_bid(bid_id, current_user.id)
