"""
Job lifecycle endpoints.
"""
import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from khidma.core.database import get_db
from khidma.core.exceptions import ForbiddenError, NotFoundError
from khidma.modules.auth.dependencies import CurrentCustomer, CurrentUser, CurrentWorker
from khidma.modules.chats.service import ChatService
from khidma.modules.jobs.models import Job, JobStatus
from khidma.modules.jobs.schemas import (
    AssignWorkerRequest,
    AssignWorkerResponse,
    CancelJobRequest,
    CancelJobResponse,
    CodeInputRequest,
    CodeValidationResponse,
    CreateJobRequest,
    JobBubbleData,
    JobOnboardingStatus,
    JobResponse,
    JobViewResponse,
)
from khidma.modules.jobs.service import JobService

router = APIRouter(prefix="/jobs", tags=["Jobs"])


def get_job_service(db: AsyncSession = Depends(get_db)) -> JobService:
    return JobService(db)


async def _owned_job(service: JobService, job_id: uuid.UUID, customer_id: uuid.UUID) -> Job:
    job = await service.get_job_by_id(job_id)
    if not job:
        raise NotFoundError("Job not found")
    if job.customer_id != customer_id:
        raise ForbiddenError("Only the job creator can manage this job")
    return job


@router.post("", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
async def create_job_from_chat(
    payload: CreateJobRequest,
    current_user: CurrentCustomer,
    service: JobService = Depends(get_job_service),
):
    chat = await ChatService(service.db).get_specific_chat(payload.chat_id, current_user.id)
    if not chat:
        raise NotFoundError("Chat not found")
    return await service.create_job_from_chat(
        payload.chat_id,
        payload.location_lat,
        payload.location_lng,
        price_floor=payload.price_floor,
        portfolio_consent=payload.portfolio_consent,
        language=payload.language,
    )


@router.get("/mine", response_model=list[JobResponse])
async def get_my_jobs(
    current_user: CurrentCustomer,
    job_status: JobStatus | None = Query(None, alias="status"),
    service: JobService = Depends(get_job_service),
):
    return await service.get_customer_jobs(current_user.id, job_status)


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: uuid.UUID,
    current_user: CurrentUser,
    service: JobService = Depends(get_job_service),
):
    job = await service.get_job_by_id(job_id)
    if not job:
        raise NotFoundError("Job not found")
    return job


@router.get("/{job_id}/bubble", response_model=JobBubbleData)
async def get_job_bubble_data(
    job_id: uuid.UUID,
    current_user: CurrentUser,
    service: JobService = Depends(get_job_service),
):
    data = await service.get_job_bubble_data(job_id)
    if data is None:
        raise NotFoundError("Job not found")
    return data


@router.get("/{job_id}/onboarding-status", response_model=JobOnboardingStatus)
async def get_onboarding_status(
    job_id: uuid.UUID,
    current_user: CurrentUser,
    service: JobService = Depends(get_job_service),
):
    data = await service.get_onboarding_status(job_id)
    if data is None:
        raise NotFoundError("Job not found")
    return data


@router.post("/{job_id}/views", response_model=JobViewResponse)
async def record_job_view(
    job_id: uuid.UUID,
    current_user: CurrentWorker,
    service: JobService = Depends(get_job_service),
):
    return await service.record_job_view(job_id, current_user.id)


@router.get("/{job_id}/views/count")
async def get_job_view_count(
    job_id: uuid.UUID,
    current_user: CurrentUser,
    service: JobService = Depends(get_job_service),
) -> dict:
    return {"job_id": job_id, "view_count": await service.get_job_view_count(job_id)}


@router.post("/{job_id}/assign", response_model=AssignWorkerResponse)
async def assign_worker_to_job(
    job_id: uuid.UUID,
    payload: AssignWorkerRequest,
    current_user: CurrentCustomer,
    service: JobService = Depends(get_job_service),
):
    await _owned_job(service, job_id, current_user.id)
    return await service.assign_worker_to_job(job_id, payload.worker_id)


@router.post("/{job_id}/cancel", response_model=CancelJobResponse)
async def cancel_job(
    job_id: uuid.UUID,
    payload: CancelJobRequest,
    current_user: CurrentCustomer,
    service: JobService = Depends(get_job_service),
):
    return await service.cancel_job(job_id, current_user.id, payload.phase)


@router.post("/{job_id}/onboarding-code/validate", response_model=CodeValidationResponse)
async def validate_onboarding_code(
    job_id: uuid.UUID,
    payload: CodeInputRequest,
    current_user: CurrentWorker,
    service: JobService = Depends(get_job_service),
):
    job = await service.get_job_by_id(job_id)
    if not job or job.worker_id != current_user.id:
        raise NotFoundError("Job not found")
    return await service.validate_onboarding_code(job_id, payload.code)


@router.post("/{job_id}/completion-code/validate", response_model=CodeValidationResponse)
async def validate_completion_code(
    job_id: uuid.UUID,
    payload: CodeInputRequest,
    current_user: CurrentWorker,
    service: JobService = Depends(get_job_service),
):
    job = await service.get_job_by_id(job_id)
    if not job or job.worker_id != current_user.id:
        raise NotFoundError("Job not found")
    return await service.validate_completion_code(job_id, payload.code)
