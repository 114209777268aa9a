"""
Worker onboarding endpoints. All routes act on the authenticated user.
"""
from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from khidma.core.database import get_db
from khidma.core.storage import get_storage_service
from khidma.modules.auth.dependencies import CurrentUser
from khidma.modules.onboarding.schemas import (
    AdditionalFileRequest,
    CategoryWithSubcategories,
    IdDocumentRequest,
    OnboardingProgressResponse,
    OnboardingStepResponse,
    ResetOnboardingResponse,
    SelectCategoriesRequest,
    SelfieRequest,
    StatusUpdateRequest,
    StepUpdateRequest,
    WorkerConfigResponse,
    WorkerConfigUpdate,
)
from khidma.modules.onboarding.service import OnboardingService

router = APIRouter(prefix="/onboarding", tags=["Onboarding"])


def get_onboarding_service(db: AsyncSession = Depends(get_db)) -> OnboardingService:
    return OnboardingService(db, storage=get_storage_service())


@router.get("/progress", response_model=OnboardingProgressResponse | None)
async def get_progress(
    current_user: CurrentUser,
    service: OnboardingService = Depends(get_onboarding_service),
):
    return await service.get_onboarding_progress(current_user)


@router.post("/selfie", response_model=OnboardingStepResponse)
async def upload_selfie(
    payload: SelfieRequest,
    current_user: CurrentUser,
    service: OnboardingService = Depends(get_onboarding_service),
):
    return await service.upload_selfie(current_user, payload.upload_id)


@router.post("/documents", response_model=OnboardingStepResponse)
async def upload_id_document(
    payload: IdDocumentRequest,
    current_user: CurrentUser,
    service: OnboardingService = Depends(get_onboarding_service),
):
    return await service.upload_id_document(
        current_user, payload.document_type, payload.upload_id, payload.file_name
    )


@router.post("/categories")
async def select_categories(
    payload: SelectCategoriesRequest,
    current_user: CurrentUser,
    service: OnboardingService = Depends(get_onboarding_service),
) -> dict:
    return await service.select_worker_categories(current_user, payload.selections)


@router.post("/additional-files")
async def upload_additional_file(
    payload: AdditionalFileRequest,
    current_user: CurrentUser,
    service: OnboardingService = Depends(get_onboarding_service),
) -> dict:
    document = await service.upload_additional_file(
        current_user,
        payload.file_type,
        payload.upload_id,
        payload.file_name,
        payload.description,
    )
    return {
        "success": True,
        "document_id": document.id,
        "file_type": document.document_type,
        "file_name": document.file_name,
    }


@router.post("/additional-files/complete", response_model=OnboardingStepResponse)
async def complete_additional_files(
    current_user: CurrentUser,
    service: OnboardingService = Depends(get_onboarding_service),
):
    return await service.complete_additional_files(current_user)


@router.post("/complete", response_model=OnboardingStepResponse)
async def complete_onboarding(
    current_user: CurrentUser,
    service: OnboardingService = Depends(get_onboarding_service),
):
    return await service.complete_onboarding(current_user)


@router.post("/reset", response_model=ResetOnboardingResponse)
async def reset_onboarding(
    current_user: CurrentUser,
    service: OnboardingService = Depends(get_onboarding_service),
):
    return await service.reset_worker_onboarding(current_user)


@router.put("/step")
async def update_step(
    payload: StepUpdateRequest,
    current_user: CurrentUser,
    service: OnboardingService = Depends(get_onboarding_service),
) -> dict:
    await service.update_current_step(current_user, payload.step)
    return {"success": True, "current_onboarding_step": payload.step}


@router.put("/status", response_model=OnboardingStepResponse)
async def update_status(
    payload: StatusUpdateRequest,
    current_user: CurrentUser,
    service: OnboardingService = Depends(get_onboarding_service),
):
    return await service.update_onboarding_status(current_user, payload.status)


@router.get("/config", response_model=WorkerConfigResponse)
async def get_worker_config(service: OnboardingService = Depends(get_onboarding_service)):
    return await service.get_worker_config()


# TODO: restrict to admin accounts once an admin role exists
@router.put("/config", response_model=WorkerConfigResponse)
async def update_worker_config(
    payload: WorkerConfigUpdate,
    current_user: CurrentUser,
    service: OnboardingService = Depends(get_onboarding_service),
):
    return await service.update_worker_config(payload.max_categories)


@router.get("/categories", response_model=list[CategoryWithSubcategories])
async def get_categories_with_subcategories(
    lang: Literal["en", "fr", "ar"] = Query("en"),
    service: OnboardingService = Depends(get_onboarding_service),
):
    return await service.get_categories_with_subcategories(lang)
