"""
Onboarding Module - Pydantic Schemas
"""
import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from khidma.modules.auth.models import OnboardingStatus
from khidma.modules.categories.schemas import CategoryResponse
from khidma.modules.onboarding.models import DocumentType


class SelfieRequest(BaseModel):
    upload_id: uuid.UUID


class IdDocumentRequest(BaseModel):
    document_type: Literal[
        "id_front",
        "id_back",
        "passport",
        "residency_permit_front",
        "residency_permit_back",
    ]
    upload_id: uuid.UUID
    file_name: str | None = Field(None, max_length=255)


class AdditionalFileRequest(BaseModel):
    file_type: Literal["certification", "license", "additional_file"]
    upload_id: uuid.UUID
    file_name: str | None = Field(None, max_length=255)
    description: str | None = Field(None, max_length=1000)


class CategorySelection(BaseModel):
    category_id: uuid.UUID
    subcategory_ids: list[uuid.UUID] = Field(default_factory=list)
    experience_rating: int | None = Field(None, ge=1, le=5)


class SelectCategoriesRequest(BaseModel):
    selections: list[CategorySelection] = Field(..., min_length=1)


class StepUpdateRequest(BaseModel):
    step: int = Field(..., ge=1, le=6)


class StatusUpdateRequest(BaseModel):
    status: OnboardingStatus


class WorkerConfigUpdate(BaseModel):
    max_categories: int = Field(..., ge=1, le=50)


class WorkerConfigResponse(BaseModel):
    max_categories: int
    updated_at: datetime | None = None


class OnboardingStepResponse(BaseModel):
    success: bool = True
    onboarding_status: OnboardingStatus
    current_onboarding_step: int | None = None
    documents_complete: bool | None = None
    selfie_url: str | None = None


class DocumentSummary(BaseModel):
    id: uuid.UUID
    document_type: DocumentType
    verification_status: str
    created_at: datetime


class SkillSummary(BaseModel):
    category_id: uuid.UUID
    experience_rating: int | None = None
    category_name: str


class OnboardingProgressResponse(BaseModel):
    onboarding_status: OnboardingStatus
    current_onboarding_step: int
    onboarding_completed_at: datetime | None = None
    approval_status: str
    selfie_url: str | None = None
    profile_photo_url: str | None = None
    documents: list[DocumentSummary]
    selected_skills: list[SkillSummary]
    skills_count: int


class ResetOnboardingResponse(BaseModel):
    success: bool = True
    onboarding_status: OnboardingStatus
    current_onboarding_step: int
    skills_deleted: int
    documents_deleted: int
    files_deleted: int


class CategoryWithSubcategories(CategoryResponse):
    subcategories: list[CategoryResponse]
