"""
Onboarding Module - Business Logic Service

Steps: selfie -> ID documents -> categories -> additional files -> completed.
Completing onboarding puts the worker in the approval queue.
"""
import uuid

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from khidma.core.config import settings
from khidma.core.exceptions import ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from khidma.core.logging import get_logger
from khidma.core.models import utc_now
from khidma.core.storage import StorageService
from khidma.modules.auth.models import ApprovalStatus, OnboardingStatus, User, UserType
from khidma.modules.categories.models import Category
from khidma.modules.categories.service import to_category_response
from khidma.modules.onboarding.models import (
    ID_DOCUMENT_TYPES,
    DocumentType,
    UserDocument,
    UserSkill,
    VerificationStatus,
    WorkerConfig,
)
from khidma.modules.onboarding.schemas import (
    CategorySelection,
    CategoryWithSubcategories,
    DocumentSummary,
    OnboardingProgressResponse,
    OnboardingStepResponse,
    ResetOnboardingResponse,
    SkillSummary,
    WorkerConfigResponse,
)
from khidma.modules.uploads.models import FileUpload, UploadStatus
from khidma.modules.uploads.service import UploadService

logger = get_logger(__name__)


def has_valid_id_documents(document_types: set[str]) -> bool:
    """ID card (both sides), passport, or residency permit (both sides)."""
    return (
        {DocumentType.ID_FRONT.value, DocumentType.ID_BACK.value} <= document_types
        or DocumentType.PASSPORT.value in document_types
        or {
            DocumentType.RESIDENCY_PERMIT_FRONT.value,
            DocumentType.RESIDENCY_PERMIT_BACK.value,
        } <= document_types
    )


def _require_worker(user: User, action: str) -> None:
    if user.user_type != UserType.WORKER.value:
        raise ForbiddenError(f"Only workers can {action}")


class OnboardingService:
    def __init__(self, db: AsyncSession, storage: StorageService | None = None):
        self.db = db
        self.storage = storage

    async def _get_completed_upload(self, upload_id: uuid.UUID) -> FileUpload:
        upload = await self.db.get(FileUpload, upload_id)
        if not upload:
            raise NotFoundError("Upload record not found")
        if upload.status != UploadStatus.COMPLETED.value:
            raise InvalidStateError("Upload not completed yet")
        if not upload.file_url:
            raise InvalidStateError("Upload missing file URL")
        return upload

    async def _get_documents(self, user_id: uuid.UUID) -> list[UserDocument]:
        result = await self.db.execute(select(UserDocument).where(UserDocument.user_id == user_id))
        return list(result.scalars().all())

    async def _get_skills(self, user_id: uuid.UUID) -> list[UserSkill]:
        result = await self.db.execute(select(UserSkill).where(UserSkill.user_id == user_id))
        return list(result.scalars().all())

    # ============== Steps ==============

    async def upload_selfie(self, user: User, upload_id: uuid.UUID) -> OnboardingStepResponse:
        _require_worker(user, "upload selfies")
        upload = await self._get_completed_upload(upload_id)
        if not upload.storage_key:
            raise InvalidStateError("Upload missing storage data")

        # The selfie doubles as the profile photo
        user.selfie_url = upload.file_url
        user.selfie_storage_key = upload.storage_key
        user.photo_url = upload.file_url
        user.photo_storage_key = upload.storage_key
        user.onboarding_status = OnboardingStatus.SELFIE_COMPLETED.value
        user.current_onboarding_step = 2
        await self.db.commit()

        logger.info("Selfie uploaded", user_id=str(user.id))
        return OnboardingStepResponse(
            onboarding_status=OnboardingStatus.SELFIE_COMPLETED,
            current_onboarding_step=2,
            selfie_url=upload.file_url,
        )

    async def upload_id_document(
        self,
        user: User,
        document_type: DocumentType,
        upload_id: uuid.UUID,
        file_name: str | None = None,
    ) -> OnboardingStepResponse:
        _require_worker(user, "upload ID documents")
        document_type = DocumentType(document_type)
        if document_type.value not in ID_DOCUMENT_TYPES:
            raise ValidationError("Unsupported ID document type")
        upload = await self._get_completed_upload(upload_id)

        documents = await self._get_documents(user.id)
        existing = next((d for d in documents if d.document_type == document_type.value), None)
        if existing:
            existing.file_url = upload.file_url
            existing.storage_key = upload.storage_key
            existing.file_name = file_name
            existing.verification_status = VerificationStatus.PENDING.value
        else:
            self.db.add(UserDocument(
                user_id=user.id,
                document_type=document_type.value,
                file_url=upload.file_url,
                storage_key=upload.storage_key,
                file_name=file_name,
                verification_status=VerificationStatus.PENDING.value,
            ))

        uploaded_types = {d.document_type for d in documents} | {document_type.value}
        documents_complete = has_valid_id_documents(uploaded_types)

        if documents_complete and user.onboarding_status == OnboardingStatus.SELFIE_COMPLETED.value:
            user.onboarding_status = OnboardingStatus.DOCUMENTS_COMPLETED.value
            user.current_onboarding_step = 3

        await self.db.commit()
        return OnboardingStepResponse(
            onboarding_status=user.onboarding_status,
            current_onboarding_step=user.current_onboarding_step,
            documents_complete=documents_complete,
        )

    async def select_worker_categories(
        self,
        user: User,
        selections: list[CategorySelection],
    ) -> dict:
        _require_worker(user, "select categories")

        config = await self.get_worker_config()
        if len(selections) > config.max_categories:
            raise ValidationError(f"Cannot select more than {config.max_categories} categories")

        for selection in selections:
            category = await self.db.get(Category, selection.category_id)
            if not category:
                raise NotFoundError(f"Category {selection.category_id} not found")
            for subcategory_id in selection.subcategory_ids:
                subcategory = await self.db.get(Category, subcategory_id)
                if not subcategory:
                    raise NotFoundError(f"Subcategory {subcategory_id} not found")
                if subcategory.parent_id != selection.category_id:
                    raise ValidationError(
                        f"Subcategory {subcategory_id} does not belong to category {selection.category_id}"
                    )

        await self.db.execute(delete(UserSkill).where(UserSkill.user_id == user.id))

        skills_inserted = 0
        for selection in selections:
            skill_ids = selection.subcategory_ids or [selection.category_id]
            for category_id in skill_ids:
                self.db.add(UserSkill(
                    user_id=user.id,
                    category_id=category_id,
                    experience_rating=selection.experience_rating,
                ))
                skills_inserted += 1

        user.onboarding_status = OnboardingStatus.CATEGORIES_COMPLETED.value
        user.current_onboarding_step = 4
        await self.db.commit()

        logger.info("Worker categories selected", user_id=str(user.id), skills=skills_inserted)
        return {
            "success": True,
            "selected_categories_count": len(selections),
            "total_subcategories_count": sum(len(s.subcategory_ids) for s in selections),
            "total_skills_inserted": skills_inserted,
            "onboarding_status": OnboardingStatus.CATEGORIES_COMPLETED.value,
        }

    async def upload_additional_file(
        self,
        user: User,
        file_type: DocumentType,
        upload_id: uuid.UUID,
        file_name: str | None = None,
        description: str | None = None,
    ) -> UserDocument:
        _require_worker(user, "upload additional files")
        upload = await self._get_completed_upload(upload_id)

        document = UserDocument(
            user_id=user.id,
            document_type=DocumentType(file_type).value,
            file_url=upload.file_url,
            storage_key=upload.storage_key,
            file_name=file_name,
            description=description,
            verification_status=VerificationStatus.PENDING.value,
        )
        self.db.add(document)
        await self.db.commit()
        await self.db.refresh(document)
        return document

    async def complete_additional_files(self, user: User) -> OnboardingStepResponse:
        """Mark the optional step done, with or without files."""
        _require_worker(user, "complete additional files")
        user.onboarding_status = OnboardingStatus.ADDITIONAL_FILES_COMPLETED.value
        user.current_onboarding_step = 5
        await self.db.commit()
        return OnboardingStepResponse(
            onboarding_status=OnboardingStatus.ADDITIONAL_FILES_COMPLETED,
            current_onboarding_step=5,
        )

    async def complete_onboarding(self, user: User) -> OnboardingStepResponse:
        _require_worker(user, "complete onboarding")

        if user.onboarding_status != OnboardingStatus.ADDITIONAL_FILES_COMPLETED.value:
            raise InvalidStateError("All onboarding steps must be completed first")
        if not (user.selfie_url and user.selfie_storage_key):
            raise ValidationError("Selfie is required to complete onboarding")

        documents = await self._get_documents(user.id)
        if not has_valid_id_documents({d.document_type for d in documents}):
            raise ValidationError("Valid ID documents are required to complete onboarding")

        if not await self._get_skills(user.id):
            raise ValidationError("At least one category must be selected to complete onboarding")

        user.onboarding_status = OnboardingStatus.COMPLETED.value
        user.onboarding_completed_at = utc_now()
        user.approval_status = ApprovalStatus.PENDING.value
        user.current_onboarding_step = 6
        await self.db.commit()

        logger.info("Worker onboarding completed", user_id=str(user.id))
        return OnboardingStepResponse(
            onboarding_status=OnboardingStatus.COMPLETED,
            current_onboarding_step=6,
        )

    async def reset_worker_onboarding(self, user: User) -> ResetOnboardingResponse:
        """Start over after a rejection: drop skills, documents and stored files."""
        _require_worker(user, "reset onboarding")

        skills = await self._get_skills(user.id)
        documents = await self._get_documents(user.id)

        storage_keys = [d.storage_key for d in documents if d.storage_key]
        if user.selfie_storage_key:
            storage_keys.append(user.selfie_storage_key)
        if user.photo_storage_key and user.photo_storage_key != user.selfie_storage_key:
            storage_keys.append(user.photo_storage_key)

        for key in storage_keys:
            UploadService.delete_stored_file(key, storage=self.storage)

        await self.db.execute(delete(UserSkill).where(UserSkill.user_id == user.id))
        await self.db.execute(delete(UserDocument).where(UserDocument.user_id == user.id))

        user.onboarding_status = OnboardingStatus.NOT_STARTED.value
        user.current_onboarding_step = 1
        user.onboarding_completed_at = None
        user.approval_status = ApprovalStatus.PENDING.value
        user.rejection_reason = None
        user.selfie_url = None
        user.selfie_storage_key = None
        user.photo_url = None
        user.photo_storage_key = None
        await self.db.commit()

        logger.info(
            "Worker onboarding reset",
            user_id=str(user.id),
            skills=len(skills),
            documents=len(documents),
        )
        return ResetOnboardingResponse(
            onboarding_status=OnboardingStatus.NOT_STARTED,
            current_onboarding_step=1,
            skills_deleted=len(skills),
            documents_deleted=len(documents),
            files_deleted=len(storage_keys),
        )

    # ============== Progress & config ==============

    async def get_onboarding_progress(self, user: User) -> OnboardingProgressResponse | None:
        if user.user_type != UserType.WORKER.value:
            return None

        documents = await self._get_documents(user.id)
        skills = await self._get_skills(user.id)

        names: dict[uuid.UUID, str] = {}
        category_ids = list({skill.category_id for skill in skills})
        if category_ids:
            result = await self.db.execute(select(Category).where(Category.id.in_(category_ids)))
            names = {category.id: category.name_en for category in result.scalars().all()}

        return OnboardingProgressResponse(
            onboarding_status=user.onboarding_status or OnboardingStatus.NOT_STARTED,
            current_onboarding_step=user.current_onboarding_step or 1,
            onboarding_completed_at=user.onboarding_completed_at,
            approval_status=user.approval_status,
            selfie_url=user.selfie_url,
            profile_photo_url=user.photo_url,
            documents=[
                DocumentSummary(
                    id=d.id,
                    document_type=d.document_type,
                    verification_status=d.verification_status,
                    created_at=d.created_at,
                )
                for d in documents
            ],
            selected_skills=[
                SkillSummary(
                    category_id=skill.category_id,
                    experience_rating=skill.experience_rating,
                    category_name=names.get(skill.category_id, "Unknown Category"),
                )
                for skill in skills
            ],
            skills_count=len(skills),
        )

    async def get_worker_config(self) -> WorkerConfigResponse:
        stmt = select(WorkerConfig).order_by(WorkerConfig.updated_at.desc()).limit(1)
        result = await self.db.execute(stmt)
        config = result.scalar_one_or_none()
        if not config:
            return WorkerConfigResponse(max_categories=settings.max_worker_categories)
        return WorkerConfigResponse(
            max_categories=config.max_categories,
            updated_at=config.updated_at,
        )

    async def update_worker_config(self, max_categories: int) -> WorkerConfigResponse:
        config = WorkerConfig(max_categories=max_categories)
        self.db.add(config)
        await self.db.commit()
        await self.db.refresh(config)
        return WorkerConfigResponse(max_categories=config.max_categories, updated_at=config.updated_at)

    async def get_categories_with_subcategories(
        self,
        language: str = "en",
    ) -> list[CategoryWithSubcategories]:
        result = await self.db.execute(select(Category).order_by(Category.level))
        categories = list(result.scalars().all())

        children: dict[uuid.UUID, list[Category]] = {}
        for category in categories:
            if category.parent_id is not None:
                children.setdefault(category.parent_id, []).append(category)

        return [
            CategoryWithSubcategories(
                **to_category_response(category, language).model_dump(),
                subcategories=[
                    to_category_response(sub, language) for sub in children.get(category.id, [])
                ],
            )
            for category in categories
            if category.level == 0
        ]

    async def update_current_step(self, user: User, step: int) -> None:
        user.current_onboarding_step = step
        await self.db.commit()

    async def update_onboarding_status(
        self,
        user: User,
        status: OnboardingStatus,
    ) -> OnboardingStepResponse:
        _require_worker(user, "update onboarding status")
        status = OnboardingStatus(status)

        user.onboarding_status = status.value
        if status == OnboardingStatus.COMPLETED:
            user.onboarding_completed_at = utc_now()
            user.approval_status = ApprovalStatus.PENDING.value
        await self.db.commit()

        return OnboardingStepResponse(onboarding_status=status)
