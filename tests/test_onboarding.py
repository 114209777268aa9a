"""
Worker onboarding steps.
"""
import uuid
from unittest.mock import MagicMock

import pytest

from khidma.core.exceptions import ForbiddenError, InvalidStateError, ValidationError
from khidma.modules.auth.models import OnboardingStatus, UserType
from khidma.modules.onboarding.models import DocumentType, UserDocument, UserSkill
from khidma.modules.onboarding.schemas import CategorySelection
from khidma.modules.onboarding.service import OnboardingService, has_valid_id_documents
from khidma.modules.uploads.models import FileType, FileUpload, UploadStatus, UploadType


@pytest.fixture
def worker(make_user):
    return make_user(UserType.WORKER, approved=False, onboarding_status=OnboardingStatus.NOT_STARTED.value)


@pytest.fixture
def completed_upload(db):
    upload = FileUpload(
        id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        status=UploadStatus.COMPLETED.value,
        file_name="doc.jpg",
        content_type="image/jpeg",
        file_type=FileType.PHOTO.value,
        upload_type=UploadType.ONBOARDING.value,
        storage_key="onboarding/doc.jpg",
        file_url="https://files.example/onboarding/doc.jpg",
    )
    db.store.put(upload)
    return upload


class TestIdDocuments:
    @pytest.mark.parametrize("types,expected", [
        ({"id_front", "id_back"}, True),
        ({"id_front"}, False),
        ({"passport"}, True),
        ({"residency_permit_front", "residency_permit_back"}, True),
        ({"residency_permit_front", "id_back"}, False),
        (set(), False),
    ])
    def test_valid_combinations(self, types, expected):
        assert has_valid_id_documents(types) is expected


class TestSteps:
    @pytest.mark.asyncio
    async def test_customers_cannot_onboard(self, db, make_user, completed_upload):
        with pytest.raises(ForbiddenError):
            await OnboardingService(db).upload_selfie(make_user(UserType.CUSTOMER), completed_upload.id)

    @pytest.mark.asyncio
    async def test_selfie_sets_profile_photo(self, db, worker, completed_upload):
        response = await OnboardingService(db).upload_selfie(worker, completed_upload.id)

        assert response.current_onboarding_step == 2
        assert worker.selfie_url == completed_upload.file_url
        assert worker.photo_url == completed_upload.file_url
        assert worker.onboarding_status == OnboardingStatus.SELFIE_COMPLETED.value

    @pytest.mark.asyncio
    async def test_pending_upload_rejected(self, db, worker, completed_upload):
        completed_upload.status = UploadStatus.PENDING.value

        with pytest.raises(InvalidStateError, match="Upload not completed yet"):
            await OnboardingService(db).upload_selfie(worker, completed_upload.id)

    @pytest.mark.asyncio
    async def test_second_id_side_completes_documents(self, db, make_result, worker, completed_upload):
        worker.onboarding_status = OnboardingStatus.SELFIE_COMPLETED.value
        front = UserDocument(user_id=worker.id, document_type=DocumentType.ID_FRONT.value)
        db.execute.return_value = make_result([front])

        response = await OnboardingService(db).upload_id_document(
            worker, DocumentType.ID_BACK, completed_upload.id
        )

        assert response.documents_complete is True
        assert worker.onboarding_status == OnboardingStatus.DOCUMENTS_COMPLETED.value
        assert worker.current_onboarding_step == 3

    @pytest.mark.asyncio
    async def test_certification_is_not_an_id(self, db, worker, completed_upload):
        with pytest.raises(ValidationError, match="Unsupported ID document type"):
            await OnboardingService(db).upload_id_document(
                worker, DocumentType.CERTIFICATION, completed_upload.id
            )

    @pytest.mark.asyncio
    async def test_category_selection_creates_skills(self, db, worker, make_category):
        plumbing = make_category()
        leak = make_category(plumbing.id, name_en="Leak repair")
        electricity = make_category(name_en="Electricity")
        db.store.put(plumbing, leak, electricity)

        result = await OnboardingService(db).select_worker_categories(worker, [
            CategorySelection(category_id=plumbing.id, subcategory_ids=[leak.id], experience_rating=4),
            CategorySelection(category_id=electricity.id),
        ])

        skills = [obj for obj in db.added if isinstance(obj, UserSkill)]
        assert {skill.category_id for skill in skills} == {leak.id, electricity.id}
        assert result["total_skills_inserted"] == 2
        assert result["total_subcategories_count"] == 1
        assert worker.current_onboarding_step == 4

    @pytest.mark.asyncio
    async def test_subcategory_must_match_category(self, db, worker, make_category):
        plumbing = make_category()
        foreign = make_category(uuid.uuid4())
        db.store.put(plumbing, foreign)

        with pytest.raises(ValidationError, match="does not belong"):
            await OnboardingService(db).select_worker_categories(worker, [
                CategorySelection(category_id=plumbing.id, subcategory_ids=[foreign.id]),
            ])

    @pytest.mark.asyncio
    async def test_too_many_categories(self, db, worker):
        selections = [CategorySelection(category_id=uuid.uuid4()) for _ in range(6)]

        with pytest.raises(ValidationError, match="more than 5 categories"):
            await OnboardingService(db).select_worker_categories(worker, selections)


class TestCompletion:
    @pytest.mark.asyncio
    async def test_steps_must_be_done(self, db, worker):
        with pytest.raises(InvalidStateError):
            await OnboardingService(db).complete_onboarding(worker)

    @pytest.mark.asyncio
    async def test_complete_enters_approval_queue(self, db, make_result, worker):
        worker.onboarding_status = OnboardingStatus.ADDITIONAL_FILES_COMPLETED.value
        worker.selfie_url = "https://files.example/selfie.jpg"
        worker.selfie_storage_key = "onboarding/selfie.jpg"
        db.execute.side_effect = [
            make_result([UserDocument(user_id=worker.id, document_type=DocumentType.PASSPORT.value)]),
            make_result([UserSkill(user_id=worker.id, category_id=uuid.uuid4())]),
        ]

        response = await OnboardingService(db).complete_onboarding(worker)

        assert response.current_onboarding_step == 6
        assert worker.approval_status == "pending"
        assert worker.onboarding_completed_at is not None

    @pytest.mark.asyncio
    async def test_reset_deletes_stored_files(self, db, make_result, worker):
        worker.selfie_storage_key = "onboarding/selfie.jpg"
        worker.photo_storage_key = "onboarding/selfie.jpg"
        storage = MagicMock()
        db.execute.side_effect = [
            make_result([UserSkill(user_id=worker.id, category_id=uuid.uuid4())]),
            make_result([UserDocument(user_id=worker.id, document_type="passport", storage_key="onboarding/p.jpg")]),
            make_result(),
            make_result(),
        ]

        response = await OnboardingService(db, storage=storage).reset_worker_onboarding(worker)

        assert response.files_deleted == 2
        assert response.skills_deleted == 1
        assert storage.delete_file.call_count == 2
        assert worker.selfie_url is None
        assert worker.current_onboarding_step == 1
