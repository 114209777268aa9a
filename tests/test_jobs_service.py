"""
JobService tests: posting, cancellation and the start/completion codes.
"""
import uuid
from unittest.mock import AsyncMock, patch

import pytest

from khidma.core.exceptions import ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from khidma.modules.auth.models import UserType
from khidma.modules.chats.models import BubbleType
from khidma.modules.jobs.models import BroadcastPhase, CancellationPhase, Job, JobCancellation, JobStatus
from khidma.modules.jobs.service import JobService, extract_job_request


@pytest.fixture
def service(db):
    service = JobService(db)
    service.messages.add_message = AsyncMock()
    return service


@pytest.fixture
def customer(make_user):
    return make_user(UserType.CUSTOMER)


@pytest.fixture
def worker(make_user):
    return make_user(UserType.WORKER)


@pytest.fixture
def chat_history(make_message):
    chat_id = uuid.uuid4()
    return chat_id, [
        make_message(chat_id, BubbleType.SYSTEM_INSTRUCTION.value, "Describe your problem",
                     metadata={"isSystemGenerated": True}),
        make_message(chat_id, BubbleType.VOICE.value, "https://files.example/first.m4a",
                     metadata={"duration": 8.5}),
        make_message(chat_id, BubbleType.VOICE.value, "https://files.example/second.m4a",
                     metadata={"duration": 3}),
        make_message(chat_id, BubbleType.PHOTO.value, "https://files.example/leak.jpg"),
        make_message(chat_id, BubbleType.PHOTO.value, "https://files.example/pipe.jpg"),
        make_message(chat_id, BubbleType.DATE.value, "2026-10-20"),
    ]


class TestExtractJobRequest:
    def test_first_voice_and_all_photos(self, chat_history):
        _, messages = chat_history

        assert extract_job_request(messages) == {
            "voice_url": "https://files.example/first.m4a",
            "voice_duration": 8.5,
            "photos": ["https://files.example/leak.jpg", "https://files.example/pipe.jpg"],
            "has_date": True,
        }

    def test_system_bubbles_are_ignored(self, make_message):
        chat_id = uuid.uuid4()
        messages = [
            make_message(chat_id, BubbleType.VOICE.value, "https://files.example/prompt.m4a",
                         metadata={"isSystemGenerated": True}),
        ]

        request = extract_job_request(messages)

        assert request["voice_url"] is None
        assert request["has_date"] is False


class TestCreateJobFromChat:
    @pytest.mark.asyncio
    async def test_unknown_chat(self, service):
        with pytest.raises(NotFoundError, match="Chat not found"):
            await service.create_job_from_chat(uuid.uuid4(), 18.0, -15.9)

    @pytest.mark.asyncio
    async def test_notification_chat_rejected(self, service, db, make_chat):
        chat = make_chat(uuid.uuid4(), worker_id=uuid.uuid4())
        db.store.put(chat)

        with pytest.raises(ValidationError, match="worker notification chat"):
            await service.create_job_from_chat(chat.id, 18.0, -15.9)

    @pytest.mark.asyncio
    async def test_job_already_posted(self, service, db, make_chat, customer):
        chat = make_chat(uuid.uuid4(), customer_id=customer.id, job_id=uuid.uuid4())
        db.store.put(chat)

        with pytest.raises(InvalidStateError, match="Job already created for this chat"):
            await service.create_job_from_chat(chat.id, 18.0, -15.9)

    @pytest.mark.asyncio
    async def test_voice_required(self, service, db, make_result, make_chat, make_category, customer, make_message):
        category = make_category()
        chat = make_chat(category.id, customer_id=customer.id)
        db.store.put(chat, category)
        db.execute.return_value = make_result([make_message(chat.id, BubbleType.DATE.value, "2026-10-20")])

        with pytest.raises(ValidationError, match="Voice recording is required"):
            await service.create_job_from_chat(chat.id, 18.0, -15.9)

    @pytest.mark.asyncio
    async def test_date_required(self, service, db, make_result, make_chat, make_category, customer, make_message):
        category = make_category()
        chat = make_chat(category.id, customer_id=customer.id)
        db.store.put(chat, category)
        db.execute.return_value = make_result([
            make_message(chat.id, BubbleType.VOICE.value, "https://files.example/voice.m4a"),
        ])

        with pytest.raises(ValidationError, match="Date selection is required"):
            await service.create_job_from_chat(chat.id, 18.0, -15.9)

    @pytest.mark.asyncio
    async def test_posts_job(self, service, db, make_result, make_category, make_chat, customer, chat_history):
        category = make_category()
        chat_id, messages = chat_history
        chat = make_chat(category.id, id=chat_id, customer_id=customer.id)
        db.store.put(chat, category)
        db.execute.return_value = make_result(messages)

        with patch("khidma.modules.jobs.service.assign_categorizer_workers") as assign:
            job = await service.create_job_from_chat(chat.id, 18.09, -15.98, price_floor=500, language="fr")

        assert isinstance(job, Job)
        assert job.status == JobStatus.POSTED.value
        assert job.broadcasting_phase == BroadcastPhase.NEW
        assert job.voice_url == "https://files.example/first.m4a"
        assert len(job.photos) == 2
        assert len(job.work_code) == 6
        assert chat.job_id == job.id
        assign.delay.assert_called_once_with(str(job.id))

        bubble_types = [c.args[2] for c in service.messages.add_message.await_args_list]
        assert bubble_types == [BubbleType.JOB, BubbleType.SYSTEM_INSTRUCTION]
        loading = service.messages.add_message.await_args_list[1]
        assert loading.args[3] == "Recherche de travailleurs dans votre région..."
        db.commit.assert_awaited_once()


class TestCancelJob:
    @pytest.mark.asyncio
    async def test_only_creator_can_cancel(self, service, db, make_job, customer):
        job = make_job(customer.id, uuid.uuid4())
        db.store.put(job)

        with pytest.raises(ForbiddenError):
            await service.cancel_job(job.id, uuid.uuid4(), CancellationPhase.BIDDING)

    @pytest.mark.asyncio
    async def test_completed_job(self, service, db, make_job, customer):
        job = make_job(customer.id, uuid.uuid4(), status=JobStatus.COMPLETED.value)
        db.store.put(job)

        with pytest.raises(InvalidStateError, match="Cannot cancel a completed job"):
            await service.cancel_job(job.id, customer.id, CancellationPhase.BIDDING)

    @pytest.mark.asyncio
    async def test_cancel_records_phase(self, service, db, make_job, customer):
        job = make_job(customer.id, uuid.uuid4(), status=JobStatus.MATCHED.value)
        db.store.put(job, customer)
        service.chats.get_chats_for_job = AsyncMock(return_value=[])
        service.messages.expire_all_job_messages = AsyncMock(return_value=5)
        service.messages.expire_worker_job_bubbles_for_job = AsyncMock(return_value=3)

        result = await service.cancel_job(job.id, customer.id, CancellationPhase.MATCHED)

        assert result["success"] is True
        assert job.status == JobStatus.CANCELLED.value
        assert job.cancelled_at_phase == "matched"
        assert job.cancelled_at == result["cancelled_at"]
        cancellation = db.added[0]
        assert isinstance(cancellation, JobCancellation)
        assert cancellation.cancelled_by == customer.id
        assert customer.cancellation_count == 1
        service.messages.expire_all_job_messages.assert_awaited_once_with(job.id)
        service.messages.expire_worker_job_bubbles_for_job.assert_awaited_once_with(job.id)

    @pytest.mark.asyncio
    async def test_already_cancelled(self, service, db, make_job, customer):
        job = make_job(customer.id, uuid.uuid4(), status=JobStatus.CANCELLED.value)
        db.store.put(job)

        with pytest.raises(InvalidStateError, match="Job is already cancelled"):
            await service.cancel_job(job.id, customer.id, CancellationPhase.BIDDING)


class TestStartCode:
    @pytest.mark.asyncio
    async def test_existing_code_is_reused(self, service, db, make_job, customer):
        job = make_job(customer.id, uuid.uuid4(), onboarding_code="4821")
        db.store.put(job)

        assert await service.generate_onboarding_code(job.id) == "4821"

    @pytest.mark.asyncio
    async def test_new_code_has_four_digits(self, service, db, make_job, customer):
        job = make_job(customer.id, uuid.uuid4())
        db.store.put(job)

        code = await service.generate_onboarding_code(job.id)

        assert len(code) == 4
        assert code.isdigit()
        assert job.onboarding_code == code

    @pytest.mark.asyncio
    async def test_code_not_generated(self, service, db, make_job, customer):
        job = make_job(customer.id, uuid.uuid4(), status=JobStatus.MATCHED.value)
        db.store.put(job)

        with pytest.raises(InvalidStateError):
            await service.validate_onboarding_code(job.id, "1234")

    @pytest.mark.asyncio
    async def test_wrong_code(self, service, db, make_job, customer):
        job = make_job(customer.id, uuid.uuid4(), status=JobStatus.MATCHED.value, onboarding_code="4821")
        db.store.put(job)

        result = await service.validate_onboarding_code(job.id, "1111")

        assert result == {"success": True, "is_valid": False, "job_status": "matched"}
        assert job.status == JobStatus.MATCHED.value

    @pytest.mark.asyncio
    async def test_correct_code_starts_job(self, service, db, make_job, make_chat, customer):
        job = make_job(customer.id, uuid.uuid4(), status=JobStatus.MATCHED.value, onboarding_code="4821")
        db.store.put(job)
        service.chats.find_customer_service_chat = AsyncMock(
            return_value=make_chat(job.category_id, customer_id=customer.id)
        )
        service.messages.expire_onboarding_reminders = AsyncMock(return_value=0)

        result = await service.validate_onboarding_code(job.id, " 4821 ")

        assert result["is_valid"] is True
        assert job.status == JobStatus.IN_PROGRESS.value
        service.messages.expire_onboarding_reminders.assert_awaited_once_with(job.id)
        assert service.messages.add_message.await_args.kwargs["metadata"]["messageKey"] == "job_started_notification"

    @pytest.mark.asyncio
    async def test_start_requires_matched_job(self, service, db, make_job, customer):
        job = make_job(customer.id, uuid.uuid4())
        db.store.put(job)

        with pytest.raises(InvalidStateError, match="Cannot transition to in_progress from posted"):
            await service.update_job_status_to_in_progress(job.id)

    @pytest.mark.asyncio
    async def test_reminders_scheduled(self, service, db, make_result, make_job, make_chat, customer, worker):
        job = make_job(customer.id, uuid.uuid4(), status=JobStatus.MATCHED.value, worker_id=worker.id)
        conversation = make_chat(job.category_id, customer_id=customer.id, worker_id=worker.id, job_id=job.id)
        db.store.put(job)
        db.execute.return_value = make_result([conversation])

        with patch("khidma.modules.jobs.service.send_onboarding_reminder") as reminder:
            result = await service.schedule_onboarding_reminders(job.id)

        assert result == {"success": True, "reminders_scheduled": 12}
        assert reminder.apply_async.call_count == 12
        first = reminder.apply_async.call_args_list[0].kwargs
        last = reminder.apply_async.call_args_list[-1].kwargs
        assert first["countdown"] == 300
        assert first["args"] == [str(conversation.id), str(worker.id), str(job.id), 1]
        assert last["countdown"] == 3600
        assert last["args"][3] == 12

    @pytest.mark.asyncio
    async def test_reminders_without_conversation(self, service, db, make_job, customer, worker):
        job = make_job(customer.id, uuid.uuid4(), status=JobStatus.MATCHED.value, worker_id=worker.id)
        db.store.put(job)

        with patch("khidma.modules.jobs.service.send_onboarding_reminder") as reminder:
            result = await service.schedule_onboarding_reminders(job.id)

        assert result == {"success": False, "reminders_scheduled": 0}
        reminder.apply_async.assert_not_called()


class TestCompletionCode:
    @pytest.mark.asyncio
    async def test_wrong_code_keeps_job_running(self, service, db, make_job, customer):
        job = make_job(customer.id, uuid.uuid4(), status=JobStatus.IN_PROGRESS.value, completion_code="482193")
        db.store.put(job)

        result = await service.validate_completion_code(job.id, "000000")

        assert result["is_valid"] is False
        assert job.status == JobStatus.IN_PROGRESS.value

    @pytest.mark.asyncio
    async def test_correct_code_completes_and_resets_chats(self, service, db, make_job, make_chat, customer):
        job = make_job(customer.id, uuid.uuid4(), status=JobStatus.IN_PROGRESS.value, completion_code="482193")
        chat = make_chat(job.category_id, customer_id=customer.id, job_id=job.id)
        db.store.put(job)
        service.chats.get_chats_for_job = AsyncMock(return_value=[chat])
        service.chats.reset_chat = AsyncMock()

        result = await service.validate_completion_code(job.id, "482193")

        assert result == {"success": True, "is_valid": True, "job_status": "completed"}
        service.chats.reset_chat.assert_awaited_once_with(chat)

    @pytest.mark.asyncio
    async def test_complete_requires_in_progress(self, service, db, make_job, customer):
        job = make_job(customer.id, uuid.uuid4(), status=JobStatus.MATCHED.value)
        db.store.put(job)

        with pytest.raises(InvalidStateError, match="Cannot transition to completed from matched"):
            await service.update_job_status_to_completed(job.id)

    @pytest.mark.asyncio
    async def test_completion_flow_sends_code(self, service, db, make_job, make_chat, customer, worker):
        job = make_job(customer.id, uuid.uuid4(), status=JobStatus.IN_PROGRESS.value, worker_id=worker.id)
        db.store.put(job, customer, worker)
        service.chats.find_customer_service_chat = AsyncMock(
            return_value=make_chat(job.category_id, customer_id=customer.id)
        )

        result = await service.initiate_completion_flow(job.id, worker.id, customer.id)

        assert len(result["completion_code"]) == 6
        assert job.completion_code == result["completion_code"]
        keys = [c.kwargs["metadata"]["messageKey"] for c in service.messages.add_message.await_args_list]
        assert "customer_rating_request" in keys
        assert "completion_code_delivery" in keys
