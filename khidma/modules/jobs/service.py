"""
Jobs Module - Business Logic Service

Lifecycle: posted -> matched -> in_progress -> completed, with cancellation
allowed until completion. The start code (4 digits) moves a matched job to
in_progress; the completion code (6 digits) closes it.
"""
import uuid
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from khidma.core.config import settings
from khidma.core.exceptions import ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from khidma.core.logging import get_logger
from khidma.core.metrics import record_job_created, record_job_transition
from khidma.core.models import utc_now
from khidma.core.security import generate_numeric_code
from khidma.modules.auth.models import User
from khidma.modules.categories.models import Category
from khidma.modules.chats.models import BubbleType, Chat, Message
from khidma.modules.chats.service import ChatService, MessageService
from khidma.modules.jobs.models import (
    BroadcastPhase,
    CancellationPhase,
    Job,
    JobCancellation,
    JobStatus,
    JobView,
)
from khidma.tasks.jobs import assign_categorizer_workers, send_onboarding_reminder

logger = get_logger(__name__)

WORK_CODE_DIGITS = 6
ONBOARDING_CODE_DIGITS = 4
COMPLETION_CODE_DIGITS = 6

LOADING_MESSAGES = {
    "en": "Finding workers in your area...",
    "fr": "Recherche de travailleurs dans votre région...",
    "ar": "البحث عن عمال في منطقتك...",
}

JOB_STARTED_TEXT = "Work has started on your job. The worker is now on-site."
ASSIGNED_TEXT = "You have been assigned to this job. You can now communicate directly with the customer."
ONBOARDING_CODE_TEXT = "Share this code with the worker when they arrive to start the job: {code}"
COMPLETION_CODE_TEXT = "Share this code with the worker only when work is completed: {code}"
COMPLETION_INPUT_TEXT = "Ask the customer for the completion code to finish this job"
RATING_REQUEST_TEXT = "Please rate your experience with {name}"


def extract_job_request(messages: list[Message]) -> dict[str, Any]:
    """
    Collect the job request from a customer's chat history.

    System bubbles are ignored. The first voice note is the description;
    every photo is attached; a date bubble marks the schedule as chosen.
    """
    voice_url: str | None = None
    voice_duration: float = 0
    photos: list[str] = []
    has_date = False

    for message in messages:
        metadata = message.metadata_ or {}
        if metadata.get("isSystemGenerated"):
            continue

        if message.bubble_type == BubbleType.VOICE.value and voice_url is None:
            voice_url = message.content
            voice_duration = metadata.get("duration") or 0
        elif message.bubble_type == BubbleType.PHOTO.value:
            photos.append(message.content)
        elif message.bubble_type == BubbleType.DATE.value:
            has_date = True

    return {
        "voice_url": voice_url,
        "voice_duration": voice_duration,
        "photos": photos,
        "has_date": has_date,
    }


class JobService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.chats = ChatService(db)
        self.messages = MessageService(db)

    # ============== Lookups ==============

    async def get_job_by_id(self, job_id: uuid.UUID) -> Job | None:
        return await self.db.get(Job, job_id)

    async def _get_job(self, job_id: uuid.UUID) -> Job:
        job = await self.get_job_by_id(job_id)
        if not job:
            raise NotFoundError("Job not found")
        return job

    async def get_customer_jobs(
        self,
        customer_id: uuid.UUID,
        status: JobStatus | None = None,
    ) -> list[Job]:
        stmt = select(Job).where(Job.customer_id == customer_id)
        if status:
            stmt = stmt.where(Job.status == JobStatus(status).value)
        result = await self.db.execute(stmt.order_by(Job.created_at.desc()))
        return list(result.scalars().all())

    async def _worker_conversation_chat(self, job: Job, worker_id: uuid.UUID) -> Chat | None:
        stmt = select(Chat).where(
            Chat.job_id == job.id,
            Chat.worker_id == worker_id,
            Chat.customer_id.is_not(None),
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    # ============== Posting ==============

    async def create_job_from_chat(
        self,
        chat_id: uuid.UUID,
        location_lat: float,
        location_lng: float,
        price_floor: float = 0,
        portfolio_consent: bool = False,
        language: str = "en",
    ) -> Job:
        chat = await self.db.get(Chat, chat_id)
        if not chat:
            raise NotFoundError("Chat not found")
        if not chat.customer_id:
            raise ValidationError("Cannot create job from worker notification chat")
        if chat.job_id:
            raise InvalidStateError("Job already created for this chat")

        category = await self.db.get(Category, chat.category_id)
        if not category:
            raise NotFoundError("Category not found")

        result = await self.db.execute(
            select(Message).where(Message.chat_id == chat.id).order_by(Message.created_at.asc())
        )
        request = extract_job_request(list(result.scalars().all()))
        if not request["voice_url"]:
            raise ValidationError("Voice recording is required to create job")
        if not request["has_date"]:
            raise ValidationError("Date selection is required to create job")

        job = Job(
            customer_id=chat.customer_id,
            category_id=chat.category_id,
            voice_url=request["voice_url"],
            voice_duration=request["voice_duration"],
            photos=request["photos"],
            location_lat=location_lat,
            location_lng=location_lng,
            work_code=generate_numeric_code(WORK_CODE_DIGITS),
            portfolio_consent=portfolio_consent,
            price_floor=price_floor,
            status=JobStatus.POSTED.value,
            categorizer_worker_ids=[],
            subcategory_ids=[],
            broadcasting_phase=BroadcastPhase.NEW,
        )
        self.db.add(job)
        await self.db.flush()

        chat.job_id = job.id

        await self.messages.add_message(
            chat.id,
            chat.customer_id,
            BubbleType.JOB,
            str(job.id),
            metadata={
                "jobId": str(job.id),
                "bubbleType": "job_status",
                "isSystemGenerated": True,
                "automated": True,
            },
        )
        await self.messages.add_message(
            chat.id,
            chat.customer_id,
            BubbleType.SYSTEM_INSTRUCTION,
            LOADING_MESSAGES.get(language, LOADING_MESSAGES["en"]),
            metadata={
                "messageKey": "job_posted_loading",
                "showLoadingAnimation": True,
                "isSystemGenerated": True,
                "automated": True,
                "language": language,
            },
        )
        await self.db.commit()
        await self.db.refresh(job)

        assign_categorizer_workers.delay(str(job.id))

        record_job_created()
        logger.info(
            "Job posted",
            job_id=str(job.id),
            customer_id=str(job.customer_id),
            category_id=str(job.category_id),
            photos=len(job.photos),
        )
        return job

    # ============== Views ==============

    async def record_job_view(self, job_id: uuid.UUID, worker_id: uuid.UUID) -> dict:
        await self._get_job(job_id)
        if not await self.db.get(User, worker_id):
            raise NotFoundError("Worker not found")

        stmt = select(JobView).where(JobView.job_id == job_id, JobView.worker_id == worker_id)
        existing = (await self.db.execute(stmt)).scalars().first()
        if not existing:
            self.db.add(JobView(job_id=job_id, worker_id=worker_id, viewed_at=utc_now()))
            await self.db.commit()

        return {"success": True, "already_viewed": existing is not None}

    async def get_job_view_count(self, job_id: uuid.UUID) -> int:
        count = await self.db.scalar(select(func.count(JobView.id)).where(JobView.job_id == job_id))
        return count or 0

    async def get_job_bubble_data(self, job_id: uuid.UUID) -> dict | None:
        job = await self.get_job_by_id(job_id)
        if not job:
            return None
        return {
            "job_id": job.id,
            "status": job.status,
            "voice_url": job.voice_url,
            "voice_duration": job.voice_duration or 0,
            "photo_count": len(job.photos or []),
            "photos": list(job.photos or []),
            "view_count": await self.get_job_view_count(job_id),
            "created_at": job.created_at,
        }

    async def get_onboarding_status(self, job_id: uuid.UUID) -> dict | None:
        job = await self.get_job_by_id(job_id)
        if not job:
            return None
        return {
            "code_generated": bool(job.onboarding_code),
            "code_entered": job.status in (JobStatus.IN_PROGRESS.value, JobStatus.COMPLETED.value),
            "current_status": job.status,
        }

    # ============== Matching ==============

    async def assign_worker_to_job(self, job_id: uuid.UUID, worker_id: uuid.UUID) -> dict:
        """Match a worker directly and turn their notification chat into the conversation."""
        job = await self._get_job(job_id)
        if job.status != JobStatus.POSTED.value:
            raise InvalidStateError("Job is no longer available for assignment")

        worker = await self.db.get(User, worker_id)
        if not worker:
            raise NotFoundError("Worker not found")
        if not worker.is_worker or not worker.is_approved:
            raise ForbiddenError("Worker not eligible for job assignment")

        chat = await self.chats.find_worker_notification_chat(worker_id, job.category_id)
        if not chat:
            raise NotFoundError("Worker notification chat not found")

        job.status = JobStatus.MATCHED.value
        job.worker_id = worker_id
        job.matched_at = utc_now()
        chat.customer_id = job.customer_id
        chat.job_id = job.id

        await self.messages.add_message(
            chat.id,
            worker_id,
            BubbleType.SYSTEM_NOTIFICATION,
            ASSIGNED_TEXT,
            metadata={
                "messageType": "job_matched",
                "jobId": str(job.id),
                "customerId": str(job.customer_id),
                "isSystemGenerated": True,
                "automated": True,
            },
        )
        await self.db.commit()

        record_job_transition(JobStatus.MATCHED.value)
        logger.info("Worker assigned to job", job_id=str(job.id), worker_id=str(worker_id))
        return {
            "success": True,
            "job_id": job.id,
            "worker_id": worker_id,
            "chat_id": chat.id,
            "job_status": JobStatus.MATCHED.value,
        }

    # ============== Cancellation ==============

    async def cancel_job(
        self,
        job_id: uuid.UUID,
        user_id: uuid.UUID,
        phase: CancellationPhase,
    ) -> dict:
        job = await self._get_job(job_id)
        if job.customer_id != user_id:
            raise ForbiddenError("Only the job creator can cancel this job")
        if job.status == JobStatus.CANCELLED.value:
            raise InvalidStateError("Job is already cancelled")
        if job.status == JobStatus.COMPLETED.value:
            raise InvalidStateError("Cannot cancel a completed job")

        phase = CancellationPhase(phase)
        cancelled_at = utc_now()
        job.status = JobStatus.CANCELLED.value
        job.cancelled_at = cancelled_at
        job.cancelled_at_phase = phase.value
        self.db.add(JobCancellation(
            job_id=job.id,
            cancelled_by=user_id,
            phase=phase.value,
            cancelled_at=cancelled_at,
        ))

        for chat in await self.chats.get_chats_for_job(job.id):
            await self._remove_posting_bubbles(chat.id, job.id)
        await self.messages.expire_all_job_messages(job.id)
        await self.messages.expire_worker_job_bubbles_for_job(job.id)

        customer = await self.db.get(User, user_id)
        if customer:
            customer.cancellation_count = (customer.cancellation_count or 0) + 1

        await self.db.commit()

        record_job_transition(JobStatus.CANCELLED.value)
        logger.info("Job cancelled", job_id=str(job.id), phase=phase.value)
        return {"success": True, "cancelled_at": cancelled_at}

    async def _remove_posting_bubbles(self, chat_id: uuid.UUID, job_id: uuid.UUID) -> None:
        """Drop the job status bubble and the loading bubble from a chat."""
        stmt = select(Message).where(
            Message.chat_id == chat_id,
            (
                (Message.bubble_type == BubbleType.JOB.value) & (Message.content == str(job_id))
            ) | (
                (Message.bubble_type == BubbleType.SYSTEM_INSTRUCTION.value)
                & (Message.metadata_["messageKey"].astext == "job_posted_loading")
            ),
        )
        result = await self.db.execute(stmt)
        for message in result.scalars().all():
            await self.messages.remove_message(message)

    # ============== Start code ==============

    async def _ensure_onboarding_code(self, job: Job) -> str:
        if not job.onboarding_code:
            job.onboarding_code = generate_numeric_code(ONBOARDING_CODE_DIGITS)
            await self.db.flush()
        return job.onboarding_code

    async def generate_onboarding_code(self, job_id: uuid.UUID) -> str:
        """Start code for the job; an existing code is reused."""
        job = await self._get_job(job_id)
        code = await self._ensure_onboarding_code(job)
        await self.db.commit()
        return code

    async def _deliver_onboarding_code(self, job: Job) -> Message:
        if not job.onboarding_code:
            raise InvalidStateError("Onboarding code not generated")

        chat = await self.chats.find_customer_service_chat(job.customer_id, job.category_id)
        if not chat:
            raise NotFoundError("Customer service chat not found")

        return await self.messages.add_message(
            chat.id,
            job.customer_id,
            BubbleType.SYSTEM_INSTRUCTION,
            ONBOARDING_CODE_TEXT.format(code=job.onboarding_code),
            metadata={
                "messageKey": "onboarding_code_delivery",
                "jobId": str(job.id),
                "onboardingCode": job.onboarding_code,
                "isSystemGenerated": True,
                "automated": True,
            },
        )

    async def send_onboarding_code_to_customer(self, job_id: uuid.UUID) -> Message:
        job = await self._get_job(job_id)
        message = await self._deliver_onboarding_code(job)
        await self.db.commit()
        return message

    async def schedule_onboarding_reminders(self, job_id: uuid.UUID) -> dict:
        """Queue start-code reminders into the worker's conversation chat."""
        job = await self._get_job(job_id)
        if not job.worker_id:
            raise NotFoundError("Job or worker not found")

        chat = await self._worker_conversation_chat(job, job.worker_id)
        if not chat:
            return {"success": False, "reminders_scheduled": 0}

        delays = settings.onboarding_reminder_minutes
        for reminder_number, minutes in enumerate(delays, start=1):
            send_onboarding_reminder.apply_async(
                args=[str(chat.id), str(job.worker_id), str(job.id), reminder_number],
                countdown=minutes * 60,
            )
        return {"success": True, "reminders_scheduled": len(delays)}

    async def validate_onboarding_code(self, job_id: uuid.UUID, input_code: str) -> dict:
        job = await self._get_job(job_id)
        if not job.onboarding_code:
            raise InvalidStateError("Onboarding code not generated for this job")

        is_valid = job.onboarding_code == input_code.strip()
        if is_valid:
            await self._start_job(job)
            await self.messages.expire_onboarding_reminders(job.id)
            await self.db.commit()

        logger.info("Start code checked", job_id=str(job.id), is_valid=is_valid)
        return {"success": True, "is_valid": is_valid, "job_status": job.status}

    async def _start_job(self, job: Job) -> None:
        if job.status != JobStatus.MATCHED.value:
            raise InvalidStateError(f"Cannot transition to in_progress from {job.status}")

        job.status = JobStatus.IN_PROGRESS.value
        await self.db.flush()
        record_job_transition(job.status)

        chat = await self.chats.find_customer_service_chat(job.customer_id, job.category_id)
        if chat:
            await self.messages.add_message(
                chat.id,
                job.customer_id,
                BubbleType.SYSTEM_INSTRUCTION,
                JOB_STARTED_TEXT,
                metadata={
                    "messageKey": "job_started_notification",
                    "jobId": str(job.id),
                    "isSystemGenerated": True,
                    "automated": True,
                },
            )

    async def update_job_status_to_in_progress(self, job_id: uuid.UUID) -> dict:
        job = await self._get_job(job_id)
        await self._start_job(job)
        await self.db.commit()
        return {"success": True, "new_status": JobStatus.IN_PROGRESS.value}

    # ============== Completion ==============

    async def _ensure_completion_code(self, job: Job) -> str:
        if not job.completion_code:
            job.completion_code = generate_numeric_code(COMPLETION_CODE_DIGITS)
            await self.db.flush()
        return job.completion_code

    async def generate_completion_code(self, job_id: uuid.UUID) -> str:
        job = await self._get_job(job_id)
        code = await self._ensure_completion_code(job)
        await self.db.commit()
        return code

    async def _has_rating_request(self, job_id: uuid.UUID, message_key: str) -> bool:
        stmt = select(Message.id).where(
            Message.bubble_type == BubbleType.RATING_REQUEST.value,
            Message.metadata_["jobId"].astext == str(job_id),
            Message.metadata_["messageKey"].astext == message_key,
        )
        return (await self.db.execute(stmt)).first() is not None

    async def _send_rating_requests(self, job: Job, worker: User, customer: User) -> None:
        """Ask each side to rate the other; requests already sent are not repeated."""
        if not await self._has_rating_request(job.id, "customer_rating_request"):
            chat = await self.chats.find_customer_service_chat(customer.id, job.category_id)
            if chat:
                await self.messages.add_message(
                    chat.id,
                    customer.id,
                    BubbleType.RATING_REQUEST,
                    RATING_REQUEST_TEXT.format(name=worker.name),
                    metadata={
                        "messageKey": "customer_rating_request",
                        "jobId": str(job.id),
                        "workerId": str(worker.id),
                        "workerName": worker.name,
                        "ratingType": "customer_rates_worker",
                        "isSystemGenerated": True,
                        "automated": True,
                        "isPrivate": True,
                    },
                )

        if not await self._has_rating_request(job.id, "worker_rating_request"):
            chat = await self._worker_conversation_chat(job, worker.id)
            if chat:
                await self.messages.add_message(
                    chat.id,
                    worker.id,
                    BubbleType.RATING_REQUEST,
                    RATING_REQUEST_TEXT.format(name=customer.name),
                    metadata={
                        "messageKey": "worker_rating_request",
                        "jobId": str(job.id),
                        "customerId": str(customer.id),
                        "customerName": customer.name,
                        "ratingType": "worker_rates_customer",
                        "isSystemGenerated": True,
                        "automated": True,
                        "isPrivate": True,
                    },
                )

    async def initiate_completion_flow(
        self,
        job_id: uuid.UUID,
        worker_id: uuid.UUID,
        customer_id: uuid.UUID,
    ) -> dict:
        """
        Worker signalled the work is done: request ratings, hand the
        completion code to the customer and prompt the worker to collect it.
        """
        job = await self._get_job(job_id)
        worker = await self.db.get(User, worker_id)
        customer = await self.db.get(User, customer_id)
        if not worker or not customer:
            raise NotFoundError("Worker or customer not found")

        await self._send_rating_requests(job, worker, customer)
        code = await self._ensure_completion_code(job)

        service_chat = await self.chats.find_customer_service_chat(customer.id, job.category_id)
        if service_chat:
            await self.messages.add_message(
                service_chat.id,
                customer.id,
                BubbleType.SYSTEM_INSTRUCTION,
                COMPLETION_CODE_TEXT.format(code=code),
                metadata={
                    "messageKey": "completion_code_delivery",
                    "jobId": str(job.id),
                    "completionCode": code,
                    "isSystemGenerated": True,
                    "automated": True,
                    "codeType": "completion",
                },
            )

        conversation = await self._worker_conversation_chat(job, worker.id)
        if conversation:
            await self.messages.add_message(
                conversation.id,
                worker.id,
                BubbleType.SYSTEM_PROMPT,
                COMPLETION_INPUT_TEXT,
                metadata={
                    "messageKey": "completion_code_input",
                    "jobId": str(job.id),
                    "maxLength": 6,
                    "promptType": "completion_code_input",
                    "isSystemGenerated": True,
                    "automated": True,
                },
            )

        await self.db.commit()
        logger.info("Completion flow started", job_id=str(job.id), worker_id=str(worker.id))
        return {
            "success": True,
            "completion_code": code,
            "ratings_sent": True,
            "code_generated": True,
        }

    async def _complete_job(self, job: Job) -> None:
        if job.status != JobStatus.IN_PROGRESS.value:
            raise InvalidStateError(f"Cannot transition to completed from {job.status}")

        job.status = JobStatus.COMPLETED.value
        await self.db.flush()
        record_job_transition(job.status)

        # Ratings go out before the reset, which detaches the worker's chat from the job
        if job.worker_id:
            worker = await self.db.get(User, job.worker_id)
            customer = await self.db.get(User, job.customer_id)
            if worker and customer:
                await self._send_rating_requests(job, worker, customer)

        for chat in await self.chats.get_chats_for_job(job.id):
            await self.chats.reset_chat(chat)

    async def update_job_status_to_completed(self, job_id: uuid.UUID) -> dict:
        job = await self._get_job(job_id)
        await self._complete_job(job)
        await self.db.commit()
        return {"success": True, "new_status": JobStatus.COMPLETED.value}

    async def validate_completion_code(self, job_id: uuid.UUID, input_code: str) -> dict:
        job = await self._get_job(job_id)
        if not job.completion_code:
            raise InvalidStateError("Completion code not generated for this job")

        is_valid = job.completion_code == input_code.strip()
        if is_valid:
            await self._complete_job(job)
            await self.db.commit()

        logger.info("Completion code checked", job_id=str(job.id), is_valid=is_valid)
        return {"success": True, "is_valid": is_valid, "job_status": job.status}

    # ============== Bid acceptance hooks ==============

    async def prepare_start_code(self, job: Job, conversation_chat_id: uuid.UUID) -> str:
        """
        Generate the start code, deliver it to the customer and put the input
        bubble in the worker's conversation. The caller commits.
        """
        code = await self._ensure_onboarding_code(job)
        await self._deliver_onboarding_code(job)
        await self.messages.create_onboarding_code_input_bubble(
            conversation_chat_id, job.worker_id, job.id
        )
        return code
