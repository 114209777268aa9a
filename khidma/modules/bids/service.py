"""
Bids Module - Business Logic Service

Customer decisions on worker bids. Accepting a bid matches the job, opens
the customer/worker conversation and starts the start-code flow.
"""
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from khidma.core.exceptions import ForbiddenError, InvalidStateError, NotFoundError
from khidma.core.logging import get_logger
from khidma.core.metrics import record_bid, record_job_transition
from khidma.core.models import utc_now
from khidma.modules.auth.models import User
from khidma.modules.bids.models import Bid, BidStatus
from khidma.modules.chats.models import BubbleType, Chat, Message
from khidma.modules.chats.service import ChatService, MessageService
from khidma.modules.jobs.models import Job, JobStatus
from khidma.modules.jobs.service import JobService
from khidma.modules.worker_jobs.service import WorkerJobService

logger = get_logger(__name__)

BID_ACCEPTED_TEXT = (
    "You can now communicate with {name} directly. Tap here to start the conversation."
)


class BidService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.chats = ChatService(db)
        self.messages = MessageService(db)
        self.jobs = JobService(db)
        self.worker_jobs = WorkerJobService(db)

    async def _owned_bid(self, bid_id: uuid.UUID, customer_id: uuid.UUID, action: str) -> tuple[Bid, Job]:
        bid = await self.db.get(Bid, bid_id)
        if not bid:
            raise NotFoundError("Bid not found")

        # Decisions on one job serialize on its row; re-read the bid once it is held
        job = await self.db.get(Job, bid.job_id, populate_existing=True, with_for_update=True)
        if not job or job.customer_id != customer_id:
            raise ForbiddenError(f"Unauthorized to {action} this bid")
        await self.db.refresh(bid)
        if bid.status != BidStatus.PENDING.value:
            raise InvalidStateError(f"Bid already {bid.status}")
        return bid, job

    async def get_job_bids(self, job_id: uuid.UUID) -> list[Bid]:
        stmt = select(Bid).where(Bid.job_id == job_id).order_by(Bid.created_at.asc())
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def accept_bid(self, bid_id: uuid.UUID, customer_id: uuid.UUID) -> dict:
        bid, job = await self._owned_bid(bid_id, customer_id, "accept")
        if job.status != JobStatus.POSTED.value:
            raise InvalidStateError("Job is no longer accepting bids")

        worker = await self.db.get(User, bid.worker_id)
        if not worker:
            raise NotFoundError("Worker not found")

        now = utc_now()
        bid.status = BidStatus.ACCEPTED.value
        bid.accepted_at = now

        conversation = Chat(
            customer_id=customer_id,
            worker_id=worker.id,
            category_id=job.category_id,
            job_id=job.id,
            is_cleared=False,
        )
        self.db.add(conversation)
        await self.db.flush()

        customer_chat = await self.chats.find_customer_service_chat(customer_id, job.category_id)
        if customer_chat:
            await self.messages.add_message(
                customer_chat.id,
                customer_id,
                BubbleType.SYSTEM_NOTIFICATION,
                BID_ACCEPTED_TEXT.format(name=worker.name),
                metadata={
                    "messageType": "bid_accepted_notification",
                    "conversationChatId": str(conversation.id),
                    "workerId": str(worker.id),
                    "workerName": worker.name,
                    "jobId": str(job.id),
                    "isSystemGenerated": True,
                    "automated": True,
                },
            )

        job.status = JobStatus.MATCHED.value
        job.worker_id = worker.id
        job.matched_at = now
        await self.db.flush()

        await self.jobs.prepare_start_code(job, conversation.id)
        await self.worker_jobs.update_worker_job_bid_status(bid.id, BidStatus.ACCEPTED)
        await self.db.commit()

        await self.jobs.schedule_onboarding_reminders(job.id)

        record_bid(BidStatus.ACCEPTED.value)
        record_job_transition(JobStatus.MATCHED.value)
        logger.info(
            "Bid accepted",
            bid_id=str(bid.id),
            job_id=str(job.id),
            worker_id=str(worker.id),
            conversation_chat_id=str(conversation.id),
        )
        return {
            "success": True,
            "bid_id": bid.id,
            "worker_id": worker.id,
            "job_id": job.id,
            "conversation_chat_id": conversation.id,
            "customer_chat_id": customer_chat.id if customer_chat else None,
        }

    async def reject_bid(self, bid_id: uuid.UUID, customer_id: uuid.UUID) -> dict:
        bid, job = await self._owned_bid(bid_id, customer_id, "reject")

        bid.status = BidStatus.REJECTED.value
        bid.rejected_at = utc_now()

        customer_chat = await self.chats.find_customer_service_chat(customer_id, job.category_id)
        if customer_chat:
            stmt = select(Message).where(
                Message.chat_id == customer_chat.id,
                Message.bubble_type == BubbleType.BID.value,
                Message.content == str(bid.id),
            )
            bubble = (await self.db.execute(stmt)).scalars().first()
            if bubble:
                metadata = dict(bubble.metadata_ or {})
                metadata["bidData"] = {
                    **(metadata.get("bidData") or {}),
                    "status": BidStatus.REJECTED.value,
                }
                bubble.metadata_ = metadata

        await self.worker_jobs.update_worker_job_bid_status(bid.id, BidStatus.REJECTED)
        await self.db.commit()

        record_bid(BidStatus.REJECTED.value)
        logger.info("Bid rejected", bid_id=str(bid.id), job_id=str(job.id))
        return {"success": True, "bid_id": bid.id, "status": BidStatus.REJECTED.value}
