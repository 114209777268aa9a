"""
Worker Jobs Module - Business Logic Service

Broadcast pipeline for a posted job:

1. A categorizer group (experts first) is notified and votes on the
   subcategory. Categories without subcategories skip this step.
2. A majority fixes the subcategory; a tie keeps every tied subcategory.
3. Every eligible worker skilled in the chosen subcategories gets the job
   in their notification chat and may bid on it.

Worker-facing job state lives in the `jobData` block of each worker's
`worker_job` bubble and is updated in place as votes and bids come in.
"""
import uuid
from datetime import timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from khidma.core.config import settings
from khidma.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    KhidmaException,
    NotFoundError,
    ValidationError,
)
from khidma.core.logging import get_logger
from khidma.core.metrics import record_bid, record_categorization, record_worker_notification
from khidma.core.models import utc_now
from khidma.modules.auth.models import ApprovalStatus, User, UserType
from khidma.modules.bids.models import Bid, BidStatus
from khidma.modules.categories.models import Category, ExpertCategorizer
from khidma.modules.categories.service import CategoryService, SystemSettingService, minimum_bid_amount
from khidma.modules.chats.models import BubbleType, Chat, Message
from khidma.modules.chats.service import ChatService, MessageService
from khidma.modules.jobs.models import BroadcastPhase, Job, JobCategorization, JobStatus
from khidma.modules.onboarding.models import UserSkill
from khidma.modules.worker_jobs.voting import (
    VoteAnalysis,
    analyze_votes,
    calculate_bid_totals,
    select_categorizers,
)

logger = get_logger(__name__)

DEFAULT_WORKER_RATING = 4.5


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def merge_job_data(message: Message, updates: dict[str, Any]) -> None:
    """Merge `updates` into the bubble's jobData, reassigning the JSONB column."""
    metadata = dict(message.metadata_ or {})
    metadata["jobData"] = {**(metadata.get("jobData") or {}), **updates}
    message.metadata_ = metadata


def bid_job_data(bid: Bid) -> dict[str, Any]:
    """Bid fields shown on the worker's job bubble."""
    return {
        "bidStatus": bid.status,
        "bidId": str(bid.id),
        "bidAmount": bid.base_amount,
        "bidEquipmentCost": bid.equipment_cost,
        "bidServiceFee": bid.service_fee,
        "bidTotalAmount": bid.amount,
        "bidSubmittedAt": _iso(bid.created_at),
        "bidAcceptedAt": _iso(bid.accepted_at),
        "bidRejectedAt": _iso(bid.rejected_at),
    }


def build_job_data(job: Job, category: Category, bid: Bid | None = None) -> dict[str, Any]:
    data = {
        "jobId": str(job.id),
        "categoryId": str(job.category_id),
        "categoryName": category.name_en,
        "categoryNameFr": category.name_fr,
        "categoryNameAr": category.name_ar,
        "voiceUrl": job.voice_url,
        "voiceDuration": job.voice_duration or 0,
        "photos": list(job.photos or []),
        "location": {"lat": job.location_lat, "lng": job.location_lng},
        "priceFloor": job.price_floor,
        "portfolioConsent": job.portfolio_consent,
        "broadcastingPhase": int(job.broadcasting_phase),
        "hasSubcategory": job.subcategory_id is not None,
        "subcategoryId": str(job.subcategory_id) if job.subcategory_id else None,
        "createdAt": _iso(job.created_at),
    }
    if bid:
        data.update(bid_job_data(bid))
    return data


class WorkerJobService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.chats = ChatService(db)
        self.messages = MessageService(db)
        self.categories = CategoryService(db)

    # ============== Lookups ==============

    async def _get_job(self, job_id: uuid.UUID, lock: bool = False) -> Job:
        """Load the job; `lock` holds its row until commit so votes and bids serialize."""
        job = await self.db.get(
            Job,
            job_id,
            populate_existing=lock,
            with_for_update=True if lock else None,
        )
        if not job:
            raise NotFoundError("Job not found")
        return job

    async def _eligible_worker_ids(self, category_ids: list[uuid.UUID]) -> set[uuid.UUID]:
        """Approved workers with a positive balance skilled in any of the categories."""
        stmt = (
            select(UserSkill.user_id)
            .join(User, User.id == UserSkill.user_id)
            .where(
                UserSkill.category_id.in_(category_ids),
                User.user_type == UserType.WORKER.value,
                User.approval_status == ApprovalStatus.APPROVED.value,
                User.balance > 0,
            )
        )
        result = await self.db.execute(stmt)
        return set(result.scalars().all())

    async def _expert_ids(self, category_id: uuid.UUID) -> list[uuid.UUID]:
        stmt = select(ExpertCategorizer.worker_id).where(ExpertCategorizer.category_id == category_id)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def _get_bid(self, job_id: uuid.UUID, worker_id: uuid.UUID) -> Bid | None:
        stmt = select(Bid).where(Bid.job_id == job_id, Bid.worker_id == worker_id)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def _insert_unique(self, record, conflict_message: str) -> None:
        """Insert inside a savepoint; losing a unique-key race is a conflict, not a 500."""
        try:
            async with self.db.begin_nested():
                self.db.add(record)
                await self.db.flush()
        except IntegrityError as e:
            raise ConflictError(conflict_message) from e

    async def get_worker_job_bubble(self, job_id: uuid.UUID, worker_id: uuid.UUID) -> Message | None:
        """The job bubble in the worker's notification chat, if one was sent."""
        stmt = (
            select(Message)
            .join(Chat, Chat.id == Message.chat_id)
            .where(
                Chat.worker_id == worker_id,
                Chat.customer_id.is_(None),
                Message.bubble_type == BubbleType.WORKER_JOB.value,
                Message.content == str(job_id),
            )
            .order_by(Message.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_worker_eligible_jobs(self, worker_id: uuid.UUID) -> list[dict]:
        """Posted jobs this worker was picked to categorize."""
        worker = await self.db.get(User, worker_id)
        if not worker:
            raise NotFoundError("Worker not found")
        if not worker.is_worker:
            raise ForbiddenError("User is not a worker")
        if worker.balance <= 0:
            return []

        stmt = (
            select(Job, Category, User.name)
            .outerjoin(Category, Category.id == Job.category_id)
            .outerjoin(User, User.id == Job.customer_id)
            .where(
                Job.status == JobStatus.POSTED.value,
                Job.broadcasting_phase > BroadcastPhase.NEW,
                Job.categorizer_worker_ids.any(worker_id),
            )
            .order_by(Job.created_at.desc())
        )
        result = await self.db.execute(stmt)

        jobs = []
        for job, category, customer_name in result.all():
            jobs.append({
                "job_id": job.id,
                "category_id": job.category_id,
                "category_name": category.name_en if category else "Unknown Category",
                "category_name_fr": category.name_fr if category else None,
                "category_name_ar": category.name_ar if category else None,
                "voice_url": job.voice_url,
                "voice_duration": job.voice_duration or 0,
                "photos": list(job.photos or []),
                "location": {"lat": job.location_lat, "lng": job.location_lng},
                "price_floor": job.price_floor,
                "portfolio_consent": job.portfolio_consent,
                "broadcasting_phase": job.broadcasting_phase,
                "customer_name": customer_name or "Customer",
                "created_at": job.created_at,
                "has_subcategory": job.subcategory_id is not None,
                "subcategory_id": job.subcategory_id,
            })
        return jobs

    # ============== Categorizer assignment ==============

    async def assign_categorizer_workers(self, job_id: uuid.UUID) -> dict:
        """
        Pick the categorizer group for a posted job and notify its members.

        Categories without subcategories go straight to bidding.
        """
        job = await self._get_job(job_id, lock=True)
        if job.categorizer_worker_ids:
            raise ConflictError("Categorizers already assigned to this job")

        subcategories = await self.categories.list_subcategories(job.category_id)
        if not subcategories:
            job.subcategory_id = job.category_id
            job.broadcasting_phase = BroadcastPhase.BIDDING
            job.categorizer_group_size = 0
            await self.db.flush()

            notified = await self._broadcast_to_bidders(job, [job.category_id])
            await self.db.commit()

            record_categorization("skipped")
            logger.info("Categorization skipped", job_id=str(job.id), bidders=notified)
            return {
                "success": True,
                "skipped_categorization": True,
                "broadcasted_to_category": str(job.category_id),
                "bidders_notified": notified,
                "reason": "No subcategories exist for this category",
            }

        target_size = await SystemSettingService(self.db).get_int(
            "categorizer_group_size", settings.categorizer_group_size
        )
        eligible = await self._eligible_worker_ids([job.category_id])
        if not eligible:
            raise NotFoundError("No eligible workers found for this category")

        selected, expert_count = select_categorizers(
            await self._expert_ids(job.category_id),
            sorted(eligible, key=str),
            target_size,
        )

        job.categorizer_worker_ids = selected
        job.broadcasting_phase = BroadcastPhase.CATEGORIZATION
        job.categorizer_group_size = target_size
        await self.db.flush()

        for worker_id in selected:
            await self._send_job_to_worker_chat(job, worker_id)
        await self.db.commit()

        logger.info(
            "Categorizers assigned",
            job_id=str(job.id),
            target=target_size,
            selected=len(selected),
            experts=expert_count,
        )
        return {
            "success": True,
            "skipped_categorization": False,
            "target_group_size": target_size,
            "selected_count": len(selected),
            "expert_count": expert_count,
            "random_count": len(selected) - expert_count,
            "categorizer_worker_ids": [str(worker_id) for worker_id in selected],
        }

    # ============== Voting ==============

    async def analyze_categorization_votes(self, job: Job) -> VoteAnalysis:
        stmt = (
            select(JobCategorization.suggested_subcategory_id)
            .where(JobCategorization.job_id == job.id)
            .order_by(JobCategorization.created_at.asc())
        )
        result = await self.db.execute(stmt)
        return analyze_votes(
            result.scalars().all(),
            job.categorizer_group_size,
            len(job.categorizer_worker_ids or []),
        )

    async def submit_categorization(
        self,
        job_id: uuid.UUID,
        worker_id: uuid.UUID,
        subcategory_id: uuid.UUID,
    ) -> dict:
        job = await self._get_job(job_id, lock=True)
        if job.status == JobStatus.CANCELLED.value:
            raise InvalidStateError("Job has been cancelled")
        if job.subcategory_id:
            raise InvalidStateError("Job already categorized")
        if job.broadcasting_phase != BroadcastPhase.CATEGORIZATION:
            raise InvalidStateError("Job not in categorization phase")

        worker = await self.db.get(User, worker_id)
        if worker_id not in (job.categorizer_worker_ids or []) or not worker or not worker.is_worker:
            raise ForbiddenError("Worker not authorized to categorize this job")

        stmt = select(JobCategorization.id).where(
            JobCategorization.job_id == job.id,
            JobCategorization.worker_id == worker_id,
        )
        if (await self.db.execute(stmt)).first() is not None:
            raise ConflictError("Worker already submitted categorization")

        subcategory = await self.db.get(Category, subcategory_id)
        if not subcategory:
            raise NotFoundError("Subcategory not found")
        if subcategory.parent_id != job.category_id:
            raise ValidationError("Subcategory does not belong to job category")

        await self._insert_unique(
            JobCategorization(
                job_id=job.id,
                worker_id=worker_id,
                suggested_subcategory_id=subcategory_id,
            ),
            "Worker already submitted categorization",
        )

        analysis = await self.analyze_categorization_votes(job)

        bubble = await self.get_worker_job_bubble(job.id, worker_id)
        if bubble:
            merge_job_data(bubble, {
                "hasVoted": True,
                "votedSubcategoryId": str(subcategory_id),
                "votingProgress": {
                    "currentVotes": analysis.current_votes,
                    "totalCategorizers": analysis.total_needed,
                    "majorityThreshold": analysis.majority_threshold,
                },
            })

        all_voted = analysis.current_votes >= len(job.categorizer_worker_ids or [])
        if analysis.has_decision or all_voted:
            outcome = await self._resolve_categorization(job, analysis)
        else:
            outcome = {
                "result": "waiting",
                "current_votes": analysis.current_votes,
                "total_needed": analysis.total_needed,
                "majority_threshold": analysis.majority_threshold,
                "vote_distribution": analysis.vote_distribution,
            }

        await self.db.commit()
        record_categorization(outcome["result"])
        logger.info(
            "Categorization submitted",
            job_id=str(job.id),
            worker_id=str(worker_id),
            result=outcome["result"],
            votes=analysis.current_votes,
        )
        return outcome

    async def _resolve_categorization(self, job: Job, analysis: VoteAnalysis) -> dict:
        """
        Close voting. Without a majority once everyone has voted, the
        subcategories with the most votes are kept as a tie.
        """
        top = analysis.top_subcategories
        winner = analysis.winning_subcategory
        if winner is None and len(top) == 1:
            winner = top[0]

        if winner is not None:
            job.subcategory_id = winner
            job.broadcasting_phase = BroadcastPhase.BIDDING
            await self.db.flush()

            for categorizer_id in job.categorizer_worker_ids or []:
                bubble = await self.get_worker_job_bubble(job.id, categorizer_id)
                if bubble:
                    merge_job_data(bubble, {
                        "hasSubcategory": True,
                        "subcategoryId": str(winner),
                        "broadcastingPhase": int(BroadcastPhase.BIDDING),
                    })

            await self._broadcast_to_bidders(job, [winner])
            return {
                "result": "majority",
                "subcategory_id": winner,
                "vote_distribution": analysis.vote_distribution,
            }

        await self._apply_tie(job, top)
        return {
            "result": "tie",
            "tied_subcategories": top,
            "vote_distribution": analysis.vote_distribution,
        }

    async def _apply_tie(self, job: Job, subcategory_ids: list[uuid.UUID]) -> int:
        job.subcategory_ids = list(subcategory_ids)
        job.broadcasting_phase = BroadcastPhase.BIDDING
        await self.db.flush()
        return await self._broadcast_to_bidders(job, list(subcategory_ids))

    async def handle_tie_categorization(
        self,
        job_id: uuid.UUID,
        subcategory_ids: list[uuid.UUID],
    ) -> dict:
        """Keep every tied subcategory and open bidding to workers skilled in any of them."""
        job = await self._get_job(job_id, lock=True)
        notified = await self._apply_tie(job, subcategory_ids)
        await self.db.commit()

        logger.info("Tie categorization applied", job_id=str(job.id), subcategories=len(subcategory_ids))
        return {"success": True, "subcategory_ids": list(subcategory_ids), "bidders_notified": notified}

    # ============== Broadcasting ==============

    async def _broadcast_to_bidders(self, job: Job, category_ids: list[uuid.UUID]) -> int:
        worker_ids = await self._eligible_worker_ids(category_ids)
        for worker_id in sorted(worker_ids, key=str):
            await self._send_job_to_worker_chat(job, worker_id)
        logger.info("Job broadcast to bidders", job_id=str(job.id), workers=len(worker_ids))
        return len(worker_ids)

    async def assign_bidders_to_job(self, job_id: uuid.UUID, category_ids: list[uuid.UUID]) -> int:
        job = await self._get_job(job_id)
        notified = await self._broadcast_to_bidders(job, category_ids)
        await self.db.commit()
        return notified

    async def _send_job_to_worker_chat(self, job: Job, worker_id: uuid.UUID) -> Message:
        worker = await self.db.get(User, worker_id)
        if not worker or not worker.is_worker or not worker.is_approved:
            raise ForbiddenError("Worker not found or not approved")

        category = await self.db.get(Category, job.category_id)
        if not category:
            raise NotFoundError("Category not found")

        chat = await self.chats.get_or_create_worker_category_chat(worker_id, job.category_id, commit=False)

        stmt = select(Message).where(
            Message.chat_id == chat.id,
            Message.bubble_type == BubbleType.WORKER_JOB.value,
            Message.content == str(job.id),
        )
        existing = (await self.db.execute(stmt)).scalars().first()
        if existing:
            return existing

        bid = await self._get_bid(job.id, worker_id)
        message = await self.messages.add_message(
            chat.id,
            worker_id,
            BubbleType.WORKER_JOB,
            str(job.id),
            metadata={
                "jobId": str(job.id),
                "bubbleType": "worker_job_notification",
                "messageType": "categorization_request",
                "jobCategory": str(job.category_id),
                "jobStatus": job.status,
                "broadcastingPhase": int(job.broadcasting_phase),
                "isSystemGenerated": True,
                "automated": True,
                "createdAt": _iso(utc_now()),
                "jobData": build_job_data(job, category, bid),
            },
        )
        record_worker_notification(int(job.broadcasting_phase))
        return message

    async def send_job_to_worker_chat(self, job_id: uuid.UUID, worker_id: uuid.UUID) -> Message:
        """Drop the job bubble into the worker's notification chat. Repeats are no-ops."""
        job = await self._get_job(job_id)
        message = await self._send_job_to_worker_chat(job, worker_id)
        await self.db.commit()
        return message

    # ============== Bidding ==============

    async def validate_bid_amount(self, subcategory_id: uuid.UUID, amount: float) -> dict:
        pricing = await self.categories.get_category_pricing_baseline(subcategory_id)
        if not pricing:
            is_valid = amount > 0
            return {
                "is_valid": is_valid,
                "minimum_amount": 0,
                "baseline_price": 0,
                "reason": None if is_valid else "Bid must be greater than 0",
            }

        minimum = minimum_bid_amount(pricing.baseline_price, pricing.minimum_percentage)
        is_valid = amount >= minimum
        reason = None
        if not is_valid:
            reason = (
                f"Bid must be at least {minimum} "
                f"({pricing.minimum_percentage}% of baseline {pricing.baseline_price:g})"
            )
        return {
            "is_valid": is_valid,
            "minimum_amount": minimum,
            "baseline_price": pricing.baseline_price,
            "reason": reason,
        }

    async def submit_worker_bid(
        self,
        job_id: uuid.UUID,
        worker_id: uuid.UUID,
        amount: float,
        equipment_cost: float = 0,
    ) -> dict:
        job = await self._get_job(job_id, lock=True)
        worker = await self.db.get(User, worker_id)
        if not worker:
            raise NotFoundError("Worker not found")
        if worker.balance <= 0:
            raise ForbiddenError("Insufficient balance to place bid")
        if job.status != JobStatus.POSTED.value:
            raise InvalidStateError("Job is no longer accepting bids")

        pricing_subcategory = job.subcategory_id or next(iter(job.subcategory_ids or []), None)
        if pricing_subcategory is None:
            raise InvalidStateError("Job not yet categorized")
        if await self._get_bid(job.id, worker_id):
            raise ConflictError("Worker already placed a bid for this job")

        validation = await self.validate_bid_amount(pricing_subcategory, amount)
        if not validation["is_valid"]:
            raise ValidationError(
                validation["reason"],
                details={
                    "minimum_amount": validation["minimum_amount"],
                    "baseline_price": validation["baseline_price"],
                },
            )

        totals = calculate_bid_totals(amount, equipment_cost, settings.platform_fee_percentage)
        now = utc_now()
        bid = Bid(
            job_id=job.id,
            worker_id=worker_id,
            amount=totals["total_amount"],
            equipment_cost=equipment_cost,
            service_fee=totals["service_fee"],
            expires_at=now + timedelta(hours=settings.bid_expire_hours),
            priority_window_end=now + timedelta(hours=settings.bid_priority_window_hours),
            status=BidStatus.PENDING.value,
        )
        await self._insert_unique(bid, "Worker already placed a bid for this job")

        bubble = await self.get_worker_job_bubble(job.id, worker_id)
        if bubble:
            merge_job_data(bubble, {
                "bidStatus": BidStatus.PENDING.value,
                "bidId": str(bid.id),
                "bidAmount": amount,
                "bidEquipmentCost": equipment_cost,
                "bidServiceFee": totals["service_fee"],
                "bidTotalAmount": totals["total_amount"],
                "bidSubmittedAt": _iso(now),
            })
        await self.db.commit()
        record_bid(BidStatus.PENDING.value)

        response = {
            "success": True,
            "bid_id": bid.id,
            "base_amount": amount,
            "equipment_cost": equipment_cost,
            "service_fee": totals["service_fee"],
            "total_amount": totals["total_amount"],
            "expires_at": bid.expires_at,
            "priority_window_end": bid.priority_window_end,
        }

        # The bid is committed; a failed customer bubble only rolls back its savepoint
        try:
            async with self.db.begin_nested():
                await self.send_bid_to_customer(bid, job, worker)
            await self.db.commit()
        except (KhidmaException, SQLAlchemyError):
            logger.exception("Bid bubble delivery failed", bid_id=str(response["bid_id"]), job_id=str(job_id))

        logger.info(
            "Bid submitted",
            bid_id=str(response["bid_id"]),
            job_id=str(job_id),
            worker_id=str(worker_id),
            total=totals["total_amount"],
        )
        return response

    async def send_bid_to_customer(self, bid: Bid, job: Job, worker: User) -> Message:
        chat = await self.chats.find_customer_service_chat(job.customer_id, job.category_id)
        if not chat:
            raise NotFoundError("Customer chat not found")

        message = await self.messages.add_message(
            chat.id,
            job.customer_id,
            BubbleType.BID,
            str(bid.id),
            metadata={
                "bidData": {
                    "bidId": str(bid.id),
                    "workerId": str(worker.id),
                    "workerName": worker.name,
                    "workerPhotoUrl": worker.photo_url,
                    "workerRating": worker.rating or DEFAULT_WORKER_RATING,
                    "bidAmount": bid.base_amount,
                    "equipmentCost": bid.equipment_cost,
                    "serviceFee": bid.service_fee,
                    "totalAmount": bid.amount,
                    "status": bid.status,
                    "createdAt": _iso(bid.created_at or utc_now()),
                    "expiresAt": _iso(bid.expires_at),
                },
                "isSystemGenerated": True,
                "automated": True,
            },
        )
        return message

    async def update_worker_job_bid_status(self, bid_id: uuid.UUID, new_status: BidStatus) -> dict:
        """
        Mirror a bid decision on the worker's job bubble. Flushes only;
        a missing bid or bubble is reported rather than raised.
        """
        bid = await self.db.get(Bid, bid_id)
        if not bid:
            return {"success": False, "error": "Bid not found"}

        bubble = await self.get_worker_job_bubble(bid.job_id, bid.worker_id)
        if not bubble:
            return {"success": False, "error": "Worker job message not found"}

        new_status = BidStatus(new_status)
        updates: dict[str, Any] = {"bidStatus": new_status.value}
        if new_status == BidStatus.ACCEPTED:
            updates["bidAcceptedAt"] = _iso(bid.accepted_at or utc_now())
        elif new_status == BidStatus.REJECTED:
            updates["bidRejectedAt"] = _iso(bid.rejected_at or utc_now())
        merge_job_data(bubble, updates)
        await self.db.flush()

        return {"success": True, "message_id": bubble.id, "new_status": new_status.value}
