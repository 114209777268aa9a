"""
WorkerJobService tests: categorizer assignment, voting outcomes and bids.
"""
import uuid
from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from khidma.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from khidma.core.models import utc_now
from khidma.modules.auth.models import UserType
from khidma.modules.bids.models import Bid, BidStatus
from khidma.modules.chats.models import BubbleType
from khidma.modules.jobs.models import BroadcastPhase, Job, JobCategorization, JobStatus
from khidma.modules.worker_jobs.service import WorkerJobService
from khidma.modules.worker_jobs.voting import analyze_votes


@pytest.fixture
def customer(make_user):
    return make_user(UserType.CUSTOMER, name="Aicha")


@pytest.fixture
def worker(make_user):
    return make_user(UserType.WORKER, name="Sidi", balance="500")


@pytest.fixture
def category(make_category):
    return make_category()


@pytest.fixture
def service(db):
    return WorkerJobService(db)


def worker_bubble(make_message, job_id, worker_id):
    return make_message(
        uuid.uuid4(),
        BubbleType.WORKER_JOB.value,
        str(job_id),
        metadata={"jobId": str(job_id), "jobData": {"jobId": str(job_id), "hasSubcategory": False}},
        sender_id=worker_id,
    )


class TestEligibleJobs:
    @pytest.mark.asyncio
    async def test_unknown_worker(self, service):
        with pytest.raises(NotFoundError, match="Worker not found"):
            await service.get_worker_eligible_jobs(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_customer_is_rejected(self, service, db, customer):
        db.store.put(customer)

        with pytest.raises(ForbiddenError, match="User is not a worker"):
            await service.get_worker_eligible_jobs(customer.id)

    @pytest.mark.asyncio
    async def test_empty_balance_sees_nothing(self, service, db, make_user):
        broke = make_user(UserType.WORKER, balance="0")
        db.store.put(broke)

        assert await service.get_worker_eligible_jobs(broke.id) == []
        db.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_jobs_are_enriched(self, service, db, make_result, worker, customer, category, make_job):
        named = make_job(customer.id, category.id, broadcasting_phase=BroadcastPhase.CATEGORIZATION)
        orphan = make_job(customer.id, uuid.uuid4(), broadcasting_phase=BroadcastPhase.CATEGORIZATION)
        db.store.put(worker)
        db.execute.return_value = make_result(rows=[(named, category, "Aicha"), (orphan, None, None)])

        jobs = await service.get_worker_eligible_jobs(worker.id)

        assert jobs[0]["category_name"] == "Plumbing"
        assert jobs[0]["category_name_fr"] == "Plomberie"
        assert jobs[0]["customer_name"] == "Aicha"
        assert jobs[0]["has_subcategory"] is False
        assert jobs[0]["location"] == {"lat": 18.08, "lng": -15.97}
        assert jobs[1]["category_name"] == "Unknown Category"
        assert jobs[1]["customer_name"] == "Customer"


class TestAssignCategorizers:
    @pytest.mark.asyncio
    async def test_job_not_found(self, service):
        with pytest.raises(NotFoundError, match="Job not found"):
            await service.assign_categorizer_workers(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_already_assigned(self, service, db, customer, category, make_job):
        job = make_job(customer.id, category.id, categorizer_worker_ids=[uuid.uuid4()])
        db.store.put(job)

        with pytest.raises(ConflictError, match="Categorizers already assigned to this job"):
            await service.assign_categorizer_workers(job.id)

    @pytest.mark.asyncio
    async def test_category_without_subcategories_skips_voting(self, service, db, customer, category, make_job):
        job = make_job(customer.id, category.id)
        db.store.put(job)
        service.categories.list_subcategories = AsyncMock(return_value=[])
        service._broadcast_to_bidders = AsyncMock(return_value=3)

        result = await service.assign_categorizer_workers(job.id)

        assert result["skipped_categorization"] is True
        assert result["reason"] == "No subcategories exist for this category"
        assert job.subcategory_id == category.id
        assert job.broadcasting_phase == BroadcastPhase.BIDDING
        assert job.categorizer_group_size == 0
        service._broadcast_to_bidders.assert_awaited_once_with(job, [category.id])
        db.commit.assert_awaited()

    @pytest.mark.asyncio
    async def test_no_eligible_workers(self, service, db, customer, category, make_category, make_job):
        job = make_job(customer.id, category.id)
        db.store.put(job)
        service.categories.list_subcategories = AsyncMock(return_value=[make_category(category.id)])
        service._eligible_worker_ids = AsyncMock(return_value=set())

        with pytest.raises(NotFoundError, match="No eligible workers found for this category"):
            await service.assign_categorizer_workers(job.id)

    @pytest.mark.asyncio
    async def test_experts_then_random_fill(self, service, db, customer, category, make_category, make_job):
        job = make_job(customer.id, category.id)
        db.store.put(job)
        experts = [uuid.uuid4(), uuid.uuid4()]
        others = [uuid.uuid4() for _ in range(6)]
        service.categories.list_subcategories = AsyncMock(return_value=[make_category(category.id)])
        service._eligible_worker_ids = AsyncMock(return_value=set(experts + others))
        service._expert_ids = AsyncMock(return_value=experts + [uuid.uuid4()])
        service._send_job_to_worker_chat = AsyncMock()

        result = await service.assign_categorizer_workers(job.id)

        assert result["target_group_size"] == 6
        assert result["selected_count"] == 6
        assert result["expert_count"] == 2
        assert result["random_count"] == 4
        assert set(experts) <= set(job.categorizer_worker_ids)
        assert job.broadcasting_phase == BroadcastPhase.CATEGORIZATION
        assert job.categorizer_group_size == 6
        assert service._send_job_to_worker_chat.await_count == 6

    @pytest.mark.asyncio
    async def test_group_size_setting(self, service, db, customer, category, make_category, make_job):
        job = make_job(customer.id, category.id)
        db.store.put(job)
        service.categories.list_subcategories = AsyncMock(return_value=[make_category(category.id)])
        service._eligible_worker_ids = AsyncMock(return_value={uuid.uuid4() for _ in range(10)})
        service._expert_ids = AsyncMock(return_value=[])
        service._send_job_to_worker_chat = AsyncMock()

        with patch(
            "khidma.modules.worker_jobs.service.SystemSettingService.get_int",
            AsyncMock(return_value=4),
        ):
            result = await service.assign_categorizer_workers(job.id)

        assert result["target_group_size"] == 4
        assert result["selected_count"] == 4
        assert result["random_count"] == 4


class TestSubmitCategorization:
    @pytest.fixture
    def subcategory(self, make_category, category):
        return make_category(category.id, name_en="Leak repair")

    @pytest.fixture
    def voting_job(self, make_job, customer, category, worker):
        return make_job(
            customer.id,
            category.id,
            broadcasting_phase=BroadcastPhase.CATEGORIZATION,
            categorizer_worker_ids=[worker.id, uuid.uuid4(), uuid.uuid4()],
            categorizer_group_size=3,
        )

    @pytest.mark.asyncio
    async def test_cancelled_job(self, service, db, voting_job, worker, subcategory):
        voting_job.status = JobStatus.CANCELLED.value
        db.store.put(voting_job, worker)

        with pytest.raises(InvalidStateError, match="Job has been cancelled"):
            await service.submit_categorization(voting_job.id, worker.id, subcategory.id)

    @pytest.mark.asyncio
    async def test_already_categorized(self, service, db, voting_job, worker, subcategory):
        voting_job.subcategory_id = subcategory.id
        db.store.put(voting_job, worker)

        with pytest.raises(InvalidStateError, match="Job already categorized"):
            await service.submit_categorization(voting_job.id, worker.id, subcategory.id)

    @pytest.mark.asyncio
    async def test_wrong_phase(self, service, db, voting_job, worker, subcategory):
        voting_job.broadcasting_phase = BroadcastPhase.NEW
        db.store.put(voting_job, worker)

        with pytest.raises(InvalidStateError, match="Job not in categorization phase"):
            await service.submit_categorization(voting_job.id, worker.id, subcategory.id)

    @pytest.mark.asyncio
    async def test_outsider_cannot_vote(self, service, db, voting_job, make_user, subcategory):
        outsider = make_user(UserType.WORKER)
        db.store.put(voting_job, outsider)

        with pytest.raises(ForbiddenError, match="Worker not authorized to categorize this job"):
            await service.submit_categorization(voting_job.id, outsider.id, subcategory.id)

    @pytest.mark.asyncio
    async def test_second_vote_rejected(self, service, db, make_result, voting_job, worker, subcategory):
        db.store.put(voting_job, worker, subcategory)
        db.execute.return_value = make_result([uuid.uuid4()])

        with pytest.raises(ConflictError, match="Worker already submitted categorization"):
            await service.submit_categorization(voting_job.id, worker.id, subcategory.id)

    @pytest.mark.asyncio
    async def test_unknown_subcategory(self, service, db, voting_job, worker):
        db.store.put(voting_job, worker)

        with pytest.raises(NotFoundError, match="Subcategory not found"):
            await service.submit_categorization(voting_job.id, worker.id, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_foreign_subcategory(self, service, db, voting_job, worker, make_category):
        foreign = make_category(uuid.uuid4())
        db.store.put(voting_job, worker, foreign)

        with pytest.raises(ValidationError, match="Subcategory does not belong to job category"):
            await service.submit_categorization(voting_job.id, worker.id, foreign.id)

    @pytest.mark.asyncio
    async def test_waiting_updates_voter_bubble(
        self, service, db, voting_job, worker, subcategory, make_message
    ):
        db.store.put(voting_job, worker, subcategory)
        bubble = worker_bubble(make_message, voting_job.id, worker.id)
        service.analyze_categorization_votes = AsyncMock(return_value=analyze_votes([subcategory.id], 3, 3))
        service.get_worker_job_bubble = AsyncMock(return_value=bubble)
        service._broadcast_to_bidders = AsyncMock()

        result = await service.submit_categorization(voting_job.id, worker.id, subcategory.id)

        assert result["result"] == "waiting"
        assert result["current_votes"] == 1
        assert result["majority_threshold"] == 2
        assert isinstance(db.added[0], JobCategorization)
        job_data = bubble.metadata_["jobData"]
        assert job_data["hasVoted"] is True
        assert job_data["votedSubcategoryId"] == str(subcategory.id)
        assert job_data["votingProgress"] == {"currentVotes": 1, "totalCategorizers": 3, "majorityThreshold": 2}
        service._broadcast_to_bidders.assert_not_awaited()
        db.get.assert_any_await(Job, voting_job.id, populate_existing=True, with_for_update=True)

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_vote_is_conflict(self, service, db, voting_job, worker, subcategory):
        db.store.put(voting_job, worker, subcategory)
        db.flush.side_effect = IntegrityError(
            "INSERT INTO job_categorization", {}, Exception("uq_job_categorization_job_worker")
        )

        with pytest.raises(ConflictError, match="Worker already submitted categorization"):
            await service.submit_categorization(voting_job.id, worker.id, subcategory.id)
        db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_majority_opens_bidding(self, service, db, voting_job, worker, subcategory, make_message):
        db.store.put(voting_job, worker, subcategory)
        bubble = worker_bubble(make_message, voting_job.id, worker.id)
        service.analyze_categorization_votes = AsyncMock(
            return_value=analyze_votes([subcategory.id, subcategory.id], 3, 3)
        )
        service.get_worker_job_bubble = AsyncMock(return_value=bubble)
        service._broadcast_to_bidders = AsyncMock(return_value=5)

        result = await service.submit_categorization(voting_job.id, worker.id, subcategory.id)

        assert result["result"] == "majority"
        assert result["subcategory_id"] == subcategory.id
        assert voting_job.subcategory_id == subcategory.id
        assert voting_job.broadcasting_phase == BroadcastPhase.BIDDING
        assert bubble.metadata_["jobData"]["hasSubcategory"] is True
        assert bubble.metadata_["jobData"]["broadcastingPhase"] == 2
        service._broadcast_to_bidders.assert_awaited_once_with(voting_job, [subcategory.id])
        db.commit.assert_awaited()

    @pytest.mark.asyncio
    async def test_split_vote_becomes_tie(self, service, db, voting_job, worker, subcategory, make_category):
        other_a, other_b = make_category(voting_job.category_id), make_category(voting_job.category_id)
        db.store.put(voting_job, worker, subcategory)
        service.analyze_categorization_votes = AsyncMock(
            return_value=analyze_votes([other_a.id, other_b.id, subcategory.id], 3, 3)
        )
        service.get_worker_job_bubble = AsyncMock(return_value=None)
        service._broadcast_to_bidders = AsyncMock(return_value=4)

        result = await service.submit_categorization(voting_job.id, worker.id, subcategory.id)

        assert result["result"] == "tie"
        assert result["tied_subcategories"] == [other_a.id, other_b.id, subcategory.id]
        assert voting_job.subcategory_ids == [other_a.id, other_b.id, subcategory.id]
        assert voting_job.subcategory_id is None
        assert voting_job.broadcasting_phase == BroadcastPhase.BIDDING
        service._broadcast_to_bidders.assert_awaited_once_with(
            voting_job, [other_a.id, other_b.id, subcategory.id]
        )

    @pytest.mark.asyncio
    async def test_plurality_wins_when_everyone_voted(
        self, service, db, voting_job, worker, subcategory, make_category
    ):
        other = make_category(voting_job.category_id)
        voting_job.categorizer_worker_ids = [worker.id] + [uuid.uuid4() for _ in range(3)]
        voting_job.categorizer_group_size = 4
        db.store.put(voting_job, worker, subcategory)
        service.analyze_categorization_votes = AsyncMock(
            return_value=analyze_votes([subcategory.id, other.id, subcategory.id, uuid.uuid4()], 4, 4)
        )
        service.get_worker_job_bubble = AsyncMock(return_value=None)
        service._broadcast_to_bidders = AsyncMock(return_value=0)

        result = await service.submit_categorization(voting_job.id, worker.id, subcategory.id)

        assert result["result"] == "majority"
        assert voting_job.subcategory_id == subcategory.id


class TestHandleTie:
    @pytest.mark.asyncio
    async def test_keeps_order_and_broadcasts(self, service, db, customer, category, make_job):
        job = make_job(customer.id, category.id, broadcasting_phase=BroadcastPhase.CATEGORIZATION)
        db.store.put(job)
        ids = [uuid.uuid4(), uuid.uuid4()]
        service._broadcast_to_bidders = AsyncMock(return_value=7)

        result = await service.handle_tie_categorization(job.id, ids)

        assert result == {"success": True, "subcategory_ids": ids, "bidders_notified": 7}
        assert job.subcategory_ids == ids
        assert job.broadcasting_phase == BroadcastPhase.BIDDING

    @pytest.mark.asyncio
    async def test_broadcast_failure_propagates(self, service, db, customer, category, make_job):
        job = make_job(customer.id, category.id)
        db.store.put(job)
        service._broadcast_to_bidders = AsyncMock(side_effect=NotFoundError("Category not found"))

        with pytest.raises(NotFoundError):
            await service.handle_tie_categorization(job.id, [uuid.uuid4()])
        db.commit.assert_not_awaited()


class TestAssignBidders:
    @pytest.mark.asyncio
    async def test_worker_in_two_tied_subcategories_notified_once(
        self, service, db, make_result, customer, worker, category, make_category, make_job, make_user, make_chat
    ):
        other = make_user(UserType.WORKER, name="Moussa")
        first, second = make_category(category.id), make_category(category.id)
        job = make_job(
            customer.id,
            category.id,
            broadcasting_phase=BroadcastPhase.BIDDING,
            subcategory_ids=[first.id, second.id],
        )
        db.store.put(job, worker, other, category)
        db.execute.side_effect = [
            make_result([worker.id, other.id, worker.id]),
            make_result(),
            make_result(),
            make_result(),
            make_result(),
        ]
        service.chats.get_or_create_worker_category_chat = AsyncMock(
            side_effect=lambda worker_id, category_id, commit=False: make_chat(category_id, worker_id=worker_id)
        )
        service.messages.add_message = AsyncMock()

        notified = await service.assign_bidders_to_job(job.id, [first.id, second.id])

        assert notified == 2
        sent = service.messages.add_message.await_args_list
        recipients = [call.args[1] for call in sent]
        assert recipients.count(worker.id) == 1
        assert set(recipients) == {worker.id, other.id}
        assert all(call.args[2] == BubbleType.WORKER_JOB for call in sent)
        db.commit.assert_awaited_once()


class TestSendJobToWorkerChat:
    @pytest.mark.asyncio
    async def test_unapproved_worker(self, service, db, customer, category, make_job, make_user):
        pending = make_user(UserType.WORKER, approved=False)
        job = make_job(customer.id, category.id)
        db.store.put(job, pending, category)

        with pytest.raises(ForbiddenError):
            await service.send_job_to_worker_chat(job.id, pending.id)

    @pytest.mark.asyncio
    async def test_existing_bubble_is_reused(
        self, service, db, make_result, customer, worker, category, make_job, make_chat, make_message
    ):
        job = make_job(customer.id, category.id)
        chat = make_chat(category.id, worker_id=worker.id)
        existing = worker_bubble(make_message, job.id, worker.id)
        db.store.put(job, worker, category)
        service.chats.get_or_create_worker_category_chat = AsyncMock(return_value=chat)
        service.messages.add_message = AsyncMock()
        db.execute.return_value = make_result([existing])

        assert await service.send_job_to_worker_chat(job.id, worker.id) is existing
        service.messages.add_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bubble_carries_job_and_bid_data(
        self, service, db, customer, worker, category, make_job, make_chat
    ):
        job = make_job(customer.id, category.id, broadcasting_phase=BroadcastPhase.BIDDING)
        chat = make_chat(category.id, worker_id=worker.id)
        bid = Bid(
            id=uuid.uuid4(),
            job_id=job.id,
            worker_id=worker.id,
            amount=1300,
            equipment_cost=200,
            service_fee=100,
            status=BidStatus.PENDING.value,
            created_at=utc_now(),
        )
        db.store.put(job, worker, category)
        service.chats.get_or_create_worker_category_chat = AsyncMock(return_value=chat)
        service._get_bid = AsyncMock(return_value=bid)
        service.messages.add_message = AsyncMock()

        await service.send_job_to_worker_chat(job.id, worker.id)

        args, kwargs = service.messages.add_message.await_args
        assert args[:4] == (chat.id, worker.id, BubbleType.WORKER_JOB, str(job.id))
        metadata = kwargs["metadata"]
        assert metadata["bubbleType"] == "worker_job_notification"
        assert metadata["broadcastingPhase"] == 2
        assert metadata["jobData"]["categoryName"] == "Plumbing"
        assert metadata["jobData"]["bidAmount"] == 1000
        assert metadata["jobData"]["bidTotalAmount"] == 1300
        assert metadata["jobData"]["bidStatus"] == "pending"


class TestValidateBidAmount:
    @pytest.mark.asyncio
    async def test_without_pricing(self, service):
        service.categories.get_category_pricing_baseline = AsyncMock(return_value=None)

        invalid = await service.validate_bid_amount(uuid.uuid4(), 0)
        valid = await service.validate_bid_amount(uuid.uuid4(), 50)

        assert invalid["is_valid"] is False
        assert invalid["reason"] == "Bid must be greater than 0"
        assert valid["is_valid"] is True
        assert valid["minimum_amount"] == 0

    @pytest.mark.asyncio
    async def test_against_baseline(self, service):
        service.categories.get_category_pricing_baseline = AsyncMock(
            return_value=SimpleNamespace(baseline_price=1000.0, minimum_percentage=70)
        )

        low = await service.validate_bid_amount(uuid.uuid4(), 699)
        ok = await service.validate_bid_amount(uuid.uuid4(), 700)

        assert low["is_valid"] is False
        assert low["reason"] == "Bid must be at least 700 (70% of baseline 1000)"
        assert ok["is_valid"] is True
        assert ok["minimum_amount"] == 700


class TestSubmitWorkerBid:
    @pytest.fixture
    def bidding_job(self, make_job, customer, category, make_category):
        return make_job(
            customer.id,
            category.id,
            broadcasting_phase=BroadcastPhase.BIDDING,
            subcategory_id=make_category(category.id).id,
        )

    @pytest.fixture(autouse=True)
    def _no_existing_bid(self, service):
        service._get_bid = AsyncMock(return_value=None)
        service.validate_bid_amount = AsyncMock(
            return_value={"is_valid": True, "minimum_amount": 0, "baseline_price": 0, "reason": None}
        )
        service.get_worker_job_bubble = AsyncMock(return_value=None)
        service.send_bid_to_customer = AsyncMock()

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, service, db, bidding_job, make_user):
        broke = make_user(UserType.WORKER, balance="0")
        db.store.put(bidding_job, broke)

        with pytest.raises(ForbiddenError, match="Insufficient balance to place bid"):
            await service.submit_worker_bid(bidding_job.id, broke.id, 1000)

    @pytest.mark.asyncio
    async def test_job_closed(self, service, db, bidding_job, worker):
        bidding_job.status = JobStatus.MATCHED.value
        db.store.put(bidding_job, worker)

        with pytest.raises(InvalidStateError, match="Job is no longer accepting bids"):
            await service.submit_worker_bid(bidding_job.id, worker.id, 1000)

    @pytest.mark.asyncio
    async def test_not_categorized(self, service, db, bidding_job, worker):
        bidding_job.subcategory_id = None
        db.store.put(bidding_job, worker)

        with pytest.raises(InvalidStateError, match="Job not yet categorized"):
            await service.submit_worker_bid(bidding_job.id, worker.id, 1000)

    @pytest.mark.asyncio
    async def test_duplicate_bid(self, service, db, bidding_job, worker):
        db.store.put(bidding_job, worker)
        service._get_bid = AsyncMock(return_value=object())

        with pytest.raises(ConflictError, match="Worker already placed a bid for this job"):
            await service.submit_worker_bid(bidding_job.id, worker.id, 1000)

    @pytest.mark.asyncio
    async def test_below_minimum(self, service, db, bidding_job, worker):
        db.store.put(bidding_job, worker)
        service.validate_bid_amount = AsyncMock(return_value={
            "is_valid": False,
            "minimum_amount": 700,
            "baseline_price": 1000,
            "reason": "Bid must be at least 700 (70% of baseline 1000)",
        })

        with pytest.raises(ValidationError, match="Bid must be at least 700"):
            await service.submit_worker_bid(bidding_job.id, worker.id, 500)

    @pytest.mark.asyncio
    async def test_bid_totals_and_bubble(self, service, db, bidding_job, worker, make_message):
        db.store.put(bidding_job, worker)
        bubble = worker_bubble(make_message, bidding_job.id, worker.id)
        service.get_worker_job_bubble = AsyncMock(return_value=bubble)

        result = await service.submit_worker_bid(bidding_job.id, worker.id, 1000, 200)

        assert result["service_fee"] == 100
        assert result["total_amount"] == 1300
        bid = db.added[0]
        assert isinstance(bid, Bid)
        assert bid.amount == 1300
        assert bid.status == BidStatus.PENDING.value
        assert bid.expires_at - bid.priority_window_end == timedelta(hours=22)
        job_data = bubble.metadata_["jobData"]
        assert job_data["bidStatus"] == "pending"
        assert job_data["bidAmount"] == 1000
        assert job_data["bidTotalAmount"] == 1300
        service.send_bid_to_customer.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_bubble_failure_does_not_fail_bid(self, service, db, bidding_job, worker):
        db.store.put(bidding_job, worker)
        service.send_bid_to_customer = AsyncMock(side_effect=NotFoundError("Customer chat not found"))

        result = await service.submit_worker_bid(bidding_job.id, worker.id, 1000)

        assert result["success"] is True
        assert result["total_amount"] == 1100
        db.commit.assert_awaited_once()
        db.rollback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bid_locks_job(self, service, db, bidding_job, worker):
        db.store.put(bidding_job, worker)

        await service.submit_worker_bid(bidding_job.id, worker.id, 1000)

        db.get.assert_any_await(Job, bidding_job.id, populate_existing=True, with_for_update=True)

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_bid_is_conflict(self, service, db, bidding_job, worker):
        db.store.put(bidding_job, worker)
        db.flush.side_effect = IntegrityError("INSERT INTO bid", {}, Exception("uq_bid_job_worker"))

        with pytest.raises(ConflictError, match="Worker already placed a bid for this job"):
            await service.submit_worker_bid(bidding_job.id, worker.id, 1000)
        db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_tie_job_prices_against_first_subcategory(self, service, db, bidding_job, worker):
        first, second = uuid.uuid4(), uuid.uuid4()
        bidding_job.subcategory_id = None
        bidding_job.subcategory_ids = [first, second]
        db.store.put(bidding_job, worker)

        await service.submit_worker_bid(bidding_job.id, worker.id, 1000)

        service.validate_bid_amount.assert_awaited_once_with(first, 1000)


class TestUpdateBidStatus:
    @pytest.mark.asyncio
    async def test_missing_bid(self, service):
        result = await service.update_worker_job_bid_status(uuid.uuid4(), BidStatus.ACCEPTED)

        assert result == {"success": False, "error": "Bid not found"}

    @pytest.mark.asyncio
    async def test_missing_bubble(self, service, db):
        bid = Bid(id=uuid.uuid4(), job_id=uuid.uuid4(), worker_id=uuid.uuid4())
        db.store.put(bid)
        service.get_worker_job_bubble = AsyncMock(return_value=None)

        result = await service.update_worker_job_bid_status(bid.id, BidStatus.ACCEPTED)

        assert result == {"success": False, "error": "Worker job message not found"}

    @pytest.mark.asyncio
    async def test_accepted(self, service, db, make_message):
        bid = Bid(id=uuid.uuid4(), job_id=uuid.uuid4(), worker_id=uuid.uuid4(), accepted_at=utc_now())
        bubble = worker_bubble(make_message, bid.job_id, bid.worker_id)
        db.store.put(bid)
        service.get_worker_job_bubble = AsyncMock(return_value=bubble)

        result = await service.update_worker_job_bid_status(bid.id, BidStatus.ACCEPTED)

        assert result["success"] is True
        assert result["new_status"] == "accepted"
        assert bubble.metadata_["jobData"]["bidStatus"] == "accepted"
        assert bubble.metadata_["jobData"]["bidAcceptedAt"] == bid.accepted_at.isoformat()


class TestBidOnDatabase:
    @pytest.mark.asyncio
    async def test_bid_survives_failed_customer_bubble(self, sqlite_db, make_user, make_job):
        worker = make_user(UserType.WORKER, balance="500")
        sqlite_db.add(worker)
        await sqlite_db.commit()
        job = make_job(
            uuid.uuid4(),
            uuid.uuid4(),
            broadcasting_phase=BroadcastPhase.BIDDING,
            subcategory_id=uuid.uuid4(),
        )

        service = WorkerJobService(sqlite_db)
        service._get_job = AsyncMock(return_value=job)
        service.validate_bid_amount = AsyncMock(
            return_value={"is_valid": True, "minimum_amount": 0, "baseline_price": 0, "reason": None}
        )
        service.get_worker_job_bubble = AsyncMock(return_value=None)

        async def customer_chat_missing(*args):
            await sqlite_db.execute(select(Bid.id))
            raise NotFoundError("Customer chat not found")

        service.send_bid_to_customer = AsyncMock(side_effect=customer_chat_missing)

        result = await service.submit_worker_bid(job.id, worker.id, 1000, 200)

        assert result["success"] is True
        assert result["total_amount"] == 1300
        assert result["expires_at"] > result["priority_window_end"]
        rows = (await sqlite_db.execute(select(Bid.id, Bid.amount))).all()
        assert [tuple(row) for row in rows] == [(result["bid_id"], 1300)]
