"""
Categorizer selection, vote counting and bid fee arithmetic.
"""
import random
import uuid

from khidma.modules.worker_jobs.voting import (
    analyze_votes,
    calculate_bid_totals,
    majority_threshold,
    select_categorizers,
    service_fee,
)


class TestAnalyzeVotes:
    def test_majority_reached(self):
        a, b = uuid.uuid4(), uuid.uuid4()
        analysis = analyze_votes([a, a, b, a, a], group_size=6, categorizer_count=6)

        assert analysis.majority_threshold == 4
        assert analysis.has_decision is True
        assert analysis.is_tie is False
        assert analysis.winning_subcategory == a
        assert analysis.vote_distribution == {str(a): 4, str(b): 1}
        assert analysis.has_all_votes is False

    def test_waiting_for_votes(self):
        a, b = uuid.uuid4(), uuid.uuid4()
        analysis = analyze_votes([a, a, b], group_size=6, categorizer_count=6)

        assert analysis.has_decision is False
        assert analysis.winning_subcategory is None
        assert analysis.current_votes == 3
        assert analysis.total_needed == 6

    def test_group_size_falls_back_to_categorizer_count(self):
        a = uuid.uuid4()
        analysis = analyze_votes([a, a], group_size=None, categorizer_count=3)

        assert analysis.total_needed == 3
        assert analysis.majority_threshold == 2
        assert analysis.winning_subcategory == a

    def test_top_subcategories_keep_first_vote_order(self):
        a, b, c = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
        analysis = analyze_votes([b, a, c], group_size=3, categorizer_count=3)

        assert analysis.top_subcategories == [b, a, c]
        assert analysis.has_all_votes is True
        assert analysis.has_decision is False

    def test_tie_between_subcategories_over_threshold(self):
        a, b = uuid.uuid4(), uuid.uuid4()
        analysis = analyze_votes([a, b, a, b], group_size=2, categorizer_count=2)

        assert analysis.has_decision is True
        assert analysis.is_tie is True
        assert analysis.winning_subcategory is None

    def test_no_votes(self):
        analysis = analyze_votes([], group_size=6, categorizer_count=6)

        assert analysis.top_subcategories == []
        assert analysis.vote_distribution == {}
        assert analysis.has_decision is False

    def test_majority_threshold(self):
        assert majority_threshold(1) == 1
        assert majority_threshold(4) == 3
        assert majority_threshold(5) == 3
        assert majority_threshold(6) == 4


class TestSelectCategorizers:
    def test_experts_fill_first(self):
        experts = [uuid.uuid4() for _ in range(2)]
        others = [uuid.uuid4() for _ in range(6)]

        selected, expert_count = select_categorizers(
            experts, experts + others, 6, rng=random.Random(7)
        )

        assert len(selected) == 6
        assert expert_count == 2
        assert set(experts) <= set(selected)
        assert selected[:2] == [e for e in selected if e in experts]

    def test_experts_capped_at_target(self):
        experts = [uuid.uuid4() for _ in range(8)]

        selected, expert_count = select_categorizers(experts, experts, 6, rng=random.Random(1))

        assert len(selected) == 6
        assert expert_count == 6
        assert set(selected) <= set(experts)

    def test_ineligible_experts_are_ignored(self):
        ineligible_expert = uuid.uuid4()
        eligible = [uuid.uuid4() for _ in range(3)]

        selected, expert_count = select_categorizers([ineligible_expert], eligible, 6)

        assert ineligible_expert not in selected
        assert expert_count == 0
        assert sorted(selected, key=str) == sorted(eligible, key=str)

    def test_fewer_eligible_than_target(self):
        eligible = [uuid.uuid4() for _ in range(3)]

        selected, _ = select_categorizers([], eligible, 10)

        assert len(selected) == 3
        assert len(set(selected)) == 3


class TestBidFees:
    def test_fee_is_floored(self):
        assert service_fee(999, 10) == 99
        assert service_fee(1000, 10) == 100

    def test_totals(self):
        totals = calculate_bid_totals(1000, 200, 10)

        assert totals == {
            "base_amount": 1000,
            "equipment_cost": 200,
            "service_fee": 100,
            "total_amount": 1300,
        }
