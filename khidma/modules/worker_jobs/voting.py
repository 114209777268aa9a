"""
Categorizer selection, vote counting and bid fee arithmetic.
"""
import math
import random
import uuid
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable


@dataclass(slots=True)
class VoteAnalysis:
    vote_distribution: dict[str, int]
    current_votes: int
    total_needed: int
    majority_threshold: int
    top_subcategories: list[uuid.UUID] = field(default_factory=list)
    has_decision: bool = False
    is_tie: bool = False
    has_all_votes: bool = False

    @property
    def winning_subcategory(self) -> uuid.UUID | None:
        if self.has_decision and not self.is_tie:
            return self.top_subcategories[0]
        return None


def majority_threshold(total: int) -> int:
    return total // 2 + 1


def analyze_votes(
    votes: Iterable[uuid.UUID],
    group_size: int | None,
    categorizer_count: int,
) -> VoteAnalysis:
    """
    Count subcategory votes against the categorizer group.

    The group size recorded at assignment wins over the current number of
    categorizers. Top subcategories keep first-vote order.
    """
    counts = Counter(votes)
    total = group_size or categorizer_count
    threshold = majority_threshold(total)
    current = sum(counts.values())

    top: list[uuid.UUID] = []
    max_votes = max(counts.values(), default=0)
    if max_votes:
        top = [subcategory_id for subcategory_id, count in counts.items() if count == max_votes]

    has_decision = max_votes >= threshold
    return VoteAnalysis(
        vote_distribution={str(subcategory_id): count for subcategory_id, count in counts.items()},
        current_votes=current,
        total_needed=total,
        majority_threshold=threshold,
        top_subcategories=top,
        has_decision=has_decision,
        is_tie=has_decision and len(top) > 1,
        has_all_votes=current == total,
    )


def select_categorizers(
    expert_ids: Iterable[uuid.UUID],
    eligible_ids: Iterable[uuid.UUID],
    target_size: int,
    rng: random.Random | None = None,
) -> tuple[list[uuid.UUID], int]:
    """
    Pick up to `target_size` categorizers, experts first.

    Experts outside the eligible set are ignored. Returns the selection and
    how many of its members are experts.
    """
    rng = rng or random.Random()
    eligible = list(dict.fromkeys(eligible_ids))
    eligible_set = set(eligible)

    experts = [worker_id for worker_id in dict.fromkeys(expert_ids) if worker_id in eligible_set]
    rng.shuffle(experts)
    selected = experts[:target_size]

    chosen = set(selected)
    others = [worker_id for worker_id in eligible if worker_id not in chosen]
    rng.shuffle(others)
    selected.extend(others[:max(target_size - len(selected), 0)])

    return selected, min(len(experts), target_size)


def service_fee(amount: float, fee_percentage: int) -> int:
    return math.floor(amount * fee_percentage / 100)


def calculate_bid_totals(amount: float, equipment_cost: float, fee_percentage: int) -> dict:
    fee = service_fee(amount, fee_percentage)
    return {
        "base_amount": amount,
        "equipment_cost": equipment_cost,
        "service_fee": fee,
        "total_amount": amount + equipment_cost + fee,
    }
