from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from fractions import Fraction
from typing import Iterable, List, Sequence, Union

from django.db import models

Score = Union[int, float, Decimal, Fraction, str]


class AllocationPolicy(models.TextChoices):
    EQUAL = "equal", "Equal split"
    WEIGHTED = "weighted", "Weighted by score"


@dataclass(frozen=True)
class Winner:
    recipient_id: int
    wallet_address: str
    score: Score = 0


@dataclass(frozen=True)
class AllocationLine:
    recipient_id: int
    wallet_address: str
    amount: int


def _exact_score(score: Score) -> Fraction:
    # Fraction(float) is exact for the binary value the ranking store returned.
    value = Fraction(str(score)) if isinstance(score, str) else Fraction(score)
    if value < 0:
        raise ValueError("Scores must be non-negative.")
    return value


def _equal(total: int, winners: Sequence[Winner]) -> List[AllocationLine]:
    # The floor remainder is handed out one unit at a time from the top of the
    # ranking, so no two winners differ by more than one unit.
    share, remainder = divmod(total, len(winners))
    return [
        AllocationLine(w.recipient_id, w.wallet_address, share + (1 if index < remainder else 0))
        for index, w in enumerate(winners)
    ]


def _weighted(total: int, winners: Sequence[Winner]) -> List[AllocationLine]:
    scores = [_exact_score(w.score) for w in winners]
    score_sum = sum(scores, Fraction(0))
    if score_sum == 0:
        return _equal(total, winners)

    lines: List[AllocationLine] = []
    distributed = 0
    for winner, score in zip(winners, scores):
        portion = int((score * total) // score_sum)
        distributed += portion
        lines.append(AllocationLine(winner.recipient_id, winner.wallet_address, portion))

    remainder = total - distributed
    if remainder:
        first = lines[0]
        lines[0] = AllocationLine(first.recipient_id, first.wallet_address, first.amount + remainder)
    return lines


def compute_allocations(
    total: int,
    winners: Sequence[Winner],
    policy: str = AllocationPolicy.EQUAL,
) -> List[AllocationLine]:
    """
    Split ``total`` smallest units across ``winners`` (already ranked and
    already filtered to resolvable wallets).

    Floor remainders go to the earliest winners in input order (one unit
    each under ``equal``, all of it to the first under ``weighted``), so the
    returned amounts sum to ``total`` exactly. An empty winner list
    yields an empty allocation; detecting the undistributed pool is the
    caller's job.
    """
    total = int(total)
    if total < 0:
        raise ValueError("Total pool must be non-negative.")
    if not winners:
        return []
    if policy == AllocationPolicy.WEIGHTED:
        return _weighted(total, winners)
    if policy == AllocationPolicy.EQUAL:
        return _equal(total, winners)
    raise ValueError(f"Unknown allocation policy: {policy}")


def allocation_total(lines: Iterable[AllocationLine]) -> int:
    return sum(line.amount for line in lines)
