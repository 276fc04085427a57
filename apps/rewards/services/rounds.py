from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from apps.rewards.config import PayoutSettings, get_payout_settings
from apps.rewards.models import RewardAllocation, RewardRound, RewardToken
from apps.rewards.services.allocation import (
    AllocationLine,
    AllocationPolicy,
    Winner,
    allocation_total,
    compute_allocations,
)
from apps.rewards.services.amounts import parse_smallest_units
from apps.rewards.services.identity import IdentityStore, get_identity_store
from apps.rewards.services.periods import period_bounds, previous_period_id
from apps.rewards.services.ranking import RankingStore, get_ranking_store
from apps.users.models import User

logger = logging.getLogger(__name__)


@dataclass
class RoundCloseResult:
    period_id: int
    token: str
    policy: str
    total_pool: int
    ranked: int
    winners: int
    skipped: bool


@dataclass
class AllocationSumCheck:
    period_id: int
    expected: int
    actual: int
    count: int

    @property
    def undistributed(self) -> bool:
        return self.count == 0 and self.expected > 0

    @property
    def ok(self) -> bool:
        return self.count == 0 or self.expected == self.actual


def _validate_period(period_id: int) -> int:
    try:
        period_bounds(period_id)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid period id: {period_id}") from exc
    return int(period_id)


def _validate_token(token: str) -> str:
    token = str(token or "").strip().upper()
    if token not in RewardToken.values:
        raise ValidationError(f"Unsupported reward token: {token}")
    return token


def _validate_policy(policy: str) -> str:
    policy = str(policy or "").strip().lower()
    if policy not in AllocationPolicy.values:
        raise ValidationError(f"Unsupported allocation policy: {policy}")
    return policy


def get_round(period_id: int) -> RewardRound:
    return RewardRound.objects.get(period_id=period_id)


def open_round(period_id: int, token: str, total_pool, policy: str = AllocationPolicy.EQUAL) -> RewardRound:
    period_id = _validate_period(period_id)
    token = _validate_token(token)
    pool = parse_smallest_units(total_pool)
    policy = _validate_policy(policy)
    if RewardRound.objects.filter(period_id=period_id).exists():
        raise ValidationError(f"Reward round {period_id} already exists.")
    reward_round = RewardRound.objects.create(
        period_id=period_id,
        token=token,
        total_pool=str(pool),
        allocation_policy=policy,
        status=RewardRound.Status.OPEN,
    )
    logger.info("rewards.round_opened", extra={"period_id": period_id, "token": token, "total_pool": str(pool)})
    return reward_round


def _ranked_winners(
    period_id: int,
    top: int,
    ranking: RankingStore,
    identity: IdentityStore,
) -> tuple[list, Dict[int, str]]:
    entries = ranking.top_k(period_id, top)
    wallets = identity.resolve_wallet_addresses(entry.recipient_id for entry in entries)
    return entries, wallets


def preview_winners(
    period_id: int,
    top: int,
    policy: Optional[str] = None,
    *,
    ranking: Optional[RankingStore] = None,
    identity: Optional[IdentityStore] = None,
) -> List[dict]:
    """
    Top-N entries joined to wallets. Recipients without a wallet are listed
    with an empty address; when ``policy`` is given and the round exists,
    eligible rows also carry the amount they would receive.
    """
    period_id = _validate_period(period_id)
    if top < 1:
        raise ValidationError("top must be >= 1.")
    entries, wallets = _ranked_winners(
        period_id,
        top,
        ranking or get_ranking_store(),
        identity or get_identity_store(),
    )
    amounts: Dict[int, int] = {}
    if policy:
        policy = _validate_policy(policy)
        reward_round = RewardRound.objects.filter(period_id=period_id).first()
        if reward_round is not None:
            eligible = [
                Winner(entry.recipient_id, wallets[entry.recipient_id], entry.score)
                for entry in entries
                if entry.recipient_id in wallets
            ]
            lines = compute_allocations(reward_round.total_pool_units, eligible, policy)
            amounts = {line.recipient_id: line.amount for line in lines}

    items = []
    for entry in entries:
        item = {
            "recipient_id": entry.recipient_id,
            "wallet_address": wallets.get(entry.recipient_id, ""),
            "score": entry.score,
        }
        if entry.recipient_id in amounts:
            item["amount"] = str(amounts[entry.recipient_id])
        items.append(item)
    return items


def _replace_allocations(reward_round: RewardRound, lines: Sequence[AllocationLine]) -> int:
    """Swap the period's allocation set. Must run inside a transaction."""
    locked = list(
        RewardAllocation.objects.select_for_update()
        .filter(period_id=reward_round.period_id)
        .values_list("payout_state", flat=True)
    )
    progressed = [state for state in locked if state != RewardAllocation.PayoutState.PENDING]
    if progressed:
        raise ValidationError(
            f"Allocations for period {reward_round.period_id} have already been dispatched "
            f"({len(progressed)} not pending); recomputation is refused."
        )
    RewardAllocation.objects.filter(period_id=reward_round.period_id).delete()
    rows = [
        RewardAllocation(
            round=reward_round,
            period_id=reward_round.period_id,
            recipient_id=line.recipient_id,
            wallet_address=line.wallet_address,
            amount=str(line.amount),
            payout_state=RewardAllocation.PayoutState.PENDING,
        )
        for line in lines
    ]
    if rows:
        RewardAllocation.objects.bulk_create(rows)
    return len(rows)


def _coerce_lines(raw_lines: Iterable) -> List[AllocationLine]:
    lines: List[AllocationLine] = []
    seen: set[int] = set()
    for raw in raw_lines:
        if isinstance(raw, AllocationLine):
            line = raw
        else:
            try:
                recipient_id = int(raw["recipient_id"])
            except (KeyError, TypeError, ValueError) as exc:
                raise ValidationError("Each allocation needs an integer recipient_id.") from exc
            line = AllocationLine(
                recipient_id=recipient_id,
                wallet_address=str(raw.get("wallet_address") or "").strip(),
                amount=parse_smallest_units(raw.get("amount")),
            )
        if line.amount < 0:
            raise ValidationError("Amounts must be non-negative.")
        if not line.wallet_address:
            raise ValidationError(f"Recipient {line.recipient_id} has no wallet address.")
        if line.recipient_id in seen:
            raise ValidationError(f"Duplicate recipient {line.recipient_id}.")
        seen.add(line.recipient_id)
        lines.append(line)
    return lines


def create_allocations(period_id: int, allocations: Iterable) -> int:
    """Replace the period's allocations with an explicit, exactly-summing set."""
    period_id = _validate_period(period_id)
    lines = _coerce_lines(allocations)

    known = set(User.objects.filter(id__in=[line.recipient_id for line in lines]).values_list("id", flat=True))
    unknown = sorted(line.recipient_id for line in lines if line.recipient_id not in known)
    if unknown:
        raise ValidationError(f"Unknown recipient(s): {', '.join(str(u) for u in unknown)}")

    with transaction.atomic():
        reward_round = RewardRound.objects.select_for_update().get(period_id=period_id)
        if reward_round.status != RewardRound.Status.OPEN:
            raise ValidationError(f"Reward round {period_id} is not open.")
        total = allocation_total(lines)
        if lines and total != reward_round.total_pool_units:
            raise ValidationError(
                f"Allocations sum to {total} but the pool for period {period_id} is {reward_round.total_pool_units}."
            )
        count = _replace_allocations(reward_round, lines)

    logger.info("rewards.allocations_created", extra={"period_id": period_id, "count": count})
    return count


def list_allocations(period_id: int) -> List[RewardAllocation]:
    rows = list(RewardAllocation.objects.select_related("round").filter(period_id=period_id))
    rows.sort(key=lambda row: (-row.amount_units, row.id))
    return rows


def finalize_round(period_id: int, merkle_root: str) -> RewardRound:
    merkle_root = str(merkle_root or "").strip()
    if not merkle_root:
        raise ValidationError("merkle_root is required.")
    with transaction.atomic():
        reward_round = RewardRound.objects.select_for_update().get(period_id=period_id)
        if reward_round.status == RewardRound.Status.FINALIZED:
            raise ValidationError(f"Reward round {period_id} is already finalized.")
        reward_round.status = RewardRound.Status.FINALIZED
        reward_round.merkle_root = merkle_root
        reward_round.finalized_at = timezone.now()
        reward_round.save(update_fields=["status", "merkle_root", "finalized_at", "updated_at"])
    logger.info("rewards.round_finalized", extra={"period_id": period_id, "merkle_root": merkle_root})
    return reward_round


def mark_allocation(
    period_id: int,
    recipient_id: int,
    payout_state: str,
    settlement_ref: Optional[str] = None,
) -> RewardAllocation:
    """Operator override of a single allocation's payout state."""
    if payout_state not in RewardAllocation.PayoutState.values:
        raise ValidationError(f"Invalid payout state: {payout_state}")
    settlement_ref = str(settlement_ref or "").strip()
    if payout_state == RewardAllocation.PayoutState.SENT and not settlement_ref:
        raise ValidationError("A settlement reference is required to mark an allocation as sent.")

    with transaction.atomic():
        allocation = RewardAllocation.objects.select_for_update().get(
            period_id=period_id,
            recipient_id=recipient_id,
        )
        previous = allocation.payout_state
        allocation.payout_state = payout_state
        update_fields = ["payout_state", "updated_at"]
        if settlement_ref:
            allocation.settlement_ref = settlement_ref
            update_fields.append("settlement_ref")
        if payout_state == RewardAllocation.PayoutState.SENT and allocation.sent_at is None:
            allocation.sent_at = timezone.now()
            update_fields.append("sent_at")
        if payout_state == RewardAllocation.PayoutState.CLAIMED:
            allocation.claimed_at = timezone.now()
            update_fields.append("claimed_at")
        allocation.save(update_fields=update_fields)

    logger.warning(
        "rewards.allocation_marked",
        extra={
            "period_id": period_id,
            "recipient_id": recipient_id,
            "from_state": previous,
            "to_state": payout_state,
        },
    )
    return allocation


def close_round(
    period_id: Optional[int] = None,
    *,
    config: Optional[PayoutSettings] = None,
    ranking: Optional[RankingStore] = None,
    identity: Optional[IdentityStore] = None,
    now: Optional[datetime] = None,
) -> RoundCloseResult:
    """
    Snapshot the period's leaderboard into an allocation table.

    Re-running before dispatch starts yields the same rows for the same
    leaderboard state; once any allocation has left ``pending`` the close
    is refused instead of wiping payout progress.
    """
    config = config or get_payout_settings()
    ranking = ranking or get_ranking_store()
    identity = identity or get_identity_store()
    period_id = _validate_period(period_id if period_id is not None else previous_period_id(now))

    entries, wallets = _ranked_winners(period_id, config.top_n, ranking, identity)
    winners = [
        Winner(entry.recipient_id, wallets[entry.recipient_id], entry.score)
        for entry in entries
        if entry.recipient_id in wallets
    ]
    total = config.total_pool_units
    lines = compute_allocations(total, winners, config.allocation_policy)

    with transaction.atomic():
        reward_round, created = RewardRound.objects.select_for_update().get_or_create(
            period_id=period_id,
            defaults={
                "token": config.reward_token,
                "total_pool": str(total),
                "allocation_policy": config.allocation_policy,
                "status": RewardRound.Status.OPEN,
            },
        )
        if not created:
            if reward_round.status != RewardRound.Status.OPEN:
                raise ValidationError(f"Reward round {period_id} is finalized; recomputation is refused.")
            reward_round.token = config.reward_token
            reward_round.total_pool = str(total)
            reward_round.allocation_policy = config.allocation_policy
            reward_round.save(update_fields=["token", "total_pool", "allocation_policy", "updated_at"])
        _replace_allocations(reward_round, lines)

    result = RoundCloseResult(
        period_id=period_id,
        token=config.reward_token,
        policy=config.allocation_policy,
        total_pool=total,
        ranked=len(entries),
        winners=len(lines),
        skipped=not lines,
    )
    if result.skipped:
        logger.warning(
            "rewards.round_closed_without_winners",
            extra={"period_id": period_id, "ranked": len(entries), "undistributed": str(total)},
        )
    else:
        logger.info(
            "rewards.round_closed",
            extra={"period_id": period_id, "winners": len(lines), "policy": config.allocation_policy},
        )
        verify_allocation_sum(period_id)
    return result


def verify_allocation_sum(period_id: int) -> AllocationSumCheck:
    """Compare stored allocations against the pool; mismatches are logged, never repaired."""
    reward_round = RewardRound.objects.get(period_id=period_id)
    amounts = list(RewardAllocation.objects.filter(period_id=period_id).values_list("amount", flat=True))
    check = AllocationSumCheck(
        period_id=period_id,
        expected=reward_round.total_pool_units,
        actual=sum(int(amount) for amount in amounts),
        count=len(amounts),
    )
    if not check.ok:
        logger.error(
            "rewards.allocation_sum_mismatch",
            extra={"period_id": period_id, "expected": str(check.expected), "actual": str(check.actual)},
        )
    return check
