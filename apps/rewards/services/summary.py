from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from redis.exceptions import RedisError

from apps.rewards.config import PayoutSettings, get_payout_settings
from apps.rewards.models import RewardAllocation, RewardRound
from apps.rewards.services.allocation import AllocationPolicy
from apps.rewards.services.amounts import human_amount
from apps.rewards.services.periods import current_period_id, period_bounds
from apps.rewards.services.ranking import RankingStore, get_ranking_store

logger = logging.getLogger(__name__)

POLICY_NOTES = "Top players are rewarded weekly. Distribution occurs automatically after the week closes."
HISTORY_MAX_LIMIT = 100


class RewardStatus:
    INELIGIBLE = "ineligible"
    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"


def _payout_ref(allocation: Optional[RewardAllocation]) -> Optional[dict]:
    if allocation is None or not allocation.settlement_ref:
        return None
    return {"type": "settlement", "ref": allocation.settlement_ref}


def _status_for(reward_round: Optional[RewardRound], allocation: Optional[RewardAllocation]) -> str:
    if reward_round is None:
        return RewardStatus.INELIGIBLE
    if allocation is not None:
        if allocation.payout_state in (RewardAllocation.PayoutState.SENT, RewardAllocation.PayoutState.CLAIMED):
            return RewardStatus.PAID
        if allocation.payout_state == RewardAllocation.PayoutState.FAILED:
            return RewardStatus.FAILED
    if reward_round.status == RewardRound.Status.FINALIZED:
        return RewardStatus.PROCESSING
    return RewardStatus.PENDING


def get_user_weekly_summary(
    user,
    now: Optional[datetime] = None,
    *,
    config: Optional[PayoutSettings] = None,
    ranking: Optional[RankingStore] = None,
) -> dict:
    config = config or get_payout_settings()
    period_id = current_period_id(now)
    start, end = period_bounds(period_id)
    reward_round = RewardRound.objects.filter(period_id=period_id).first()
    allocation = RewardAllocation.objects.filter(period_id=period_id, recipient=user).first()

    rank: Optional[int] = None
    points: Optional[int] = None
    try:
        store = ranking or get_ranking_store()
        rank = store.rank_of(period_id, user.id)
        score = store.score_of(period_id, user.id)
        points = None if score is None else int(round(score))
    except (RedisError, OSError) as exc:
        logger.warning("rewards.ranking_unavailable", extra={"period_id": period_id, "error": str(exc)})

    if reward_round is not None:
        token = reward_round.token
        policy = reward_round.allocation_policy
        pool_units = reward_round.total_pool_units
    else:
        token = config.reward_token
        policy = config.allocation_policy
        pool_units = config.total_pool_units

    estimate: Optional[str] = None
    if reward_round is not None and rank is not None and points is not None:
        if policy == AllocationPolicy.EQUAL and rank <= config.top_n:
            estimate = human_amount(pool_units // config.top_n, token)
        # Weighted shares depend on the closing scores of every winner; no estimate.

    return {
        "period_id": period_id,
        "week_start": start.isoformat(),
        "week_end": end.isoformat(),
        "pool_token": token,
        "pool_total": human_amount(pool_units, token),
        "allocation_policy": policy,
        "rank": rank,
        "points": points,
        "estimate": estimate,
        "status": _status_for(reward_round, allocation),
        "payout_ref": _payout_ref(allocation),
    }


def get_user_payout_history(user, cursor: Optional[int] = None, limit: int = 20) -> dict:
    """Newest first; ``cursor`` is the last period id already seen."""
    limit = max(1, min(int(limit), HISTORY_MAX_LIMIT))
    queryset = RewardAllocation.objects.select_related("round").filter(recipient=user)
    if cursor is not None:
        queryset = queryset.filter(period_id__lt=int(cursor))
    rows = list(queryset.order_by("-period_id")[: limit + 1])

    items = []
    for row in rows[:limit]:
        start, end = period_bounds(row.period_id)
        status = RewardStatus.PAID if row.payout_state == RewardAllocation.PayoutState.SENT else row.payout_state
        items.append(
            {
                "period_id": row.period_id,
                "week_start": start.isoformat(),
                "week_end": end.isoformat(),
                "token": row.round.token,
                "amount": human_amount(row.amount_units, row.round.token),
                "status": status,
                "ref": _payout_ref(row),
                "sent_at": row.sent_at.isoformat() if row.sent_at else None,
                "claimed_at": row.claimed_at.isoformat() if row.claimed_at else None,
            }
        )
    next_cursor = rows[limit - 1].period_id if len(rows) > limit else None
    return {"items": items, "next_cursor": next_cursor}


def get_policy(config: Optional[PayoutSettings] = None) -> dict:
    config = config or get_payout_settings()
    return {
        "schedule_cron": config.weekly_cron,
        "top_n": config.top_n,
        "token": config.reward_token,
        "allocation_policy": config.allocation_policy,
        "notes": POLICY_NOTES,
    }
