from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from typing import Callable, Optional

from django.db import transaction
from django.utils import timezone

from apps.rewards.config import PayoutSettings, get_payout_settings
from apps.rewards.models import RewardAllocation, RewardRound
from apps.rewards.providers import (
    PayoutConfigurationError,
    PayoutMode,
    PayoutProvider,
    PayoutProviderError,
    get_payout_provider,
)
from apps.rewards.queue import PayoutQueue, allocation_job_id, backoff_delay, dispatch_job_id

logger = logging.getLogger(__name__)

SENT = "sent"
SKIPPED = "skipped"

LAST_ERROR_MAX_LENGTH = 2000


@dataclass
class DispatchResult:
    period_id: int
    mode: str
    queued: bool
    deduplicated: bool = False
    selected: int = 0
    submitted: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


def _resolve_mode(mode: Optional[str], config: PayoutSettings) -> str:
    mode = str(mode or config.payout_mode).strip().lower()
    if mode not in PayoutMode.values:
        raise PayoutConfigurationError(f"Unknown payout mode: {mode}")
    return mode


def enqueue_dispatch(
    period_id: int,
    mode: Optional[str] = None,
    *,
    config: Optional[PayoutSettings] = None,
    queue: Optional[PayoutQueue] = None,
    provider: Optional[PayoutProvider] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> DispatchResult:
    """
    Accept a dispatch request for a period.

    With the queue available a single ``dispatch:<period>`` job is submitted
    (duplicates collapse into it); otherwise the whole dispatch runs in the
    caller. Either outcome means the request was accepted.
    """
    config = config or get_payout_settings()
    mode = _resolve_mode(mode, config)
    if not RewardRound.objects.filter(period_id=period_id).exists():
        raise RewardRound.DoesNotExist(f"Reward round {period_id} does not exist.")

    # Rail credentials are checked before anything is queued.
    provider = provider or get_payout_provider(mode, config)

    queue = queue or PayoutQueue(config)
    if queue.is_available():
        from apps.rewards.tasks import dispatch_period

        submitted = queue.submit(
            dispatch_period,
            {"period_id": period_id, "mode": mode},
            dispatch_job_id(period_id),
            max_attempts=config.max_attempts,
        )
        logger.info(
            "payouts.dispatch_enqueued",
            extra={"period_id": period_id, "mode": mode, "deduplicated": not submitted},
        )
        return DispatchResult(period_id=period_id, mode=mode, queued=True, deduplicated=not submitted)

    logger.info("payouts.dispatch_inline", extra={"period_id": period_id, "mode": mode})
    return process_dispatch_period(period_id, mode, config=config, provider=provider, sleep=sleep)


def dispatchable_allocation_ids(period_id: int) -> list[int]:
    return list(
        RewardAllocation.objects.filter(
            period_id=period_id,
            payout_state__in=RewardAllocation.DISPATCHABLE_STATES,
        )
        .order_by("id")
        .values_list("id", flat=True)
    )


def process_dispatch_period(
    period_id: int,
    mode: Optional[str] = None,
    *,
    config: Optional[PayoutSettings] = None,
    provider: Optional[PayoutProvider] = None,
    queue: Optional[PayoutQueue] = None,
    queued: bool = False,
    sleep: Callable[[float], None] = time.sleep,
) -> DispatchResult:
    config = config or get_payout_settings()
    mode = _resolve_mode(mode, config)
    allocation_ids = dispatchable_allocation_ids(period_id)
    result = DispatchResult(period_id=period_id, mode=mode, queued=queued, selected=len(allocation_ids))

    if queued:
        from apps.rewards.tasks import send_allocation

        queue = queue or PayoutQueue(config)
        for allocation_id in allocation_ids:
            submitted = queue.submit(
                send_allocation,
                {"period_id": period_id, "allocation_id": allocation_id, "mode": mode},
                allocation_job_id(allocation_id),
                max_attempts=config.max_attempts,
            )
            if submitted:
                result.submitted += 1
            else:
                result.skipped += 1
        logger.info("payouts.dispatch_fanned_out", extra=result.as_dict())
        return result

    provider = provider or get_payout_provider(mode, config)
    for allocation_id in allocation_ids:
        try:
            outcome = run_inline_with_retries(allocation_id, provider, config, sleep=sleep)
        except PayoutProviderError:
            result.failed += 1
            continue
        if outcome == SENT:
            result.sent += 1
        else:
            result.skipped += 1

    log = logger.warning if result.failed else logger.info
    log("payouts.dispatch_completed", extra=result.as_dict())
    return result


def run_inline_with_retries(
    allocation_id: int,
    provider: PayoutProvider,
    config: PayoutSettings,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    """Same attempt budget and backoff as the queued path, in the caller's thread."""
    attempts = config.max_attempts
    for attempt in range(attempts):
        try:
            return process_send_allocation(allocation_id, provider)
        except PayoutProviderError:
            if attempt + 1 >= attempts:
                logger.error(
                    "payouts.allocation_exhausted",
                    extra={"allocation_id": allocation_id, "attempts": attempts},
                )
                raise
            delay = backoff_delay(config.backoff_seconds, attempt)
            logger.warning(
                "payouts.allocation_retry",
                extra={"allocation_id": allocation_id, "attempt": attempt + 1, "countdown": delay},
            )
            if delay:
                sleep(delay)
    raise PayoutProviderError(f"allocation {allocation_id} was not attempted")


def process_send_allocation(allocation_id: int, provider: PayoutProvider) -> str:
    """
    Drive one allocation to ``sent``.

    The row stays locked for the length of the provider call, so at most one
    transfer per allocation is in flight. Rows outside pending/failed are
    skipped. Provider errors mark the row failed and are re-raised after the
    failure is committed.
    """
    error: Optional[Exception] = None
    with transaction.atomic():
        allocation = RewardAllocation.objects.select_for_update().select_related("round").get(id=allocation_id)
        if not allocation.is_dispatchable:
            logger.info(
                "payouts.allocation_skipped",
                extra={"allocation_id": allocation_id, "payout_state": allocation.payout_state},
            )
            return SKIPPED

        extra = {
            "allocation_id": allocation_id,
            "period_id": allocation.period_id,
            "recipient_id": allocation.recipient_id,
            "mode": provider.mode,
        }
        attempts = allocation.attempts + 1
        if allocation.amount_units == 0:
            settlement_ref = ""
        else:
            try:
                settlement_ref = provider.transfer(
                    allocation.round.token,
                    allocation.wallet_address,
                    allocation.amount_units,
                )
            except (PayoutProviderError, PayoutConfigurationError) as exc:
                error = exc

        if error is not None:
            RewardAllocation.objects.filter(id=allocation_id).update(
                payout_state=RewardAllocation.PayoutState.FAILED,
                attempts=attempts,
                last_error=str(error)[:LAST_ERROR_MAX_LENGTH],
                updated_at=timezone.now(),
            )
        else:
            # Only the writer that still sees a dispatchable row records the result.
            updated = RewardAllocation.objects.filter(
                id=allocation_id,
                payout_state__in=RewardAllocation.DISPATCHABLE_STATES,
            ).update(
                payout_state=RewardAllocation.PayoutState.SENT,
                settlement_ref=settlement_ref,
                attempts=attempts,
                last_error="",
                sent_at=timezone.now(),
                updated_at=timezone.now(),
            )
            if not updated:
                logger.error("payouts.allocation_sent_race_lost", extra={**extra, "settlement_ref": settlement_ref})
                return SKIPPED

    if error is not None:
        logger.warning("payouts.allocation_failed", extra={**extra, "attempts": attempts, "error": str(error)})
        raise error

    logger.info("payouts.allocation_sent", extra={**extra, "settlement_ref": settlement_ref})
    return SENT
