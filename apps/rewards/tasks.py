from __future__ import annotations

import logging

from celery import Task, shared_task

from apps.rewards.config import get_payout_settings
from apps.rewards.providers import PayoutProviderError, get_payout_provider
from apps.rewards.queue import backoff_delay, release_dedupe_key
from apps.rewards.services import dispatch, rounds

logger = logging.getLogger(__name__)


class PayoutJobTask(Task):
    """Releases the job's dedupe key once the job succeeds or finally fails."""

    def on_success(self, retval, task_id, args, kwargs):
        release_dedupe_key(task_id)

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        release_dedupe_key(task_id)
        logger.error(
            "payouts.job_failed",
            extra={"job_id": task_id, "task": self.name, "error": str(exc)},
        )


@shared_task(name="apps.rewards.tasks.weekly_close")
def weekly_close() -> dict:
    config = get_payout_settings()
    closed = rounds.close_round(config=config)
    if closed.skipped:
        logger.warning(
            "rewards.weekly_close_skipped",
            extra={"period_id": closed.period_id, "ranked": closed.ranked},
        )
        return {"close": closed.__dict__}
    result = dispatch.enqueue_dispatch(closed.period_id, config=config)
    logger.info(
        "rewards.weekly_close_done",
        extra={"period_id": closed.period_id, "winners": closed.winners, "queued": result.queued},
    )
    return {"close": closed.__dict__, "dispatch": result.as_dict()}


@shared_task(bind=True, base=PayoutJobTask, name="apps.rewards.tasks.dispatch_period")
def dispatch_period(self, period_id: int, mode: str | None = None, max_attempts: int | None = None) -> dict:
    result = dispatch.process_dispatch_period(period_id, mode, queued=True)
    return result.as_dict()


@shared_task(bind=True, base=PayoutJobTask, name="apps.rewards.tasks.send_allocation")
def send_allocation(
    self,
    period_id: int,
    allocation_id: int,
    mode: str | None = None,
    max_attempts: int | None = None,
) -> str:
    config = get_payout_settings()
    attempts = max_attempts or config.max_attempts
    provider = get_payout_provider(mode or config.payout_mode, config)
    try:
        return dispatch.process_send_allocation(allocation_id, provider)
    except PayoutProviderError as exc:
        retries = self.request.retries or 0
        if retries + 1 >= attempts:
            logger.error(
                "payouts.allocation_exhausted",
                extra={"period_id": period_id, "allocation_id": allocation_id, "attempts": attempts},
            )
            raise
        countdown = backoff_delay(config.backoff_seconds, retries)
        logger.warning(
            "payouts.allocation_retry",
            extra={"period_id": period_id, "allocation_id": allocation_id, "countdown": countdown},
        )
        raise self.retry(exc=exc, countdown=countdown, max_retries=attempts - 1)
