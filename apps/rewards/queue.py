from __future__ import annotations

import logging
from typing import Any, Optional

from celery import Task
from django.core.cache import cache
from kombu.exceptions import ChannelError, OperationalError

from apps.rewards.config import PayoutSettings, get_payout_settings
from core.celery import app as celery_app

logger = logging.getLogger(__name__)

DEDUPE_PREFIX = "payouts:dedupe:"


def dispatch_job_id(period_id: int) -> str:
    return f"dispatch:{int(period_id)}"


def allocation_job_id(allocation_id: int) -> str:
    return f"alloc:{int(allocation_id)}"


def backoff_delay(base_seconds: int, retries: int) -> int:
    """Exponential backoff without jitter: base, 2*base, 4*base, ..."""
    return int(base_seconds) * (2 ** max(int(retries), 0))


def release_dedupe_key(dedupe_key: str) -> None:
    cache.delete(DEDUPE_PREFIX + dedupe_key)


class PayoutQueue:
    """
    Thin wrapper over the Celery app for payout jobs.

    Job ids double as dedupe keys: a key is claimed in the shared cache on
    submit and released when the job reaches a terminal outcome, so a
    second submit for the same key while the first is in flight is a no-op.
    """

    def __init__(self, config: Optional[PayoutSettings] = None, app=None) -> None:
        self.config = config or get_payout_settings()
        self.app = app or celery_app

    @property
    def queue_name(self) -> str:
        return self.app.conf.task_default_queue or "celery"

    def is_available(self) -> bool:
        if not self.config.queue_enabled:
            return False
        if self.app.conf.task_always_eager:
            return True
        try:
            with self.app.connection_for_write() as conn:
                conn.ensure_connection(max_retries=1)
        except (OperationalError, OSError) as exc:
            logger.warning("payouts.queue_unavailable", extra={"error": str(exc)})
            return False
        return True

    def submit(
        self,
        task: Task,
        payload: dict[str, Any],
        dedupe_key: str,
        max_attempts: Optional[int] = None,
    ) -> bool:
        """Queue ``task`` under ``dedupe_key``; returns False when the key is already held."""
        cache_key = DEDUPE_PREFIX + dedupe_key
        ttl = self.config.dedupe_ttl_seconds or None
        if not cache.add(cache_key, "1", timeout=ttl):
            logger.info("payouts.job_deduplicated", extra={"job_id": dedupe_key, "task": task.name})
            return False

        kwargs = dict(payload)
        if max_attempts is not None:
            kwargs["max_attempts"] = max_attempts
        try:
            task.apply_async(kwargs=kwargs, task_id=dedupe_key, queue=self.queue_name)
        except (OperationalError, OSError):
            cache.delete(cache_key)
            raise
        logger.info("payouts.job_submitted", extra={"job_id": dedupe_key, "task": task.name})
        return True

    def release(self, dedupe_key: str) -> None:
        release_dedupe_key(dedupe_key)

    def depth(self) -> dict[str, Optional[int]]:
        """Best-effort job counts; unknown values are reported as None."""
        counts: dict[str, Optional[int]] = {
            "waiting": None,
            "active": None,
            "reserved": None,
            "scheduled": None,
        }
        if self.app.conf.task_always_eager:
            return {key: 0 for key in counts}

        try:
            with self.app.connection_for_read() as conn:
                declared = conn.default_channel.queue_declare(queue=self.queue_name, passive=True)
                counts["waiting"] = int(declared.message_count)
        except (ChannelError, OperationalError, OSError) as exc:
            logger.warning("payouts.queue_depth_failed", extra={"error": str(exc)})

        inspector = self.app.control.inspect(timeout=1.0)
        for key, method in (
            ("active", inspector.active),
            ("reserved", inspector.reserved),
            ("scheduled", inspector.scheduled),
        ):
            try:
                replies = method() or {}
            except (OperationalError, OSError) as exc:
                logger.warning("payouts.queue_inspect_failed", extra={"what": key, "error": str(exc)})
                continue
            counts[key] = sum(len(items or []) for items in replies.values())
        return counts
