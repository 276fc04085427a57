from __future__ import annotations

import pytest
from celery.schedules import crontab
from django.conf import settings
from pydantic import ValidationError

from apps.rewards.config import PayoutSettings, get_payout_settings
from core.celery import app


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "PAYOUT_MODE",
        "PAYOUTS_QUEUE_ENABLED",
        "REWARD_TOKEN",
        "REWARD_TOTAL_POOL_UNITS",
        "REWARD_ALLOCATION_MODE",
        "REWARD_TOP_N",
        "PAYOUTS_MAX_ATTEMPTS",
        "PAYOUTS_BACKOFF_SECONDS",
        "PAYOUTS_WORKER_CONCURRENCY",
        "REWARD_WEEKLY_CRON",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_reads_environment(clean_env):
    clean_env.setenv("PAYOUT_MODE", " OnChain ")
    clean_env.setenv("PAYOUTS_QUEUE_ENABLED", "true")
    clean_env.setenv("REWARD_TOKEN", "eth")
    clean_env.setenv("REWARD_TOTAL_POOL_UNITS", "000123")
    clean_env.setenv("REWARD_ALLOCATION_MODE", "WEIGHTED")
    clean_env.setenv("REWARD_TOP_N", "25")

    config = PayoutSettings(_env_file=None)

    assert config.payout_mode == "onchain"
    assert config.queue_enabled is True
    assert config.reward_token == "ETH"
    assert config.total_pool == "123"
    assert config.total_pool_units == 123
    assert config.allocation_policy == "weighted"
    assert config.top_n == 25


def test_defaults(clean_env):
    config = PayoutSettings(_env_file=None)
    assert config.payout_mode == "custodial"
    assert config.queue_enabled is False
    assert config.max_attempts == 3
    assert config.backoff_seconds == 5
    assert config.total_pool_units == 0


def test_huge_pools_are_kept_exact(clean_env):
    clean_env.setenv("REWARD_TOTAL_POOL_UNITS", str(2**256 - 1))
    assert PayoutSettings(_env_file=None).total_pool_units == 2**256 - 1


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("PAYOUT_MODE", "paypal"),
        ("REWARD_TOKEN", "DOGE"),
        ("REWARD_ALLOCATION_MODE", "lottery"),
        ("REWARD_TOTAL_POOL_UNITS", "1.5"),
        ("REWARD_TOTAL_POOL_UNITS", "-10"),
        ("REWARD_TOP_N", "0"),
        ("PAYOUTS_MAX_ATTEMPTS", "0"),
        ("PAYOUTS_BACKOFF_SECONDS", "-1"),
        ("PAYOUTS_WORKER_CONCURRENCY", "0"),
        ("REWARD_WEEKLY_CRON", "weekly"),
        ("REWARD_WEEKLY_CRON", "5 0 * * 1 2026"),
    ],
)
def test_rejects_invalid_values(clean_env, name, value):
    clean_env.setenv(name, value)
    with pytest.raises(ValidationError):
        PayoutSettings(_env_file=None)


def test_worker_and_beat_settings(clean_env):
    clean_env.setenv("PAYOUTS_WORKER_CONCURRENCY", "12")
    clean_env.setenv("REWARD_WEEKLY_CRON", "  30   2 * *   1 ")

    config = PayoutSettings(_env_file=None)

    assert config.worker_concurrency == 12
    assert config.weekly_cron == "30 2 * * 1"


def test_celery_reads_payout_settings():
    payouts = get_payout_settings()
    minute, hour, day_of_month, month_of_year, day_of_week = payouts.weekly_cron.split()

    assert settings.CELERY_WORKER_CONCURRENCY == payouts.worker_concurrency
    assert app.conf.worker_concurrency == payouts.worker_concurrency
    entry = settings.CELERY_BEAT_SCHEDULE["rewards-weekly-close"]
    assert entry["task"] == "apps.rewards.tasks.weekly_close"
    assert entry["schedule"] == crontab(
        minute=minute,
        hour=hour,
        day_of_month=day_of_month,
        month_of_year=month_of_year,
        day_of_week=day_of_week,
    )
