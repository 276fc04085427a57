from __future__ import annotations

from unittest.mock import patch

import pytest
from django.core.cache import cache

from apps.rewards.models import RewardAllocation, RewardRound
from apps.rewards.queue import DEDUPE_PREFIX, PayoutQueue
from apps.rewards.services import rounds
from apps.rewards.services.dispatch import DispatchResult
from apps.rewards.services.rounds import RoundCloseResult
from apps.rewards.tasks import send_allocation, weekly_close
from apps.rewards.tests.conftest import FakeRankingStore, RecordingProvider, make_config, make_user

PERIOD = 202536


def test_weekly_close_closes_then_dispatches():
    config = make_config()
    closed = RoundCloseResult(
        period_id=PERIOD,
        token="USDC",
        policy="equal",
        total_pool=100,
        ranked=2,
        winners=2,
        skipped=False,
    )
    with patch("apps.rewards.tasks.get_payout_settings", return_value=config), patch(
        "apps.rewards.tasks.rounds.close_round", return_value=closed
    ) as mocked_close, patch(
        "apps.rewards.tasks.dispatch.enqueue_dispatch",
        return_value=DispatchResult(period_id=PERIOD, mode="custodial", queued=False, selected=2, sent=2),
    ) as mocked_dispatch:
        result = weekly_close()

    mocked_close.assert_called_once_with(config=config)
    mocked_dispatch.assert_called_once_with(PERIOD, config=config)
    assert result["close"]["winners"] == 2
    assert result["dispatch"]["sent"] == 2


@pytest.mark.django_db
def test_weekly_close_without_winners_records_round_and_skips_dispatch():
    config = make_config(
        queue_enabled=True,
        total_pool="5000",
        custodial_api_key="",
        custodial_wallet_id="",
        custodial_entity_secret="",
    )
    with patch("apps.rewards.tasks.get_payout_settings", return_value=config), patch(
        "apps.rewards.services.rounds.get_ranking_store", return_value=FakeRankingStore()
    ), patch("apps.rewards.services.rounds.previous_period_id", return_value=PERIOD), patch(
        "apps.rewards.tasks.dispatch_period.apply_async"
    ) as mocked_apply:
        result = weekly_close()

    assert "dispatch" not in result
    assert result["close"]["period_id"] == PERIOD
    assert result["close"]["skipped"] is True
    assert RewardRound.objects.filter(period_id=PERIOD).exists()
    assert RewardAllocation.objects.count() == 0
    mocked_apply.assert_not_called()
    assert cache.get(f"{DEDUPE_PREFIX}dispatch:{PERIOD}") is None


@pytest.mark.django_db
def test_send_allocation_with_unconfigured_rail_fails_and_releases_key():
    user = make_user("t1", "0x" + "01" * 20)
    rounds.open_round(PERIOD, "USDC", "10")
    rounds.create_allocations(PERIOD, [{"recipient_id": user.id, "wallet_address": user.wallet_address, "amount": "10"}])
    allocation = RewardAllocation.objects.get(period_id=PERIOD)
    config = make_config(queue_enabled=True, custodial_api_key="")

    with patch("apps.rewards.tasks.get_payout_settings", return_value=config), patch(
        "apps.rewards.tasks.logger"
    ) as mocked_logger:
        submitted = PayoutQueue(config).submit(
            send_allocation,
            {"period_id": PERIOD, "allocation_id": allocation.id},
            f"alloc:{allocation.id}",
        )

    assert submitted is True
    assert cache.get(f"{DEDUPE_PREFIX}alloc:{allocation.id}") is None
    assert mocked_logger.error.call_args[0][0] == "payouts.job_failed"
    allocation.refresh_from_db()
    assert allocation.payout_state == RewardAllocation.PayoutState.PENDING


@pytest.mark.django_db
def test_send_allocation_task_sends_once():
    user = make_user("t2", "0x" + "02" * 20)
    rounds.open_round(PERIOD, "ETH", "5")
    rounds.create_allocations(PERIOD, [{"recipient_id": user.id, "wallet_address": user.wallet_address, "amount": "5"}])
    allocation = RewardAllocation.objects.get(period_id=PERIOD)
    provider = RecordingProvider()

    with patch("apps.rewards.tasks.get_payout_settings", return_value=make_config()), patch(
        "apps.rewards.tasks.get_payout_provider", return_value=provider
    ):
        first = send_allocation.apply(kwargs={"period_id": PERIOD, "allocation_id": allocation.id})
        second = send_allocation.apply(kwargs={"period_id": PERIOD, "allocation_id": allocation.id})

    assert first.result == "sent"
    assert second.result == "skipped"
    assert provider.calls == [("ETH", user.wallet_address, 5)]

