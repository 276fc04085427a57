from __future__ import annotations

from io import StringIO
from unittest.mock import patch

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError
from redis.exceptions import ConnectionError as RedisConnectionError

from apps.rewards.models import RewardAllocation
from apps.rewards.services import rounds
from apps.rewards.tests.conftest import FakeRankingStore, RecordingProvider, make_config, make_user

PERIOD = 202536


def _wallet(n: int) -> str:
    return f"0x{n:040x}"


def _seed(amounts=("60", "40")):
    users = [make_user(f"c{i}", _wallet(i)) for i in range(1, len(amounts) + 1)]
    rounds.open_round(PERIOD, "USDC", str(sum(int(a) for a in amounts)))
    rounds.create_allocations(
        PERIOD,
        [{"recipient_id": u.id, "wallet_address": u.wallet_address, "amount": a} for u, a in zip(users, amounts)],
    )
    return users


@pytest.mark.django_db
def test_close_reward_round_command():
    users = [make_user("w1", _wallet(1)), make_user("w2", _wallet(2))]
    ranking = FakeRankingStore({PERIOD: [(users[0].id, 3), (users[1].id, 1)]})
    out = StringIO()

    with patch("apps.rewards.services.rounds.get_ranking_store", return_value=ranking), patch(
        "apps.rewards.services.rounds.get_payout_settings",
        return_value=make_config(total_pool="10", top_n=5),
    ):
        call_command("close_reward_round", "--period", str(PERIOD), stdout=out)

    assert "winners=2" in out.getvalue()
    assert RewardAllocation.objects.filter(period_id=PERIOD).count() == 2


@pytest.mark.django_db
def test_close_reward_round_command_reports_ranking_outage():
    with patch("apps.rewards.services.rounds.get_ranking_store", side_effect=RedisConnectionError("down")), patch(
        "apps.rewards.services.rounds.get_payout_settings",
        return_value=make_config(total_pool="10"),
    ):
        with pytest.raises(CommandError):
            call_command("close_reward_round", "--period", str(PERIOD), stdout=StringIO())


@pytest.mark.django_db
def test_dispatch_rewards_command_inline():
    _seed()
    provider = RecordingProvider()
    out = StringIO()

    with patch("apps.rewards.services.dispatch.get_payout_settings", return_value=make_config()), patch(
        "apps.rewards.services.dispatch.get_payout_provider", return_value=provider
    ):
        call_command("dispatch_rewards", str(PERIOD), stdout=out)

    assert "sent=2" in out.getvalue()
    assert len(provider.calls) == 2


@pytest.mark.django_db
def test_dispatch_rewards_command_failures():
    users = _seed()
    provider = RecordingProvider(always_fail={users[0].wallet_address})

    with patch("apps.rewards.services.dispatch.get_payout_settings", return_value=make_config(max_attempts=1)), patch(
        "apps.rewards.services.dispatch.get_payout_provider", return_value=provider
    ):
        with pytest.raises(CommandError):
            call_command("dispatch_rewards", str(PERIOD), stdout=StringIO())
        with pytest.raises(CommandError):
            call_command("dispatch_rewards", "202599", stdout=StringIO())


@pytest.mark.django_db
def test_invariant_check_passes_on_consistent_data():
    _seed()
    rounds.mark_allocation(PERIOD, RewardAllocation.objects.first().recipient_id, "sent", "0xok")
    out = StringIO()

    call_command("rewards_invariant_check", stdout=out)

    assert f"period={PERIOD}" in out.getvalue()
    assert "sent_without_timestamp=0" in out.getvalue()


@pytest.mark.django_db
def test_invariant_check_flags_tampering():
    _seed()
    RewardAllocation.objects.filter(amount="40").update(amount="39")
    RewardAllocation.objects.filter(amount="60").update(payout_state=RewardAllocation.PayoutState.SENT)

    with patch("apps.rewards.services.rounds.logger"):
        with pytest.raises(CommandError) as excinfo:
            call_command("rewards_invariant_check", "--period", str(PERIOD), stdout=StringIO())

    assert "sum_mismatch" in str(excinfo.value)
    assert "sent_without_timestamp=1" in str(excinfo.value)


@pytest.mark.django_db
def test_invariant_check_unknown_period():
    with pytest.raises(CommandError):
        call_command("rewards_invariant_check", "--period", "202540", stdout=StringIO())
