from __future__ import annotations

from datetime import datetime
from datetime import timezone as dt_timezone

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from apps.rewards.models import RewardAllocation
from apps.rewards.services import rounds, summary
from apps.rewards.tests.conftest import FakeRankingStore, make_config, make_user

NOW = datetime(2025, 9, 3, 12, 0, tzinfo=dt_timezone.utc)
PERIOD = 202536


def _wallet(n: int) -> str:
    return f"0x{n:040x}"


class BrokenRankingStore(FakeRankingStore):
    def rank_of(self, period_id, recipient_id):
        raise RedisConnectionError("connection refused")


@pytest.mark.django_db
def test_summary_without_round_is_ineligible_and_uses_configured_pool():
    user = make_user("s1", _wallet(1))
    config = make_config(total_pool="2500000", reward_token="USDC")

    data = summary.get_user_weekly_summary(user, NOW, config=config, ranking=FakeRankingStore())

    assert data["period_id"] == PERIOD
    assert data["week_start"] == "2025-09-01"
    assert data["week_end"] == "2025-09-08"
    assert data["pool_total"] == "2.5"
    assert data["status"] == summary.RewardStatus.INELIGIBLE
    assert data["rank"] is None
    assert data["estimate"] is None
    assert data["payout_ref"] is None


@pytest.mark.django_db
def test_summary_equal_estimate_only_inside_top_n():
    inside = make_user("s2", _wallet(2))
    outside = make_user("s3", _wallet(3))
    rounds.open_round(PERIOD, "ETH", str(3 * 10**18))
    ranking = FakeRankingStore({PERIOD: [(inside.id, 90.4), (outside.id, 10)]})
    config = make_config(top_n=1)

    first = summary.get_user_weekly_summary(inside, NOW, config=config, ranking=ranking)
    second = summary.get_user_weekly_summary(outside, NOW, config=config, ranking=ranking)

    assert first["rank"] == 1
    assert first["points"] == 90
    assert first["estimate"] == "3"
    assert first["status"] == summary.RewardStatus.PENDING
    assert second["rank"] == 2
    assert second["estimate"] is None


@pytest.mark.django_db
def test_summary_weighted_round_has_no_estimate():
    user = make_user("s4", _wallet(4))
    rounds.open_round(PERIOD, "USDC", "1000", "weighted")
    ranking = FakeRankingStore({PERIOD: [(user.id, 5)]})

    data = summary.get_user_weekly_summary(user, NOW, config=make_config(), ranking=ranking)

    assert data["allocation_policy"] == "weighted"
    assert data["rank"] == 1
    assert data["estimate"] is None


@pytest.mark.django_db
def test_summary_status_follows_allocation_state():
    user = make_user("s5", _wallet(5))
    rounds.open_round(PERIOD, "USDC", "100")
    rounds.create_allocations(PERIOD, [{"recipient_id": user.id, "wallet_address": _wallet(5), "amount": "100"}])
    config = make_config()
    ranking = FakeRankingStore()

    RewardAllocation.objects.filter(recipient=user).update(payout_state=RewardAllocation.PayoutState.FAILED)
    assert summary.get_user_weekly_summary(user, NOW, config=config, ranking=ranking)["status"] == "failed"

    rounds.mark_allocation(PERIOD, user.id, "sent", "0xsettled")
    data = summary.get_user_weekly_summary(user, NOW, config=config, ranking=ranking)
    assert data["status"] == summary.RewardStatus.PAID
    assert data["payout_ref"] == {"type": "settlement", "ref": "0xsettled"}


@pytest.mark.django_db
def test_summary_finalized_round_without_allocation_is_processing():
    user = make_user("s6", _wallet(6))
    rounds.open_round(PERIOD, "USDC", "100")
    rounds.finalize_round(PERIOD, "0xroot")

    data = summary.get_user_weekly_summary(user, NOW, config=make_config(), ranking=FakeRankingStore())

    assert data["status"] == summary.RewardStatus.PROCESSING


@pytest.mark.django_db
def test_summary_tolerates_ranking_outage():
    user = make_user("s7", _wallet(7))
    rounds.open_round(PERIOD, "USDC", "100")

    data = summary.get_user_weekly_summary(user, NOW, config=make_config(), ranking=BrokenRankingStore())

    assert data["rank"] is None
    assert data["points"] is None
    assert data["status"] == summary.RewardStatus.PENDING


@pytest.mark.django_db
def test_history_pages_with_period_cursor():
    user = make_user("h1", _wallet(8))
    periods = [202533, 202534, 202535, 202536, 202537]
    for period_id in periods:
        rounds.open_round(period_id, "USDC", "1000000")
        rounds.create_allocations(
            period_id,
            [{"recipient_id": user.id, "wallet_address": _wallet(8), "amount": "1000000"}],
        )

    first = summary.get_user_payout_history(user, limit=2)
    second = summary.get_user_payout_history(user, cursor=first["next_cursor"], limit=2)
    third = summary.get_user_payout_history(user, cursor=second["next_cursor"], limit=2)

    seen = [item["period_id"] for page in (first, second, third) for item in page["items"]]
    assert seen == [202537, 202536, 202535, 202534, 202533]
    assert first["next_cursor"] == 202536
    assert third["next_cursor"] is None
    assert first["items"][0]["amount"] == "1"
    assert first["items"][0]["status"] == "pending"


@pytest.mark.django_db
def test_history_only_returns_own_rows_and_caps_limit():
    user = make_user("h2", _wallet(9))
    other = make_user("h3", _wallet(10))
    rounds.open_round(PERIOD, "USDC", "10")
    rounds.create_allocations(
        PERIOD,
        [
            {"recipient_id": user.id, "wallet_address": _wallet(9), "amount": "4"},
            {"recipient_id": other.id, "wallet_address": _wallet(10), "amount": "6"},
        ],
    )

    data = summary.get_user_payout_history(user, limit=10_000)

    assert len(data["items"]) == 1
    assert data["items"][0]["amount"] == "0.000004"
    assert data["next_cursor"] is None


def test_policy_reflects_configuration():
    config = make_config(top_n=7, reward_token="ETH", weekly_cron="0 1 * * 1")
    data = summary.get_policy(config)
    assert data == {
        "schedule_cron": "0 1 * * 1",
        "top_n": 7,
        "token": "ETH",
        "allocation_policy": "equal",
        "notes": summary.POLICY_NOTES,
    }
