from __future__ import annotations

from typing import Dict, List, Optional

import pytest
from django.core.cache import cache

from apps.rewards.config import PayoutSettings
from apps.rewards.providers import PayoutMode, PayoutProvider, PayoutProviderError
from apps.rewards.services.ranking import RankedEntry
from apps.users.models import User


class FakeRankingStore:
    def __init__(self, boards: Optional[Dict[int, List[tuple]]] = None) -> None:
        self.boards = boards or {}

    def _board(self, period_id: int) -> List[tuple]:
        return sorted(self.boards.get(period_id, []), key=lambda row: -row[1])

    def top_k(self, period_id: int, k: int) -> List[RankedEntry]:
        return [RankedEntry(recipient_id, score) for recipient_id, score in self._board(period_id)[:k]]

    def rank_of(self, period_id: int, recipient_id: int) -> Optional[int]:
        for index, (member, _score) in enumerate(self._board(period_id)):
            if member == recipient_id:
                return index + 1
        return None

    def score_of(self, period_id: int, recipient_id: int) -> Optional[float]:
        for member, score in self._board(period_id):
            if member == recipient_id:
                return score
        return None


class RecordingProvider(PayoutProvider):
    """Succeeds unless told to fail; remembers every transfer it was asked for."""

    mode = PayoutMode.CUSTODIAL

    def __init__(self, failures: Optional[Dict[str, int]] = None, always_fail: tuple = ()) -> None:
        self.calls: List[tuple] = []
        self.failures = dict(failures or {})
        self.always_fail = set(always_fail)

    def transfer(self, token: str, destination: str, amount: int) -> str:
        self.calls.append((token, destination, amount))
        if destination in self.always_fail:
            raise PayoutProviderError(f"rail rejected {destination}")
        if self.failures.get(destination, 0) > 0:
            self.failures[destination] -= 1
            raise PayoutProviderError(f"timeout sending to {destination}")
        return f"ref-{len(self.calls)}"


def make_config(**overrides) -> PayoutSettings:
    base = {
        "payout_mode": "custodial",
        "queue_enabled": False,
        "reward_token": "USDC",
        "total_pool": "0",
        "allocation_policy": "equal",
        "top_n": 10,
        "max_attempts": 3,
        "backoff_seconds": 0,
    }
    base.update(overrides)
    return PayoutSettings().model_copy(update=base)


def make_user(handle: str, wallet: str = "", **extra) -> User:
    return User.objects.create_user(
        email=f"{handle}@example.com",
        password="pass1234",
        handle=handle,
        wallet_address=wallet,
        **extra,
    )


@pytest.fixture(autouse=True)
def _clear_cache():
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def ranking():
    return FakeRankingStore()


@pytest.fixture
def provider():
    return RecordingProvider()
