from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional, Protocol

from django.conf import settings
from redis import Redis

from apps.rewards.services.periods import ranking_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RankedEntry:
    recipient_id: int
    score: float


class RankingStore(Protocol):
    def top_k(self, period_id: int, k: int) -> List[RankedEntry]: ...

    def rank_of(self, period_id: int, recipient_id: int) -> Optional[int]: ...

    def score_of(self, period_id: int, recipient_id: int) -> Optional[float]: ...


def _member_id(member) -> int:
    if isinstance(member, bytes):
        member = member.decode("utf-8")
    return int(member)


class RedisRankingStore:
    """
    Read-only view over the weekly leaderboard sorted sets. Ordering and
    tie-breaking are whatever the sorted set says.
    """

    def __init__(self, client: Redis) -> None:
        self.client = client

    def top_k(self, period_id: int, k: int) -> List[RankedEntry]:
        if k <= 0:
            return []
        rows = self.client.zrevrange(ranking_key(period_id), 0, k - 1, withscores=True)
        return [RankedEntry(recipient_id=_member_id(member), score=score) for member, score in rows]

    def rank_of(self, period_id: int, recipient_id: int) -> Optional[int]:
        rank = self.client.zrevrank(ranking_key(period_id), str(recipient_id))
        return None if rank is None else int(rank) + 1

    def score_of(self, period_id: int, recipient_id: int) -> Optional[float]:
        return self.client.zscore(ranking_key(period_id), str(recipient_id))


@lru_cache(maxsize=1)
def get_ranking_store() -> RedisRankingStore:
    url = getattr(settings, "RANKING_REDIS_URL", "redis://localhost:6379/0")
    return RedisRankingStore(Redis.from_url(url))
