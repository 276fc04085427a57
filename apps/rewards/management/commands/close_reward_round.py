from __future__ import annotations

from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand, CommandError
from redis.exceptions import RedisError

from apps.rewards.services.rounds import close_round


class Command(BaseCommand):
    help = "Snapshot a weekly leaderboard into reward allocations (defaults to last week)."

    def add_arguments(self, parser) -> None:
        parser.add_argument("--period", type=int, default=None, help="ISO period id, e.g. 202536.")

    def handle(self, *args, **options) -> None:
        try:
            result = close_round(options.get("period"))
        except ValidationError as exc:
            raise CommandError("; ".join(exc.messages)) from exc
        except RedisError as exc:
            raise CommandError(f"Ranking store is unavailable: {exc}") from exc

        self.stdout.write("close_reward_round:")
        self.stdout.write(f"- period_id={result.period_id}")
        self.stdout.write(f"- token={result.token} policy={result.policy} total_pool={result.total_pool}")
        self.stdout.write(f"- ranked={result.ranked} winners={result.winners}")
        if result.skipped:
            self.stdout.write(self.style.WARNING("No eligible winners; pool left undistributed."))
        else:
            self.stdout.write(self.style.SUCCESS("Allocations written."))
