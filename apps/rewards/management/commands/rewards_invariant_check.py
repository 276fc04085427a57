from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from apps.rewards.models import RewardAllocation, RewardRound
from apps.rewards.services.rounds import verify_allocation_sum


class Command(BaseCommand):
    help = "Validate reward allocation invariants (read-only)."

    def add_arguments(self, parser) -> None:
        parser.add_argument("--period", type=int, default=None, help="Only check this period id.")

    def handle(self, *args, **options) -> None:
        failures: list[str] = []
        rounds = RewardRound.objects.order_by("period_id")
        if options.get("period") is not None:
            rounds = rounds.filter(period_id=options["period"])
            if not rounds.exists():
                raise CommandError(f"Reward round {options['period']} does not exist.")

        self.stdout.write("rewards_invariant_check:")
        for reward_round in rounds:
            check = verify_allocation_sum(reward_round.period_id)
            line = f"- period={check.period_id} allocations={check.count} pool={check.expected} allocated={check.actual}"
            if check.undistributed:
                line += " (undistributed)"
            self.stdout.write(line)
            if not check.ok:
                failures.append(f"sum_mismatch[{check.period_id}]={check.actual}!={check.expected}")

        orphaned = RewardAllocation.objects.exclude(period_id__in=RewardRound.objects.values("period_id"))
        mismatched_round = [
            allocation_id
            for allocation_id, period_id, round_period in RewardAllocation.objects.values_list(
                "id", "period_id", "round__period_id"
            )
            if period_id != round_period
        ]
        sent_without_timestamp = RewardAllocation.objects.filter(
            payout_state=RewardAllocation.PayoutState.SENT,
            sent_at__isnull=True,
        )
        orphaned_count = orphaned.count()
        sent_without_timestamp_count = sent_without_timestamp.count()
        if orphaned_count:
            failures.append(f"allocations_without_round={orphaned_count}")
        if mismatched_round:
            failures.append(f"allocations_with_mismatched_round={len(mismatched_round)}")
        if sent_without_timestamp_count:
            failures.append(f"sent_without_timestamp={sent_without_timestamp_count}")

        self.stdout.write(f"- allocations_without_round={orphaned_count}")
        self.stdout.write(f"- allocations_with_mismatched_round={len(mismatched_round)}")
        self.stdout.write(f"- sent_without_timestamp={sent_without_timestamp_count}")

        if failures:
            raise CommandError("rewards_invariant_check failed: " + "; ".join(failures))
