from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from apps.rewards.models import RewardRound
from apps.rewards.providers import PayoutConfigurationError, PayoutMode
from apps.rewards.services.dispatch import enqueue_dispatch


class Command(BaseCommand):
    help = "Dispatch pending and failed allocations for a period."

    def add_arguments(self, parser) -> None:
        parser.add_argument("period", type=int, help="ISO period id, e.g. 202536.")
        parser.add_argument("--mode", choices=PayoutMode.values, default=None, help="Override PAYOUT_MODE.")

    def handle(self, *args, **options) -> None:
        period_id = options["period"]
        try:
            result = enqueue_dispatch(period_id, options.get("mode"))
        except RewardRound.DoesNotExist as exc:
            raise CommandError(str(exc)) from exc
        except PayoutConfigurationError as exc:
            raise CommandError(f"Payout rail is not configured: {exc}") from exc

        if result.queued:
            state = "deduplicated" if result.deduplicated else "queued"
            self.stdout.write(self.style.SUCCESS(f"dispatch:{period_id} {state} (mode={result.mode})"))
            return

        self.stdout.write(
            f"dispatch:{period_id} inline mode={result.mode} selected={result.selected} "
            f"sent={result.sent} failed={result.failed} skipped={result.skipped}"
        )
        if result.failed:
            raise CommandError(f"{result.failed} allocation(s) failed after retries.")
