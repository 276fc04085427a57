from __future__ import annotations

from django.conf import settings
from django.db import models

from apps.core.models import BaseModel
from apps.rewards.services.allocation import AllocationPolicy

# Smallest-unit amounts are stored as base-10 digit strings: uint256 values do
# not fit the integer or decimal columns of every supported database.
UNITS_MAX_LENGTH = 80


def _units_field(**kwargs) -> models.CharField:
    return models.CharField(max_length=UNITS_MAX_LENGTH, **kwargs)


class RewardToken(models.TextChoices):
    USDC = "USDC", "USDC"
    ETH = "ETH", "ETH"


class RewardRound(BaseModel):
    """One reward round per ISO week."""

    class Status(models.TextChoices):
        OPEN = "open", "Open"
        FINALIZED = "finalized", "Finalized"

    period_id = models.PositiveIntegerField(unique=True, help_text="ISO year*100 + ISO week, e.g. 202536.")
    token = models.CharField(max_length=8, choices=RewardToken.choices, default=RewardToken.USDC)
    total_pool = _units_field(default="0", help_text="Pool size in smallest token units.")
    allocation_policy = models.CharField(
        max_length=16,
        choices=AllocationPolicy.choices,
        default=AllocationPolicy.EQUAL,
    )
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.OPEN)
    merkle_root = models.CharField(max_length=130, blank=True, null=True)
    finalized_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        ordering = ["-period_id"]

    @property
    def total_pool_units(self) -> int:
        return int(self.total_pool)

    def __str__(self) -> str:  # pragma: no cover - debug helper
        return f"RewardRound<{self.period_id}:{self.status}>"


class RewardAllocation(BaseModel):
    """A committed promise to pay one recipient a fixed amount for a period."""

    class PayoutState(models.TextChoices):
        PENDING = "pending", "Pending"
        SENT = "sent", "Sent"
        FAILED = "failed", "Failed"
        CLAIMED = "claimed", "Claimed"

    DISPATCHABLE_STATES = (PayoutState.PENDING, PayoutState.FAILED)

    round = models.ForeignKey(RewardRound, on_delete=models.CASCADE, related_name="allocations")
    period_id = models.PositiveIntegerField(db_index=True)
    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="reward_allocations",
    )
    wallet_address = models.CharField(max_length=64, help_text="Snapshot of the wallet at allocation time.")
    amount = _units_field(help_text="Amount in smallest token units.")
    payout_state = models.CharField(
        max_length=16,
        choices=PayoutState.choices,
        default=PayoutState.PENDING,
    )
    settlement_ref = models.CharField(max_length=255, blank=True, default="")
    attempts = models.PositiveIntegerField(default=0)
    last_error = models.TextField(blank=True, default="")
    sent_at = models.DateTimeField(blank=True, null=True)
    claimed_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["period_id", "recipient"], name="uniq_allocation_period_recipient"),
        ]
        indexes = [
            models.Index(fields=["period_id", "payout_state"], name="rewards_alloc_period_state_idx"),
        ]
        ordering = ["period_id", "id"]

    @property
    def amount_units(self) -> int:
        return int(self.amount)

    @property
    def is_dispatchable(self) -> bool:
        return self.payout_state in self.DISPATCHABLE_STATES

    def __str__(self) -> str:  # pragma: no cover - debug helper
        return f"RewardAllocation<{self.period_id}:{self.recipient_id}:{self.amount}:{self.payout_state}>"
