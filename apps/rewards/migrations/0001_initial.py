from __future__ import annotations

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models

import libs.idgen


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("users", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="RewardRound",
            fields=[
                (
                    "id",
                    models.BigIntegerField(
                        default=libs.idgen.generate_id,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "period_id",
                    models.PositiveIntegerField(help_text="ISO year*100 + ISO week, e.g. 202536.", unique=True),
                ),
                (
                    "token",
                    models.CharField(choices=[("USDC", "USDC"), ("ETH", "ETH")], default="USDC", max_length=8),
                ),
                (
                    "total_pool",
                    models.CharField(default="0", help_text="Pool size in smallest token units.", max_length=80),
                ),
                (
                    "allocation_policy",
                    models.CharField(
                        choices=[("equal", "Equal split"), ("weighted", "Weighted by score")],
                        default="equal",
                        max_length=16,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("open", "Open"), ("finalized", "Finalized")],
                        default="open",
                        max_length=16,
                    ),
                ),
                ("merkle_root", models.CharField(blank=True, max_length=130, null=True)),
                ("finalized_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={"ordering": ["-period_id"]},
        ),
        migrations.CreateModel(
            name="RewardAllocation",
            fields=[
                (
                    "id",
                    models.BigIntegerField(
                        default=libs.idgen.generate_id,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("period_id", models.PositiveIntegerField(db_index=True)),
                (
                    "wallet_address",
                    models.CharField(help_text="Snapshot of the wallet at allocation time.", max_length=64),
                ),
                (
                    "amount",
                    models.CharField(help_text="Amount in smallest token units.", max_length=80),
                ),
                (
                    "payout_state",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("sent", "Sent"),
                            ("failed", "Failed"),
                            ("claimed", "Claimed"),
                        ],
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("settlement_ref", models.CharField(blank=True, default="", max_length=255)),
                ("attempts", models.PositiveIntegerField(default=0)),
                ("last_error", models.TextField(blank=True, default="")),
                ("sent_at", models.DateTimeField(blank=True, null=True)),
                ("claimed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "recipient",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="reward_allocations",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "round",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="allocations",
                        to="rewards.rewardround",
                    ),
                ),
            ],
            options={
                "ordering": ["period_id", "id"],
                "indexes": [
                    models.Index(fields=["period_id", "payout_state"], name="rewards_alloc_period_state_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("period_id", "recipient"),
                        name="uniq_allocation_period_recipient",
                    ),
                ],
            },
        ),
    ]
