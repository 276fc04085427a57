from __future__ import annotations

from django.contrib import admin

from apps.rewards.models import RewardAllocation, RewardRound


class RewardAllocationInline(admin.TabularInline):
    model = RewardAllocation
    extra = 0
    fields = ("recipient", "wallet_address", "amount", "payout_state", "settlement_ref", "attempts")
    readonly_fields = fields
    can_delete = False
    show_change_link = True

    def has_add_permission(self, request, obj=None):  # type: ignore[override]
        return False


@admin.register(RewardRound)
class RewardRoundAdmin(admin.ModelAdmin):
    list_display = ("period_id", "token", "total_pool", "allocation_policy", "status", "finalized_at")
    list_filter = ("status", "token", "allocation_policy")
    search_fields = ("period_id",)
    readonly_fields = (
        "period_id",
        "token",
        "total_pool",
        "allocation_policy",
        "status",
        "merkle_root",
        "finalized_at",
        "created_at",
        "updated_at",
    )
    inlines = [RewardAllocationInline]

    def has_add_permission(self, request):  # type: ignore[override]
        return False

    def has_delete_permission(self, request, obj=None):  # type: ignore[override]
        return False


@admin.register(RewardAllocation)
class RewardAllocationAdmin(admin.ModelAdmin):
    list_display = ("period_id", "recipient", "amount", "payout_state", "attempts", "sent_at")
    list_filter = ("payout_state", "period_id")
    search_fields = ("recipient__email", "recipient__handle", "wallet_address", "settlement_ref")
    readonly_fields = (
        "round",
        "period_id",
        "recipient",
        "wallet_address",
        "amount",
        "payout_state",
        "settlement_ref",
        "attempts",
        "last_error",
        "sent_at",
        "claimed_at",
        "created_at",
        "updated_at",
    )

    def has_add_permission(self, request):  # type: ignore[override]
        return False

    def has_delete_permission(self, request, obj=None):  # type: ignore[override]
        return False
