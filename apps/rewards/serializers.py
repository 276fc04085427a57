from __future__ import annotations

from rest_framework import serializers

from apps.rewards.models import RewardAllocation, RewardRound, RewardToken
from apps.rewards.providers import PayoutMode
from apps.rewards.services.allocation import AllocationPolicy


class UnitsField(serializers.CharField):
    """Non-negative integer amount in smallest units, carried as a digit string."""

    def to_internal_value(self, data):
        if isinstance(data, bool):
            self.fail("invalid")
        text = str(data).strip() if data is not None else ""
        if not text.isdigit():
            raise serializers.ValidationError("Must be a non-negative integer in smallest units.")
        return int(text)

    def to_representation(self, value):
        return str(value)


class RewardRoundSerializer(serializers.ModelSerializer):
    class Meta:
        model = RewardRound
        fields = (
            "id",
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
        read_only_fields = fields


class RewardAllocationSerializer(serializers.ModelSerializer):
    recipient_id = serializers.IntegerField(read_only=True)
    token = serializers.CharField(source="round.token", read_only=True)

    class Meta:
        model = RewardAllocation
        fields = (
            "id",
            "period_id",
            "recipient_id",
            "wallet_address",
            "amount",
            "token",
            "payout_state",
            "settlement_ref",
            "attempts",
            "last_error",
            "sent_at",
            "claimed_at",
        )
        read_only_fields = fields


class OpenRoundSerializer(serializers.Serializer):
    period_id = serializers.IntegerField(min_value=1)
    token = serializers.ChoiceField(choices=RewardToken.choices)
    total_pool = UnitsField()
    allocation_policy = serializers.ChoiceField(choices=AllocationPolicy.choices, default=AllocationPolicy.EQUAL)


class PreviewQuerySerializer(serializers.Serializer):
    period_id = serializers.IntegerField(min_value=1)
    top = serializers.IntegerField(min_value=1, max_value=1000, default=10)
    policy = serializers.ChoiceField(choices=AllocationPolicy.choices, required=False)


class AllocationLineSerializer(serializers.Serializer):
    recipient_id = serializers.IntegerField(min_value=1)
    wallet_address = serializers.CharField(max_length=64)
    amount = UnitsField()


class CreateAllocationsSerializer(serializers.Serializer):
    period_id = serializers.IntegerField(min_value=1)
    allocations = AllocationLineSerializer(many=True, allow_empty=True)


class FinalizeRoundSerializer(serializers.Serializer):
    period_id = serializers.IntegerField(min_value=1)
    merkle_root = serializers.CharField(max_length=130)


class MarkAllocationSerializer(serializers.Serializer):
    period_id = serializers.IntegerField(min_value=1)
    recipient_id = serializers.IntegerField(min_value=1)
    payout_state = serializers.ChoiceField(choices=RewardAllocation.PayoutState.choices)
    settlement_ref = serializers.CharField(max_length=255, required=False, allow_blank=True)


class DispatchSerializer(serializers.Serializer):
    period_id = serializers.IntegerField(min_value=1)
    mode = serializers.ChoiceField(choices=PayoutMode.choices, required=False)


class HistoryQuerySerializer(serializers.Serializer):
    cursor = serializers.IntegerField(min_value=1, required=False)
    limit = serializers.IntegerField(min_value=1, max_value=100, default=20)
