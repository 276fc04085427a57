from __future__ import annotations

import logging

from django.core.exceptions import ObjectDoesNotExist, ValidationError
from redis.exceptions import RedisError
from rest_framework import permissions, status
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.rewards.providers import PayoutConfigurationError
from apps.rewards.queue import PayoutQueue
from apps.rewards.serializers import (
    CreateAllocationsSerializer,
    DispatchSerializer,
    FinalizeRoundSerializer,
    HistoryQuerySerializer,
    MarkAllocationSerializer,
    OpenRoundSerializer,
    PreviewQuerySerializer,
    RewardAllocationSerializer,
    RewardRoundSerializer,
)
from apps.rewards.services import dispatch, rounds, summary

logger = logging.getLogger(__name__)


def _error_response(exc: Exception) -> Response:
    if isinstance(exc, PayoutConfigurationError):
        logger.error("payouts.configuration_error", extra={"error": str(exc)})
        return Response(
            {"detail": str(exc), "code": "payout_not_configured"},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    if isinstance(exc, RedisError):
        logger.error("rewards.ranking_unavailable", extra={"error": str(exc)})
        return Response(
            {"detail": "Ranking store is unavailable.", "code": "ranking_unavailable"},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    if isinstance(exc, ObjectDoesNotExist):
        return Response({"detail": str(exc) or "Not found.", "code": "not_found"}, status=status.HTTP_404_NOT_FOUND)
    detail = exc.messages[0] if getattr(exc, "messages", None) else str(exc)
    return Response({"detail": detail, "code": "invalid"}, status=status.HTTP_400_BAD_REQUEST)


HANDLED_ERRORS = (ValidationError, ObjectDoesNotExist, PayoutConfigurationError, RedisError)


class AdminRewardsView(APIView):
    permission_classes = [permissions.IsAdminUser]


class AdminOpenRoundView(AdminRewardsView):
    def post(self, request: Request) -> Response:
        serializer = OpenRoundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            reward_round = rounds.open_round(
                data["period_id"],
                data["token"],
                data["total_pool"],
                data["allocation_policy"],
            )
        except HANDLED_ERRORS as exc:
            return _error_response(exc)
        return Response(RewardRoundSerializer(reward_round).data, status=status.HTTP_201_CREATED)


class AdminPreviewWinnersView(AdminRewardsView):
    def get(self, request: Request) -> Response:
        serializer = PreviewQuerySerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            items = rounds.preview_winners(data["period_id"], data["top"], data.get("policy"))
        except HANDLED_ERRORS as exc:
            return _error_response(exc)
        return Response({"period_id": data["period_id"], "results": items})


class AdminAllocationListView(AdminRewardsView):
    def get(self, request: Request, period_id: int) -> Response:
        rows = rounds.list_allocations(period_id)
        return Response({"period_id": period_id, "results": RewardAllocationSerializer(rows, many=True).data})


class AdminCreateAllocationsView(AdminRewardsView):
    def post(self, request: Request) -> Response:
        serializer = CreateAllocationsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            count = rounds.create_allocations(data["period_id"], data["allocations"])
        except HANDLED_ERRORS as exc:
            return _error_response(exc)
        return Response({"period_id": data["period_id"], "count": count}, status=status.HTTP_201_CREATED)


class AdminFinalizeRoundView(AdminRewardsView):
    def post(self, request: Request) -> Response:
        serializer = FinalizeRoundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            reward_round = rounds.finalize_round(data["period_id"], data["merkle_root"])
        except HANDLED_ERRORS as exc:
            return _error_response(exc)
        return Response(RewardRoundSerializer(reward_round).data)


class AdminMarkAllocationView(AdminRewardsView):
    def post(self, request: Request) -> Response:
        serializer = MarkAllocationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            allocation = rounds.mark_allocation(
                data["period_id"],
                data["recipient_id"],
                data["payout_state"],
                data.get("settlement_ref"),
            )
        except HANDLED_ERRORS as exc:
            return _error_response(exc)
        return Response(RewardAllocationSerializer(allocation).data)


class AdminDispatchView(AdminRewardsView):
    def post(self, request: Request) -> Response:
        serializer = DispatchSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            result = dispatch.enqueue_dispatch(data["period_id"], data.get("mode"))
        except HANDLED_ERRORS as exc:
            return _error_response(exc)
        return Response(result.as_dict(), status=status.HTTP_202_ACCEPTED)


class AdminQueueView(AdminRewardsView):
    def get(self, request: Request) -> Response:
        queue = PayoutQueue()
        return Response(
            {
                "enabled": queue.config.queue_enabled,
                "available": queue.is_available(),
                "counts": queue.depth(),
            }
        )


class RewardSummaryView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request: Request) -> Response:
        return Response(summary.get_user_weekly_summary(request.user))


class RewardHistoryView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request: Request) -> Response:
        serializer = HistoryQuerySerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        return Response(summary.get_user_payout_history(request.user, data.get("cursor"), data["limit"]))


class RewardPolicyView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request: Request) -> Response:
        return Response(summary.get_policy())
