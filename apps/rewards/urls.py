from django.urls import path

from apps.rewards.views import (
    AdminAllocationListView,
    AdminCreateAllocationsView,
    AdminDispatchView,
    AdminFinalizeRoundView,
    AdminMarkAllocationView,
    AdminOpenRoundView,
    AdminPreviewWinnersView,
    AdminQueueView,
    RewardHistoryView,
    RewardPolicyView,
    RewardSummaryView,
)

app_name = "rewards"

urlpatterns = [
    path("admin/rewards/rounds/", AdminOpenRoundView.as_view(), name="admin-open-round"),
    path("admin/rewards/preview/", AdminPreviewWinnersView.as_view(), name="admin-preview"),
    path("admin/rewards/allocations/", AdminCreateAllocationsView.as_view(), name="admin-allocations-create"),
    path(
        "admin/rewards/allocations/<int:period_id>/",
        AdminAllocationListView.as_view(),
        name="admin-allocations-list",
    ),
    path("admin/rewards/finalize/", AdminFinalizeRoundView.as_view(), name="admin-finalize"),
    path("admin/rewards/mark/", AdminMarkAllocationView.as_view(), name="admin-mark"),
    path("admin/rewards/dispatch/", AdminDispatchView.as_view(), name="admin-dispatch"),
    path("admin/rewards/queue/", AdminQueueView.as_view(), name="admin-queue"),
    path("rewards/summary/", RewardSummaryView.as_view(), name="summary"),
    path("rewards/history/", RewardHistoryView.as_view(), name="history"),
    path("rewards/policy/", RewardPolicyView.as_view(), name="policy"),
]
