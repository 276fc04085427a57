from __future__ import annotations

from django.apps import AppConfig


class RewardsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.rewards"
    verbose_name = "Weekly Rewards"
