from __future__ import annotations

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "core.settings.dev")

# Workers consume the payouts queue and beat fires the weekly close; both are
# configured from CELERY_* Django settings.
app = Celery("weeklyrewards")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()
