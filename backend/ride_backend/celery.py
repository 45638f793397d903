"""Celery application for background sweeps."""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "ride_backend.settings.settings")

app = Celery("ride_backend")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()
