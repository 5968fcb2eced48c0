"""
Celery configuration for the settlement service.

The worker runs the settlement background jobs:
- Releasing matured seller funds from pending to available
- Polling stale pending transactions at the payment gateway
- Auditing seller balances against the ledger

Schedules live in the database (django-celery-beat) and are created by the
settlement data migrations. Redis is both broker and result backend.

Usage:
    celery -A config worker -l info
    celery -A config beat -l info

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("settlement_service")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Picks up settlement/tasks.py
app.autodiscover_tasks()
