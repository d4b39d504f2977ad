"""
Celery configuration for the payments service.

Celery runs the asynchronous half of webhook intake:
- process_webhook_event: runs a stored provider event through the pipeline
- retry_failed_webhooks: periodic re-queue of transient failures (celery-beat)
- send_payment_notification: post-commit payer/creator notification requests

Redis is both the message broker and result backend. Tasks are
auto-discovered from all installed Django apps.

Usage:
    from payments.tasks import process_webhook_event

    process_webhook_event.delay(str(webhook_event.id))

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("payments")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
