"""
Celery configuration for the Django application.

Celery runs the background side of the payment core:
- Status polls for single orders (queued on demand)
- The periodic scan that heals PENDING orders whose callback never arrived
  (scheduled by celery beat from CELERY_BEAT_SCHEDULE)

This configuration uses Redis as both the message broker and result backend.
Tasks are auto-discovered from all installed Django apps.

Usage:
    # Worker and scheduler
    celery -A config worker -l info
    celery -A config beat -l info

    # Queue a poll from code
    from payments.tasks import poll_order_status
    poll_order_status.delay(order_id)

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# Load configuration from Django settings
# All Celery settings should be prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Celery will look for a tasks.py module in each installed app
app.autodiscover_tasks()
