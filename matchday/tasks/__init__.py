"""Celery tasks for Matchday.

This module configures Celery and registers all periodic tasks.
"""

from celery import Celery

from matchday.config import get_settings

settings = get_settings()

# Create Celery application
celery_app = Celery(
    "matchday",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "matchday.tasks.idempotency",
    ],
)

# Celery configuration
celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Timezone
    timezone="UTC",
    enable_utc=True,
    # Task behavior
    task_track_started=True,
    task_time_limit=300,  # 5 minute hard limit
    task_soft_time_limit=240,  # 4 minute soft limit
    # Result expiration
    result_expires=3600,  # 1 hour
    # Worker settings
    worker_prefetch_multiplier=1,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    # Expired idempotency records - hourly by default
    "purge-idempotency-records": {
        "task": "matchday.tasks.idempotency.purge_idempotency_records",
        "schedule": float(settings.idempotency_cleanup_interval_seconds),
        "options": {"expires": max(settings.idempotency_cleanup_interval_seconds - 60, 60)},
    },
}
