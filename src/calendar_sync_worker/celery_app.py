"""Celery application configuration."""

from celery import Celery
from celery.schedules import crontab

from calendar_sync_worker.config import get_settings
from calendar_sync_worker.utils.logging import setup_logging

setup_logging()
settings = get_settings()

# Create Celery app
app = Celery(
    "calendar_sync_worker",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "calendar_sync_worker.tasks.calendar_sync",
        "calendar_sync_worker.tasks.token_refresh",
    ],
)

# Celery configuration
app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    task_soft_time_limit=240,  # 4 minutes
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    result_expires=3600,  # 1 hour
)

# Celery Beat schedule (periodic tasks)
app.conf.beat_schedule = {
    # Create events missing from connected calendars
    "backfill-unsynced-appointments": {
        "task": "calendar_sync_worker.tasks.calendar_sync.backfill_unsynced_appointments",
        "schedule": crontab(minute="*/30"),  # Every 30 minutes
    },
    # Refresh expiring Outlook tokens every hour
    "refresh-expiring-tokens": {
        "task": "calendar_sync_worker.tasks.token_refresh.refresh_expiring_tokens",
        "schedule": crontab(minute=0),  # Every hour at :00
    },
}

if __name__ == "__main__":
    app.start()
