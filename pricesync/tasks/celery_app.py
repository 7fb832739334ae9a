"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from pricesync.config.settings import get_settings

settings = get_settings()

# Create Celery app
app = Celery(
    "pricesync",
    broker=settings.broker_url,
    backend=settings.result_backend,
    include=[
        "pricesync.tasks.files",
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
    task_time_limit=60 * 60,  # 60 minutes
    task_soft_time_limit=55 * 60,  # 55 minutes
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=100,
    # Redeliver tasks of a lost worker instead of dropping them
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

# Heavy file parsing and lighter export work run on separate queues
app.conf.task_routes = {
    "tasks.import_file": {"queue": "file_processing"},
    "tasks.rollback_import": {"queue": "file_processing"},
    "tasks.export_entities": {"queue": "export"},
    "tasks.mark_stuck_operations": {"queue": "export"},
    "tasks.purge_operations": {"queue": "export"},
}

# Configure periodic tasks with Celery Beat
app.conf.beat_schedule = {
    # Fail operations stuck in PROCESSING (every 10 minutes)
    "mark-stuck-operations": {
        "task": "tasks.mark_stuck_operations",
        "schedule": crontab(minute="*/10"),
        "kwargs": {"older_than_minutes": settings.stuck_operation_minutes},
    },
    # Purge old finished operations (daily at 4 AM)
    "purge-old-operations": {
        "task": "tasks.purge_operations",
        "schedule": crontab(hour=4, minute=0),
        "kwargs": {"older_than_days": settings.operation_retention_days},
    },
}

if __name__ == "__main__":
    app.start()
