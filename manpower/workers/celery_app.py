"""
Celery Application Configuration
"""
from celery import Celery

from manpower.core.config import settings

celery_app = Celery(
    "manpower",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["manpower.workers.tasks"]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    "process-outbox-every-10-seconds": {
        "task": "manpower.workers.tasks.process_outbox_messages",
        "schedule": 10.0,
    },
    "cleanup-old-messages-daily": {
        "task": "manpower.workers.tasks.cleanup_old_messages",
        "schedule": 86400.0,  # 24 hours
    },
}
