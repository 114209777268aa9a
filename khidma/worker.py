"""
Celery Worker Configuration
Task queue for deferred marketplace work (SMS, categorizer assignment,
start-code reminders, upload storage, auth cleanup).
"""
from celery import Celery
from celery.signals import worker_process_init

from khidma.core.config import settings
from khidma.core.logging import configure_logging
from khidma.core.sentry import init_sentry

celery_app = Celery(
    "khidma",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "khidma.tasks.auth",
        "khidma.tasks.jobs",
        "khidma.tasks.uploads",
    ],
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="Africa/Nouakchott",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=10 * 60,  # 10 minutes
    task_soft_time_limit=8 * 60,
    worker_prefetch_multiplier=1,
    worker_concurrency=4,
    result_expires=3600,  # 1 hour
    beat_schedule={
        "cleanup-expired-tokens": {
            "task": "khidma.tasks.auth.cleanup_expired_tokens",
            "schedule": 3600.0,  # Every hour
        },
    },
)


@worker_process_init.connect
def _init_worker_process(**kwargs) -> None:
    configure_logging()
    init_sentry()
