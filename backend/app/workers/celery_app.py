"""Celery application configuration."""

from celery import Celery
from celery.schedules import crontab

from app.config import settings

# Create Celery app
celery_app = Celery(
    "inkwell",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=120,
    task_soft_time_limit=100,
    # Reliability: re-queue tasks if a worker crashes mid-execution
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_default_retry_delay=30,
)


class RetryableTask(celery_app.Task):
    """
    Base task class with automatic exponential-backoff retry on failure.

    Transient errors (DB timeouts, network blips) are retried automatically.
    Override max_retries=0 on tasks that must not retry.
    """

    abstract = True
    autoretry_for = (Exception,)
    max_retries = 3
    retry_backoff = True        # Exponential: 30s → 60s → 120s
    retry_backoff_max = 300
    retry_jitter = True


celery_app.Task = RetryableTask


# Import tasks here as they're created
from app.workers.tasks import auth_tasks  # noqa: F401,E402

# Beat schedule (periodic tasks)
celery_app.conf.beat_schedule = {
    # Expired codes and sessions are already rejected on read; this keeps
    # stale hashes from lingering on unverified rows
    "cleanup-expired-email-verification": {
        "task": "cleanup_expired_email_verification",
        "schedule": crontab(minute="*/15"),
    },
}
