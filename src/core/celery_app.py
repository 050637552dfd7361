"""
Celery Application Configuration

Configures Celery with:
- Ingestion queue for notification batches
- Beat schedule polling the notification relay
- Late acknowledgment and hard/soft time limits
"""

from celery import Celery
from kombu import Queue

from src.core.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    "asset_pipeline",
    broker=settings.broker_url,
    backend=settings.result_backend,
    include=[
        "src.pipeline.tasks",
    ]
)

# Records run in waves of INGEST_MAX_CONCURRENCY, each wave bounded by the per-record timeout.
_waves = -(-settings.NOTIFICATION_BATCH_SIZE // max(1, settings.INGEST_MAX_CONCURRENCY))
_batch_time_limit = int(_waves * settings.INGEST_RECORD_TIMEOUT_SECONDS) + settings.NOTIFICATION_MAX_WAIT_SECONDS + 60

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task tracking
    task_track_started=True,
    task_time_limit=_batch_time_limit,
    task_soft_time_limit=_batch_time_limit - 30,

    # Result expiration
    result_expires=3600,  # 1 hour

    # Worker settings
    worker_prefetch_multiplier=1,

    # Queue definitions
    task_queues=(
        Queue("default", routing_key="default"),
        Queue("ingestion", routing_key="ingestion.#"),
    ),

    # Task routing
    task_routes={
        "src.pipeline.tasks.process_notification_batch": {"queue": "ingestion"},
        "src.pipeline.tasks.poll_notification_relay": {"queue": "ingestion"},
    },

    # Late acknowledgment for reliability
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

# Beat schedule: pull storage events from the relay when a queue is configured
celery_app.conf.beat_schedule = {}
if settings.NOTIFICATION_QUEUE_URL:
    celery_app.conf.beat_schedule["poll-notification-relay"] = {
        "task": "src.pipeline.tasks.poll_notification_relay",
        "schedule": settings.NOTIFICATION_POLL_INTERVAL_SECONDS,
    }
