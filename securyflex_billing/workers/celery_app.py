# workers/celery_app.py
from celery import Celery
from kombu import Queue

from securyflex_billing.config.settings import settings
from securyflex_billing.workers.celerybeat import CELERY_BEAT_SCHEDULE

celery_app = Celery(
    "securyflex_billing",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["securyflex_billing.workers.billing_tasks"],
)

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Reliability settings
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_reject_on_worker_lost=True,

    # Routing
    task_default_queue="default",
    task_queues=(
        Queue("default"),
        Queue("billing"),
        Queue("notifications"),
    ),
    task_routes={
        "billing.*": {"queue": "billing"},
    },

    # Time limits; a batch run paces itself between items
    task_time_limit=3600,
    task_soft_time_limit=3300,

    beat_schedule=CELERY_BEAT_SCHEDULE,
)
